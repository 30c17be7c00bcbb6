"""
Adaptive status polling for generation jobs

Pure scheduling helpers: status parsing, wait-interval and progress
formulas, and the PollState working memory threaded through each tick.
The orchestrator owns the actual waiting so these stay timer-free.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Any, Iterable, Optional, Tuple

from ..core.config import GENERATION_CONFIGS, VIDEO_GENERATION_CONFIG

QUEUE_POSITION_PATTERN = re.compile(r"queue_position['\":\s]*(\d+)", re.IGNORECASE)


class PollStatus(str, Enum):
    IN_QUEUE = "IN_QUEUE"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class PollState:
    """Working memory of one job's polling loop"""
    max_attempts: int
    check_start_time: float
    status: PollStatus = PollStatus.IN_QUEUE
    queue_position: Optional[int] = None
    last_queue_position: Optional[int] = None
    stuck_count: int = 0
    checks_done: int = 0
    interval_ms: float = 0.0

    @property
    def checks_remaining(self) -> int:
        return self.max_attempts - self.checks_done

    def observe(self, status: Optional[PollStatus], queue_position: Optional[int]) -> None:
        """Fold one status response into the state (counts as one check)"""
        self.checks_done += 1
        if status is not None:
            self.status = status
        if queue_position is not None:
            self.queue_position = queue_position

        # Same position as last tick means the queue is not moving
        if self.queue_position is not None and self.queue_position == self.last_queue_position:
            self.stuck_count += 1
        else:
            self.stuck_count = 0
        self.last_queue_position = self.queue_position


def parse_status_texts(texts: Iterable[str]) -> Tuple[Optional[PollStatus], Optional[int]]:
    """
    Extract the coarse status token and queue position from status text blocks

    COMPLETED and FAILED stop the scan; IN_PROGRESS is remembered but later
    blocks may still report a terminal token.

    Returns:
        (status or None when no token found, queue position or None)
    """
    status = None
    queue_position = None
    for text in texts:
        match = QUEUE_POSITION_PATTERN.search(text)
        if match:
            queue_position = int(match.group(1))

        if "IN_PROGRESS" in text:
            status = PollStatus.IN_PROGRESS
        elif "COMPLETED" in text:
            return PollStatus.COMPLETED, queue_position
        elif "FAILED" in text:
            return PollStatus.FAILED, queue_position
    return status, queue_position


def compute_interval_ms(
    queue_position: Optional[int],
    stuck_count: int,
    elapsed_ms: float = 0.0,
    fast: bool = False,
    config: Optional[Dict[str, Any]] = None
) -> float:
    """
    Next wait for the adaptive (video) schedule, in milliseconds

    Args:
        queue_position: Last known queue position, None if never reported
        stuck_count: Consecutive ticks with an unchanged queue position
        elapsed_ms: Time since the first status check
        fast: Service is a fast model (shorter base interval)
        config: Schedule settings, defaults to VIDEO_GENERATION_CONFIG
    """
    config = config or VIDEO_GENERATION_CONFIG
    interval = (config["fast_interval"] if fast else config["base_interval"]) * 1000

    if queue_position is not None:
        if queue_position > 100:
            interval = 30000
        elif queue_position > 50:
            interval = 20000
        elif queue_position > 20:
            interval = 15000
        elif queue_position > 10:
            interval = 10000
        elif queue_position > 5:
            interval = 8000
        elif queue_position > 0:
            interval = 5000

    if elapsed_ms > config["elapsed_floor_after"] * 1000:
        interval = max(interval, config["elapsed_floor_interval"] * 1000)

    if stuck_count > config["stuck_threshold"]:
        interval = min(interval * config["stuck_multiplier"], config["max_interval"] * 1000)

    return interval


def next_interval_ms(kind: str, poll: PollState, now: float, fast: bool = False) -> float:
    """Interval for the next wait; image jobs use a flat interval"""
    config = GENERATION_CONFIGS[kind]
    if kind != "video":
        return config["poll_interval"] * 1000
    elapsed_ms = (now - poll.check_start_time) * 1000
    return compute_interval_ms(poll.queue_position, poll.stuck_count, elapsed_ms, fast, config)


def compute_progress(
    check_index: int,
    max_attempts: int,
    queue_position: Optional[int] = None,
    status: PollStatus = PollStatus.IN_QUEUE
) -> float:
    """Progress percentage reported while a job is polled"""
    if status == PollStatus.COMPLETED:
        return 100

    base = 0
    if queue_position is not None:
        if queue_position > 10:
            base = 5
        elif queue_position > 5:
            base = 15
        elif queue_position > 0:
            base = 25
        else:
            base = 40

    if status == PollStatus.IN_PROGRESS:
        base = max(base, 40)
        from_checks = min(50, (check_index / max_attempts) * 50) if max_attempts else 0
        return min(95, base + from_checks)

    return base


def progress_message(kind: str, poll: PollState) -> str:
    label = "Video" if kind == "video" else "Image"
    if poll.queue_position:
        return f"{label} queue position: {poll.queue_position}"
    if poll.status == PollStatus.IN_PROGRESS:
        return f"Generating {kind}..."
    return f"Waiting for {kind} generation..."
