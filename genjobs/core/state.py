"""State definitions for generation jobs"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import MAX_OUTER_RETRIES


class JobState(str, Enum):
    CREATED = "created"
    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"


TERMINAL_STATES = {JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED}

# SUBMITTED -> SUBMITTED and POLLING -> SUBMITTED are outer retries (new attempt)
ALLOWED_TRANSITIONS = {
    JobState.CREATED: {JobState.SUBMITTED, JobState.FAILED, JobState.CANCELLED},
    JobState.SUBMITTED: {
        JobState.SUBMITTED, JobState.POLLING, JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED
    },
    JobState.POLLING: {
        JobState.SUBMITTED, JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED
    },
}


class InvalidTransition(RuntimeError):
    pass


@dataclass
class Job:
    """One generation request, owned and mutated only by the orchestrator"""
    kind: str
    service_id: str
    prompt: str
    parameters: Dict[str, Any] = field(default_factory=dict)
    id: Optional[str] = None
    state: JobState = JobState.CREATED
    attempt: int = 0
    request_id: Optional[str] = None
    started_at: float = field(default_factory=time.time)
    result: Optional["JobResult"] = None
    error: Optional[str] = None
    history: List[JobState] = field(default_factory=lambda: [JobState.CREATED])

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    def transition(self, new_state: JobState) -> None:
        if new_state not in ALLOWED_TRANSITIONS.get(self.state, set()):
            raise InvalidTransition(f"{self.state.value} -> {new_state.value}")
        if new_state == JobState.POLLING and not self.request_id:
            raise InvalidTransition("request_id is required before polling")
        self.state = new_state
        self.history.append(new_state)

    def set_request_id(self, request_id: str) -> None:
        if self.request_id is not None:
            raise InvalidTransition(f"request_id already set for attempt {self.attempt}")
        self.request_id = request_id

    def can_retry(self) -> bool:
        return self.attempt < MAX_OUTER_RETRIES

    def begin_retry(self) -> None:
        """Consume one outer retry; the next submit starts a fresh attempt"""
        if not self.can_retry():
            raise InvalidTransition(f"retry budget exhausted after {self.attempt} retries")
        self.attempt += 1
        self.request_id = None

    def complete(self, result: "JobResult") -> None:
        self.transition(JobState.COMPLETED)
        self.result = result

    def fail(self, error: str, state: JobState = JobState.FAILED) -> None:
        self.transition(state)
        self.error = error


@dataclass
class JobResult:
    """Terminal outcome returned to the caller of generate()"""
    success: bool
    url: Optional[str] = None
    local_path: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None
    error_category: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.url is not None:
            data["url"] = self.url
        if self.local_path is not None:
            data["localPath"] = self.local_path
        if self.metadata:
            data["metadata"] = self.metadata
        if self.error is not None:
            data["error"] = self.error
            data["errorCategory"] = self.error_category
        return data


@dataclass
class ServiceBinding:
    """Tool names discovered on a service endpoint"""
    service_id: str
    endpoint_url: str
    submit: str
    status: str
    result: str
    discovered_at: float = field(default_factory=time.time)

    def tools(self) -> Dict[str, str]:
        return {"submit": self.submit, "status": self.status, "result": self.result}
