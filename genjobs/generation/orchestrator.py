"""
Job orchestration for image and video generation

One generic state machine drives a job through submit, adaptive polling,
result decoding and media materialization for either kind. Known transient
backend rejections are retried by mutating the request; everything else
ends the job.
"""

import asyncio
import logging
import time
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from .client_mcp import ToolBinding, ToolResponse, ToolSession
from .decoder import DirectMedia, RemoteUrl, decode_result, decode_submit, degraded_error_payload
from .media import MediaFetcher, extension_for, new_output_path, public_url, write_inline_media, write_placeholder
from .parameters import apply_retry_mutation, build_parameters, enhance_prompt, identity_translate
from .polling import PollState, PollStatus, compute_progress, next_interval_ms, parse_status_texts, progress_message
from .registry import ServiceEndpoint, ServiceRegistry
from ..core.config import GENERATION_CONFIGS, OUTPUT_DIR, SERVER_BASE_URL
from ..core.exceptions import (
    BackendError, GenerationError, GenerationFailed, GenerationTimeout, JobCancelled, ProtocolError,
    TransientError, UnsupportedKind, classify_backend_error
)
from ..core.state import Job, JobResult, JobState
from ..progress.reporter import ProgressReporter

logger = logging.getLogger(__name__)

MediaPayload = Union[DirectMedia, RemoteUrl]


def _option(options: Dict[str, Any], *names: str) -> Any:
    for name in names:
        if options.get(name):
            return options[name]
    return None


class JobOrchestrator:
    """
    Drives generation jobs from submission to a terminal result

    Args:
        registry: Service lookup, consulted once per generate() call
        tool_binding: Connection and tool invocation layer
        fetcher: Remote media downloader
        reporter: Progress notification fan-out
        output_dir: Directory for generated_<millis>.<ext> files
        base_url: Public base URL the /generated mount is served from
        sleep: Awaitable sleep in seconds (injected in tests)
        clock: Monotonic clock in seconds (injected in tests)
        translate: Prompt pre-processing transform
    """

    def __init__(
        self,
        registry: ServiceRegistry,
        tool_binding: Optional[ToolBinding] = None,
        fetcher: Optional[MediaFetcher] = None,
        reporter: Optional[ProgressReporter] = None,
        output_dir: Union[str, Path] = OUTPUT_DIR,
        base_url: str = SERVER_BASE_URL,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
        translate: Callable[[str], str] = identity_translate
    ):
        self.registry = registry
        self.tool_binding = tool_binding or ToolBinding()
        self.fetcher = fetcher or MediaFetcher()
        self.reporter = reporter or ProgressReporter()
        self.output_dir = Path(output_dir)
        self.base_url = base_url
        self._sleep = sleep
        self._clock = clock
        self._translate = translate
        self._cancel_events: Dict[str, asyncio.Event] = {}

    # ==========================================================================
    # PUBLIC API
    # ==========================================================================

    def cancel(self, task_id: str) -> bool:
        """Signal an in-flight job to stop; False if no such job is running"""
        event = self._cancel_events.get(task_id)
        if event is None:
            return False
        logger.info(f"[Orchestrator] Cancellation requested for {task_id}")
        event.set()
        return True

    def is_active(self, task_id: str) -> bool:
        return task_id in self._cancel_events

    async def generate(
        self,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
        cancel_event: Optional[asyncio.Event] = None
    ) -> JobResult:
        """
        Run one generation job to completion

        Args:
            prompt: Caller prompt
            options: kind ("image" | "video"), service_id, task_id and
                kind-specific request fields (aspect_ratio, duration, ...)
            cancel_event: Optional signal that aborts the job when set

        Returns:
            JobResult; failures are reported in the result, never raised
        """
        options = dict(options or {})
        kind = options.get("kind") or "image"
        task_id = _option(options, "task_id", "taskId")
        cancel_event = cancel_event or asyncio.Event()
        if task_id:
            self._cancel_events[task_id] = cancel_event

        job: Optional[Job] = None
        try:
            if kind not in GENERATION_CONFIGS:
                raise UnsupportedKind(f"Unsupported generation kind: {kind}")

            service_id = _option(options, "service_id", "serviceId") or self.registry.default_service(kind)
            endpoint = self.registry.resolve(service_id)
            working_prompt = enhance_prompt(prompt, kind, self._translate)
            job = Job(
                kind=kind,
                service_id=service_id,
                prompt=working_prompt,
                parameters=build_parameters(kind, working_prompt, options),
                id=task_id
            )
            logger.info(f"[Orchestrator] Starting {kind} job {task_id or '-'} on {service_id}")

            result = await self._run(job, endpoint, cancel_event)
            self.reporter.completed(task_id, result.to_dict())
            return result

        except GenerationError as e:
            result = self._record_failure(job, e)
        except asyncio.CancelledError:
            self._record_failure(job, JobCancelled("Generation task was cancelled"))
            self.reporter.failed(task_id, "Generation task was cancelled", JobCancelled.category)
            raise
        except Exception as e:
            logger.exception(f"[Orchestrator] Unexpected error in {kind} job {task_id or '-'}")
            if job is not None and not job.is_terminal:
                job.fail(str(e))
            result = JobResult(success=False, error=str(e), error_category="internal_error")
        finally:
            if task_id and self._cancel_events.get(task_id) is cancel_event:
                del self._cancel_events[task_id]

        self.reporter.failed(task_id, result.error, result.error_category)
        return result

    # ==========================================================================
    # OUTER RETRY LOOP
    # ==========================================================================

    async def _run(self, job: Job, endpoint: ServiceEndpoint, cancel_event: asyncio.Event) -> JobResult:
        while True:
            self._check_cancel(cancel_event)
            try:
                async with self.tool_binding.open(job.service_id, endpoint.endpoint_url) as session:
                    payload = await self._attempt(session, job, endpoint, cancel_event)
            except GenerationError as e:
                if e.transient is None:
                    raise
                if not job.can_retry():
                    logger.error(f"[Orchestrator] Retry budget exhausted for {job.service_id}: {e}")
                    raise
                self._prepare_retry(job, e.transient)
                continue

            # Connection is released; materialization only touches HTTP and disk
            self._check_cancel(cancel_event)
            return await self._materialize(job, payload, cancel_event)

    def _prepare_retry(self, job: Job, transient: TransientError) -> None:
        job.begin_retry()
        job.parameters = apply_retry_mutation(job.parameters, transient)
        job.prompt = job.parameters.get("prompt", job.prompt)
        logger.warning(
            f"[Orchestrator] {transient.value} from {job.service_id}; "
            f"retry {job.attempt} with mutated request"
        )
        self.reporter.report(job.id, 0, f"Retrying {job.kind} generation ({transient.value})")

    async def _attempt(
        self,
        session: ToolSession,
        job: Job,
        endpoint: ServiceEndpoint,
        cancel_event: asyncio.Event
    ) -> MediaPayload:
        """Submit, poll and fetch the result payload over one connection"""
        tools = session.binding
        job.transition(JobState.SUBMITTED)
        logger.info(f"[Orchestrator] Submitting to {tools.submit} (attempt {job.attempt + 1})")
        self.reporter.report(job.id, 0, f"Submitting {job.kind} request to {endpoint.name}")

        response = await self._invoke(session, tools.submit, job.parameters, cancel_event)
        if response.is_error:
            raise self._backend_error(response.error_text(), job)
        try:
            submitted = decode_submit(response)
        except GenerationError as e:
            raise self._classified(e, job)

        if isinstance(submitted, DirectMedia):
            logger.info(f"[Orchestrator] {tools.submit} returned media directly")
            return submitted

        job.set_request_id(submitted.value)
        job.transition(JobState.POLLING)
        logger.info(f"[Orchestrator] Request ID: {job.request_id}")

        await self._poll(session, job, endpoint, cancel_event)
        return await self._fetch_result(session, job, cancel_event)

    # ==========================================================================
    # POLLING
    # ==========================================================================

    async def _poll(
        self,
        session: ToolSession,
        job: Job,
        endpoint: ServiceEndpoint,
        cancel_event: asyncio.Event
    ) -> PollState:
        poll = PollState(
            max_attempts=GENERATION_CONFIGS[job.kind]["max_poll_attempts"],
            check_start_time=self._clock()
        )
        arguments = {"request_id": job.request_id}

        while poll.checks_remaining > 0:
            response = await self._invoke(session, session.binding.status, arguments, cancel_event)
            if response.is_error:
                raise self._backend_error(response.error_text(), job)

            status, queue_position = parse_status_texts(response.texts())
            check_index = poll.checks_done
            poll.observe(status, queue_position)

            if status == PollStatus.COMPLETED:
                logger.info(f"[Orchestrator] {job.request_id} completed after {poll.checks_done} checks")
                self.reporter.report(job.id, compute_progress(check_index, poll.max_attempts, status=status),
                                     f"{job.kind.capitalize()} generation complete, fetching result")
                return poll
            if status == PollStatus.FAILED:
                raise GenerationFailed(
                    f"{job.kind.capitalize()} generation failed: {response.last_text() or 'FAILED status reported'}"
                )

            poll.interval_ms = next_interval_ms(job.kind, poll, self._clock(), endpoint.is_fast)
            logger.info(
                f"[Orchestrator] Status {poll.status.value} queue={poll.queue_position} "
                f"check {poll.checks_done}/{poll.max_attempts}, next in {poll.interval_ms / 1000:.1f}s"
            )
            self.reporter.report(
                job.id,
                compute_progress(check_index, poll.max_attempts, poll.queue_position, poll.status),
                progress_message(job.kind, poll)
            )

            if poll.checks_remaining > 0:
                await self._wait(poll.interval_ms / 1000, cancel_event)

        elapsed_minutes = int(round((self._clock() - poll.check_start_time) / 60))
        raise GenerationTimeout(elapsed_minutes, poll.checks_done)

    # ==========================================================================
    # RESULT
    # ==========================================================================

    async def _fetch_result(self, session: ToolSession, job: Job, cancel_event: asyncio.Event) -> MediaPayload:
        response = await self._invoke(session, session.binding.result, {"request_id": job.request_id}, cancel_event)
        if response.is_error:
            # Reached only after a COMPLETED status, so URL validation errors are degraded success
            payload = degraded_error_payload(response, job.kind, job.request_id)
            if payload is None:
                raise self._backend_error(response.error_text(), job)
            logger.warning(f"[Orchestrator] Result error after completion, using placeholder: {response.error_text()[:200]}")
            return payload

        try:
            payload = decode_result(response, job.kind, job.request_id)
        except GenerationError as e:
            raise self._classified(e, job)
        if isinstance(payload, RemoteUrl) and payload.degraded:
            logger.warning(f"[Orchestrator] Degraded result for {job.request_id}: {response.last_text()}")
        return payload

    async def _materialize(self, job: Job, payload: MediaPayload, cancel_event: asyncio.Event) -> JobResult:
        metadata: Dict[str, Any] = {
            "requestId": job.request_id,
            "service": job.service_id,
            "kind": job.kind,
            "attempt": job.attempt,
            "prompt": job.prompt,
            "type": "immediate" if job.request_id is None else "async",
            "degraded": False
        }

        if isinstance(payload, DirectMedia):
            path = new_output_path(extension_for(job.kind, mime_hint=payload.mime_hint), self.output_dir)
            try:
                metadata["size"] = write_inline_media(payload.data_base64, path)
            except ProtocolError:
                path.unlink(missing_ok=True)
                raise
            metadata["mimeType"] = payload.mime_hint
        elif payload.degraded:
            path = new_output_path(extension_for(job.kind, url=payload.url), self.output_dir)
            write_placeholder(path, job.prompt)
            metadata.update({"degraded": True, "sourceUrl": payload.url, "downloaded": False})
        else:
            path = new_output_path(extension_for(job.kind, url=payload.url), self.output_dir)
            try:
                downloaded = await self._race(self.fetcher.fetch(payload.url, path, label=job.prompt), cancel_event)
            except (JobCancelled, asyncio.CancelledError):
                path.unlink(missing_ok=True)
                raise
            metadata.update({"sourceUrl": payload.url, "downloaded": downloaded})

        result = JobResult(
            success=True,
            url=public_url(path, self.base_url),
            local_path=str(path),
            metadata=metadata
        )
        job.complete(result)
        logger.info(f"[Orchestrator] {job.kind} job completed: {result.url}")
        return result

    # ==========================================================================
    # HELPERS
    # ==========================================================================

    def _check_cancel(self, cancel_event: asyncio.Event) -> None:
        if cancel_event.is_set():
            raise JobCancelled()

    async def _race(self, awaitable: Awaitable[Any], cancel_event: asyncio.Event) -> Any:
        """Await awaitable unless cancel_event fires first"""
        work = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(cancel_event.wait())
        try:
            done, _ = await asyncio.wait({work, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for pending in (work, waiter):
                if not pending.done():
                    pending.cancel()
        if work in done:
            return work.result()
        raise JobCancelled()

    async def _invoke(
        self,
        session: ToolSession,
        tool_name: str,
        arguments: Dict[str, Any],
        cancel_event: asyncio.Event
    ) -> ToolResponse:
        self._check_cancel(cancel_event)
        return await self._race(self.tool_binding.invoke(session, tool_name, arguments), cancel_event)

    async def _wait(self, seconds: float, cancel_event: asyncio.Event) -> None:
        self._check_cancel(cancel_event)
        await self._race(self._sleep(seconds), cancel_event)

    def _backend_error(self, text: str, job: Job) -> BackendError:
        transient = classify_backend_error(text, job.kind, job.parameters)
        logger.error(f"[Orchestrator] Backend error from {job.service_id}: {text[:500]}")
        return BackendError(text, transient)

    def _classified(self, error: GenerationError, job: Job) -> GenerationError:
        error.transient = classify_backend_error(str(error), job.kind, job.parameters)
        return error

    def _record_failure(self, job: Optional[Job], error: GenerationError) -> JobResult:
        if isinstance(error, GenerationTimeout):
            state = JobState.TIMED_OUT
        elif isinstance(error, JobCancelled):
            state = JobState.CANCELLED
        else:
            state = JobState.FAILED

        if job is not None and not job.is_terminal:
            job.fail(str(error), state)
        logger.error(f"[Orchestrator] Job {(job.id if job else None) or '-'} ended {state.value}: {error}")
        return JobResult(success=False, error=str(error), error_category=error.category)
