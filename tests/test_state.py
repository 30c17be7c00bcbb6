"""
Tests for genjobs.core.state and genjobs.core.exceptions
"""

import pytest

from genjobs.core.exceptions import (
    GenerationTimeout, MissingTool, NoRequestId, TransientError, classify_backend_error
)
from genjobs.core.state import InvalidTransition, Job, JobResult, JobState


def new_job(**kwargs):
    return Job(kind="video", service_id="t2v-kamui-veo3", prompt="a dragon", **kwargs)


class TestJobTransitions:

    def test_happy_path(self):
        job = new_job()
        job.transition(JobState.SUBMITTED)
        job.set_request_id("abc")
        job.transition(JobState.POLLING)
        job.complete(JobResult(success=True, url="http://localhost/generated/x.mp4"))

        assert job.history == [JobState.CREATED, JobState.SUBMITTED, JobState.POLLING, JobState.COMPLETED]
        assert job.is_terminal

    def test_direct_media_skips_polling(self):
        job = new_job()
        job.transition(JobState.SUBMITTED)
        job.complete(JobResult(success=True))
        assert JobState.POLLING not in job.history

    def test_cannot_skip_submitted(self):
        with pytest.raises(InvalidTransition):
            new_job().transition(JobState.POLLING)

    def test_polling_requires_request_id(self):
        job = new_job()
        job.transition(JobState.SUBMITTED)
        with pytest.raises(InvalidTransition):
            job.transition(JobState.POLLING)

    def test_request_id_set_once_per_attempt(self):
        job = new_job()
        job.set_request_id("first")
        with pytest.raises(InvalidTransition):
            job.set_request_id("second")
        job.begin_retry()
        job.set_request_id("second")
        assert job.request_id == "second"

    @pytest.mark.parametrize("terminal", [JobState.COMPLETED, JobState.FAILED, JobState.TIMED_OUT, JobState.CANCELLED])
    def test_terminal_states_are_final(self, terminal):
        job = new_job(state=terminal)
        with pytest.raises(InvalidTransition):
            job.transition(JobState.SUBMITTED)

    def test_retry_budget(self):
        job = new_job()
        job.begin_retry()
        job.begin_retry()
        assert job.attempt == 2
        assert job.can_retry() is False
        with pytest.raises(InvalidTransition):
            job.begin_retry()

    def test_timeout_only_from_polling(self):
        job = new_job()
        job.transition(JobState.SUBMITTED)
        with pytest.raises(InvalidTransition):
            job.fail("timeout", JobState.TIMED_OUT)


def test_job_result_to_dict():
    failed = JobResult(success=False, error="Service not found", error_category="configuration_missing")
    assert failed.to_dict() == {
        "success": False,
        "error": "Service not found",
        "errorCategory": "configuration_missing"
    }
    done = JobResult(success=True, url="u", local_path="/tmp/p", metadata={"requestId": "r"})
    assert done.to_dict() == {"success": True, "url": "u", "localPath": "/tmp/p", "metadata": {"requestId": "r"}}


class TestClassifyBackendError:

    def test_aspect_ratio_needs_parameter(self):
        text = "Invalid value for aspect_ratio"
        assert classify_backend_error(text, "image", {"aspect_ratio": "16:9"}) == TransientError.ASPECT_RATIO_REJECTED
        assert classify_backend_error(text, "image", {}) is None

    def test_file_too_small_is_video_only(self):
        text = "Error: File size is too small, minimum 1MB required"
        assert classify_backend_error(text, "video", {}) == TransientError.FILE_TOO_SMALL
        assert classify_backend_error(text, "image", {}) is None

    def test_unknown_errors_are_final(self):
        assert classify_backend_error("rate limited", "video", {"aspect_ratio": "16:9"}) is None
        assert classify_backend_error("", "video", {}) is None


def test_error_messages():
    assert str(GenerationTimeout(12, 120)) == (
        "Generation timeout - did not complete after 12 minutes (120 status checks)"
    )
    assert str(MissingTool("status", "t2i-x")) == "No status tool found for service: t2i-x"
    assert NoRequestId().category == "protocol_error"
