"""
Tests for genjobs.generation.orchestrator
"""

import asyncio
import base64
import json
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from genjobs.core.config import VIDEO_GENERATION_CONFIG
from genjobs.generation.orchestrator import JobOrchestrator

from .conftest import FAST_VIDEO_SERVICE, IMAGE_SERVICE, VIDEO_SERVICE, FakeMcpClient, image_result, text_result

SUBMITTED = text_result(json.dumps({"request_id": "a1b2c3d4-e5f6", "status": "IN_QUEUE"}))
IN_PROGRESS = text_result(json.dumps({"status": "IN_PROGRESS"}))
IN_QUEUE = text_result(json.dumps({"status": "IN_QUEUE", "queue_position": 4}))
COMPLETED = text_result(json.dumps({"status": "COMPLETED"}))
ASPECT_REJECTED = text_result("Validation error: aspect_ratio must be one of 16:9, 9:16", is_error=True)


def video_client(**responses):
    scripted = {
        "kamui_submit": [SUBMITTED],
        "kamui_status": [IN_PROGRESS, COMPLETED],
        "kamui_result": [text_result(json.dumps({"video_url": "https://x/y.mp4"}))]
    }
    scripted.update(responses)
    return FakeMcpClient(responses=scripted)


class TestVideoJobs:

    @pytest.mark.asyncio
    async def test_polls_until_completed_and_downloads(self, make_orchestrator, clock, sink):
        client = video_client()
        orchestrator = make_orchestrator(client)

        result = await orchestrator.generate("a dragon over mountains", {"kind": "video", "task_id": "task-1"})
        await orchestrator.reporter.drain()

        assert result.success is True
        assert result.metadata["requestId"] == "a1b2c3d4-e5f6"
        assert result.metadata["type"] == "async"
        assert result.metadata["downloaded"] is True
        local_path = Path(result.local_path)
        assert local_path.exists()
        assert local_path.read_bytes() == b"remote-media-bytes"
        assert local_path.name.startswith("generated_") and local_path.suffix == ".mp4"
        assert result.url == f"http://localhost:3011/generated/{local_path.name}"

        assert client.calls_to("kamui_status") == [{"request_id": "a1b2c3d4-e5f6"}] * 2
        assert client.calls_to("kamui_result") == [{"request_id": "a1b2c3d4-e5f6"}]
        assert clock.sleeps == [8.0]
        assert (client.entered, client.exited) == (1, 1)

        assert sink.of_type("completed")[-1]["result"]["localPath"] == result.local_path
        assert sink.of_type("progress")[-1]["percent"] == 100

    @pytest.mark.asyncio
    async def test_submit_arguments(self, make_orchestrator):
        client = video_client()
        await make_orchestrator(client).generate("a dragon, 9:16, 3s", {"kind": "video", "duration": 5})

        arguments = client.calls_to("kamui_submit")[0]
        assert arguments["aspect_ratio"] == "9:16"
        assert arguments["duration"] == 5
        assert arguments["prompt"].endswith(VIDEO_GENERATION_CONFIG["quality_suffix"])

    @pytest.mark.asyncio
    async def test_fast_service_uses_short_interval(self, make_orchestrator, clock):
        client = video_client(kamui_status=[text_result('{"status": "IN_QUEUE"}'), COMPLETED])
        result = await make_orchestrator(client).generate("x", {"kind": "video", "service_id": FAST_VIDEO_SERVICE})

        assert result.success is True
        assert clock.sleeps == [3.0]

    @pytest.mark.asyncio
    async def test_failed_status_is_not_retried(self, make_orchestrator):
        client = video_client(kamui_status=[IN_QUEUE, text_result('{"status": "FAILED", "error": "nsfw"}')])
        result = await make_orchestrator(client).generate("x", {"kind": "video"})

        assert result.success is False
        assert result.error_category == "generation_failed"
        assert len(client.calls_to("kamui_submit")) == 1
        assert client.calls_to("kamui_result") == []

    @pytest.mark.asyncio
    async def test_file_too_small_resubmits_with_richer_prompt(self, make_orchestrator):
        too_small = text_result("Error: File size is too small, minimum 1MB required", is_error=True)
        client = video_client(
            kamui_status=[COMPLETED],
            kamui_result=[too_small, text_result(json.dumps({"video": {"url": "https://x/z.mp4"}}))]
        )
        result = await make_orchestrator(client).generate("a dragon", {"kind": "video"})

        assert result.success is True
        assert result.metadata["attempt"] == 1
        first, second = client.calls_to("kamui_submit")
        assert second["prompt"] == f"{first['prompt']}, {VIDEO_GENERATION_CONFIG['richness_suffix']}"
        assert (client.entered, client.exited) == (2, 2)

    @pytest.mark.asyncio
    async def test_result_url_validation_error_is_degraded_success(self, make_orchestrator):
        fetched = []
        client = video_client(kamui_result=[text_result("URL validation failed: bad host", is_error=True)])
        orchestrator = make_orchestrator(client, media_handler=lambda request: fetched.append(request))

        result = await orchestrator.generate("x", {"kind": "video"})

        assert result.success is True
        assert result.metadata["degraded"] is True
        assert result.metadata["sourceUrl"] == "https://placeholder.video/a1b2c3d4-e5f6.mp4"
        assert Path(result.local_path).exists()
        assert fetched == []

    @pytest.mark.asyncio
    async def test_degraded_result_text(self, make_orchestrator):
        client = video_client(kamui_result=[text_result("Failed to get result for request")])
        result = await make_orchestrator(client).generate("x", {"kind": "video"})

        assert result.success is True
        assert result.metadata["degraded"] is True

    @pytest.mark.asyncio
    async def test_other_result_errors_fail(self, make_orchestrator):
        client = video_client(kamui_result=[text_result("Internal error", is_error=True)])
        result = await make_orchestrator(client).generate("x", {"kind": "video"})

        assert result.success is False
        assert result.error_category == "backend_error"
        assert len(client.calls_to("kamui_submit")) == 1

    @pytest.mark.asyncio
    async def test_unresolved_result(self, make_orchestrator):
        client = video_client(kamui_result=[text_result("no media for you")])
        result = await make_orchestrator(client).generate("x", {"kind": "video"})

        assert result.success is False
        assert result.error_category == "protocol_error"
        assert result.error == "no media for you"

    @pytest.mark.asyncio
    async def test_unreachable_media_still_completes_with_placeholder(self, make_orchestrator):
        client = video_client()
        result = await make_orchestrator(client, media_handler=lambda request: httpx.Response(404)).generate(
            "x", {"kind": "video"}
        )

        assert result.success is True
        assert result.metadata["downloaded"] is False
        assert Path(result.local_path).exists()


class TestImageJobs:

    @pytest.mark.asyncio
    async def test_aspect_ratio_rejection_resubmits_once_without_it(self, make_orchestrator):
        client = FakeMcpClient(responses={"kamui_submit": [ASPECT_REJECTED]})
        result = await make_orchestrator(client).generate("a cat", {"kind": "image", "aspect_ratio": "16:9"})

        submits = client.calls_to("kamui_submit")
        assert len(submits) == 2
        assert submits[0]["aspect_ratio"] == "16:9"
        assert "aspect_ratio" not in submits[1]
        assert result.success is False
        assert result.error_category == "backend_error"
        assert (client.entered, client.exited) == (2, 2)

    @pytest.mark.asyncio
    async def test_aspect_ratio_retry_can_succeed(self, make_orchestrator):
        client = FakeMcpClient(responses={
            "kamui_submit": [ASPECT_REJECTED, SUBMITTED],
            "kamui_status": [COMPLETED],
            "kamui_result": [text_result(json.dumps({"image_urls": ["https://cdn/cat.png"]}))]
        })
        result = await make_orchestrator(client).generate("a cat", {"kind": "image", "aspect_ratio": "square"})

        assert result.success is True
        assert result.metadata["attempt"] == 1
        assert result.local_path.endswith(".png")

    @pytest.mark.asyncio
    async def test_aspect_error_without_aspect_parameter_is_final(self, make_orchestrator):
        client = FakeMcpClient(responses={"kamui_submit": [ASPECT_REJECTED]})
        result = await make_orchestrator(client).generate("a cat", {"kind": "image"})

        assert result.success is False
        assert len(client.calls_to("kamui_submit")) == 1

    @pytest.mark.asyncio
    async def test_inline_media_from_submit_skips_polling(self, make_orchestrator):
        data = base64.b64encode(b"\x89PNG inline").decode()
        client = FakeMcpClient(responses={"kamui_submit": [image_result(data, "image/png")]})
        result = await make_orchestrator(client).generate("a cat", {"kind": "image"})

        assert result.success is True
        assert result.metadata["type"] == "immediate"
        assert result.metadata["requestId"] is None
        assert Path(result.local_path).read_bytes() == b"\x89PNG inline"
        assert client.calls_to("kamui_status") == []

    @pytest.mark.asyncio
    async def test_corrupt_inline_media_fails_without_leaving_a_file(self, make_orchestrator, tmp_path):
        client = FakeMcpClient(responses={"kamui_submit": [image_result("abcd!!!!", "image/png")]})
        result = await make_orchestrator(client).generate("a cat", {"kind": "image"})

        assert result.success is False
        assert result.error_category == "protocol_error"
        assert list((tmp_path / "generated").glob("generated_*")) == []

    @pytest.mark.asyncio
    async def test_timeout_after_poll_budget(self, make_orchestrator, clock, sink):
        client = FakeMcpClient(responses={"kamui_submit": [SUBMITTED], "kamui_status": [IN_QUEUE]})
        orchestrator = make_orchestrator(client)

        result = await orchestrator.generate("a cat", {"kind": "image", "task_id": "slow"})
        await orchestrator.reporter.drain()

        assert result.success is False
        assert result.error_category == "timeout"
        assert "did not complete after 1 minutes (30 status checks)" in result.error
        assert len(client.calls_to("kamui_status")) == 30
        assert clock.sleeps == [2.0] * 29
        assert sink.of_type("error")[-1]["errorCategory"] == "timeout"

    @pytest.mark.asyncio
    async def test_missing_request_id_is_not_retried(self, make_orchestrator):
        client = FakeMcpClient(responses={"kamui_submit": [text_result("Accepted")]})
        result = await make_orchestrator(client).generate("a cat", {"kind": "image", "aspect_ratio": "16:9"})

        assert result.error_category == "protocol_error"
        assert len(client.calls_to("kamui_submit")) == 1


class TestFailures:

    @pytest.mark.asyncio
    async def test_unsupported_kind(self, make_orchestrator):
        client = FakeMcpClient()
        result = await make_orchestrator(client).generate("a chair", {"kind": "3d"})

        assert result.error_category == "invalid_request"
        assert client.entered == 0

    @pytest.mark.asyncio
    async def test_unknown_service(self, make_orchestrator):
        result = await make_orchestrator(FakeMcpClient()).generate("x", {"kind": "image", "service_id": "t2i-nope"})

        assert result.success is False
        assert result.error_category == "configuration_missing"

    @pytest.mark.asyncio
    async def test_missing_tool(self, make_orchestrator):
        client = FakeMcpClient(tools=["kamui_submit", "kamui_status"])
        result = await make_orchestrator(client).generate("x", {"kind": "image", "service_id": IMAGE_SERVICE})

        assert result.error_category == "configuration_missing"
        assert "result" in result.error

    @pytest.mark.asyncio
    async def test_unexpected_errors_are_reported(self, make_orchestrator):
        orchestrator = make_orchestrator(video_client())
        orchestrator.fetcher = MagicMock(fetch=AsyncMock(side_effect=ValueError("disk full")))

        result = await orchestrator.generate("x", {"kind": "video", "service_id": VIDEO_SERVICE})

        assert result.success is False
        assert result.error_category == "internal_error"
        assert result.error == "disk full"


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_before_start(self, make_orchestrator, sink):
        client = video_client()
        orchestrator = make_orchestrator(client)
        cancel_event = asyncio.Event()
        cancel_event.set()

        result = await orchestrator.generate("x", {"kind": "video", "task_id": "t0"}, cancel_event=cancel_event)
        await orchestrator.reporter.drain()

        assert result.error_category == "cancelled"
        assert client.calls == []
        assert client.exited == client.entered
        assert sink.of_type("error")[-1]["errorCategory"] == "cancelled"

    @pytest.mark.asyncio
    async def test_cancel_interrupts_poll_wait(self, make_orchestrator):
        waiting = asyncio.Event()

        async def blocking_sleep(seconds):
            waiting.set()
            await asyncio.Event().wait()

        client = video_client(kamui_status=[IN_QUEUE])
        orchestrator = make_orchestrator(client, sleep=blocking_sleep)

        task = asyncio.create_task(orchestrator.generate("x", {"kind": "video", "task_id": "t1"}))
        await asyncio.wait_for(waiting.wait(), timeout=1)
        assert orchestrator.is_active("t1")
        assert orchestrator.cancel("t1") is True

        result = await asyncio.wait_for(task, timeout=1)
        assert result.success is False
        assert result.error_category == "cancelled"
        assert len(client.calls_to("kamui_status")) == 1
        assert client.exited == 1
        assert orchestrator.is_active("t1") is False

    @pytest.mark.asyncio
    async def test_cancel_interrupts_media_download(self, make_orchestrator, tmp_path):
        retrying = asyncio.Event()

        async def blocking_retry_sleep(seconds):
            retrying.set()
            await asyncio.Event().wait()

        def unreachable(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = video_client()
        orchestrator = make_orchestrator(client, media_handler=unreachable, fetch_sleep=blocking_retry_sleep)

        task = asyncio.create_task(orchestrator.generate("x", {"kind": "video", "task_id": "t3"}))
        await asyncio.wait_for(retrying.wait(), timeout=1)
        assert orchestrator.cancel("t3") is True

        result = await asyncio.wait_for(task, timeout=1)
        assert result.success is False
        assert result.error_category == "cancelled"
        assert result.local_path is None
        assert list((tmp_path / "generated").glob("generated_*")) == []
        assert orchestrator.is_active("t3") is False

    @pytest.mark.asyncio
    async def test_cancel_unknown_task(self, make_orchestrator):
        assert make_orchestrator(FakeMcpClient()).cancel("nope") is False

    @pytest.mark.asyncio
    async def test_task_cancellation_releases_connection(self, make_orchestrator):
        waiting = asyncio.Event()

        async def blocking_sleep(seconds):
            waiting.set()
            await asyncio.Event().wait()

        client = video_client(kamui_status=[IN_QUEUE])
        orchestrator = make_orchestrator(client, sleep=blocking_sleep)

        task = asyncio.create_task(orchestrator.generate("x", {"kind": "video", "task_id": "t2"}))
        await asyncio.wait_for(waiting.wait(), timeout=1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert client.exited == 1
        assert orchestrator.is_active("t2") is False


def test_orchestrator_defaults(registry):
    orchestrator = JobOrchestrator(registry)
    assert orchestrator.tool_binding is not None
    assert orchestrator.fetcher.retries == 3
