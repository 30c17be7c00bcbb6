"""Shared fakes for generation job tests"""

from types import SimpleNamespace
from typing import Any, Dict, List

import httpx
import pytest
from mcp.types import CallToolResult, ImageContent, TextContent

from genjobs.generation.client_mcp import ToolBinding
from genjobs.generation.media import MediaFetcher
from genjobs.generation.orchestrator import JobOrchestrator
from genjobs.generation.registry import ServiceRegistry
from genjobs.progress import ProgressReporter

IMAGE_SERVICE = "t2i-kamui-flux-schnell"
VIDEO_SERVICE = "t2v-kamui-veo3"
FAST_VIDEO_SERVICE = "t2v-kamui-wan-v2-2-5b-fast"
DEFAULT_TOOLS = ["kamui_submit", "kamui_status", "kamui_result"]


def text_result(*texts: str, is_error: bool = False) -> CallToolResult:
    return CallToolResult(content=[TextContent(type="text", text=text) for text in texts], isError=is_error)


def image_result(data: str, mime_type: str = "image/png") -> CallToolResult:
    return CallToolResult(content=[ImageContent(type="image", data=data, mimeType=mime_type)])


class FakeMcpClient:
    """
    Scripted stand-in for fastmcp.Client

    responses maps tool name to a list of results (or exceptions) returned
    in order; the last entry repeats once the list is exhausted.
    """

    def __init__(self, tools: List[str] = None, responses: Dict[str, List[Any]] = None):
        self.tools = DEFAULT_TOOLS if tools is None else tools
        self.responses = {name: list(items) for name, items in (responses or {}).items()}
        self.calls: List[tuple] = []
        self.entered = 0
        self.exited = 0

    async def __aenter__(self):
        self.entered += 1
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited += 1
        return False

    async def list_tools(self):
        return [SimpleNamespace(name=name) for name in self.tools]

    async def call_tool_mcp(self, name: str, arguments: Dict[str, Any]):
        self.calls.append((name, dict(arguments)))
        queue = self.responses.get(name)
        if not queue:
            raise AssertionError(f"Unexpected call to {name}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, BaseException):
            raise item
        return item

    def calls_to(self, name: str) -> List[Dict[str, Any]]:
        return [arguments for tool, arguments in self.calls if tool == name]


class FakeClock:
    """Monotonic clock advanced only by the injected sleep"""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class RecordingSink:

    def __init__(self):
        self.events: List[Dict[str, Any]] = []

    async def publish(self, task_id: str, event: Dict[str, Any]) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> List[Dict[str, Any]]:
        return [event for event in self.events if event["type"] == event_type]


def ok_media(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, content=b"remote-media-bytes")


@pytest.fixture
def service_config():
    return {
        "mcpServers": {
            IMAGE_SERVICE: {"url": "https://mcp.example/t2i/flux-schnell", "name": "Flux Schnell"},
            VIDEO_SERVICE: {"url": "https://mcp.example/t2v/veo3", "description": "Veo 3 via Kamui"},
            FAST_VIDEO_SERVICE: {"url": "https://mcp.example/t2v/wan-fast", "displayName": "Wan Fast"}
        }
    }


@pytest.fixture
def registry(service_config):
    return ServiceRegistry(service_config, default_services={"image": IMAGE_SERVICE, "video": VIDEO_SERVICE})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def make_orchestrator(tmp_path, clock, registry, sink):
    def factory(client: FakeMcpClient, media_handler=ok_media, sleep=None, fetch_sleep=None) -> JobOrchestrator:
        fetcher = MediaFetcher(
            client_factory=lambda: httpx.AsyncClient(transport=httpx.MockTransport(media_handler)),
            sleep=fetch_sleep or clock.sleep
        )
        return JobOrchestrator(
            registry,
            tool_binding=ToolBinding(client_factory=lambda url: client),
            fetcher=fetcher,
            reporter=ProgressReporter([sink]),
            output_dir=tmp_path / "generated",
            base_url="http://localhost:3011",
            sleep=sleep or clock.sleep,
            clock=clock
        )
    return factory
