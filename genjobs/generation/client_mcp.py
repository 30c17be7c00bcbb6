"""
MCP tool binding for generation services

Each generation service is an MCP server exposing three tools, found by
name: one containing "submit", one "status", one "result". A connection is
opened per job attempt and always closed when the attempt ends.
"""

import logging
from contextlib import asynccontextmanager, AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import httpx
from fastmcp import Client
from mcp.shared.exceptions import McpError

from ..core.config import MCP_REQUEST_TIMEOUT
from ..core.exceptions import MissingTool, NoToolsAvailable, ServiceUnreachable
from ..core.state import ServiceBinding

logger = logging.getLogger(__name__)

CONNECT_ERRORS = (httpx.HTTPError, OSError, RuntimeError, McpError)


@dataclass
class ContentBlock:
    type: str
    text: Optional[str] = None
    data: Optional[str] = None
    mime_type: Optional[str] = None


@dataclass
class ToolResponse:
    """Transport-neutral view of a tool call result"""
    blocks: List[ContentBlock] = field(default_factory=list)
    is_error: bool = False

    def texts(self) -> List[str]:
        return [block.text for block in self.blocks if block.type == "text" and block.text]

    def last_text(self) -> Optional[str]:
        texts = self.texts()
        return texts[-1] if texts else None

    def error_text(self) -> str:
        return "\n".join(self.texts()) or "Tool call failed"

    @classmethod
    def from_mcp(cls, result: Any) -> "ToolResponse":
        blocks = []
        for item in getattr(result, "content", None) or []:
            blocks.append(ContentBlock(
                type=getattr(item, "type", ""),
                text=getattr(item, "text", None),
                data=getattr(item, "data", None),
                mime_type=getattr(item, "mimeType", None)
            ))
        return cls(blocks=blocks, is_error=bool(getattr(result, "isError", False)))

    @classmethod
    def error(cls, message: str) -> "ToolResponse":
        return cls(blocks=[ContentBlock(type="text", text=message)], is_error=True)


def classify_tools(tool_names: List[str], service_id: str, endpoint_url: str) -> ServiceBinding:
    """
    Pick the submit/status/result tools by name substring

    The first advertised tool stands in for submit when none is named so;
    status and result have no fallback.
    """
    if not tool_names:
        raise NoToolsAvailable(service_id)

    def find(marker: str) -> Optional[str]:
        return next((name for name in tool_names if marker in name), None)

    status_tool = find("status")
    if not status_tool:
        raise MissingTool("status", service_id)
    result_tool = find("result")
    if not result_tool:
        raise MissingTool("result", service_id)

    return ServiceBinding(
        service_id=service_id,
        endpoint_url=endpoint_url,
        submit=find("submit") or tool_names[0],
        status=status_tool,
        result=result_tool
    )


@dataclass
class ToolSession:
    """An open connection plus the tools bound on it"""
    client: Any
    binding: ServiceBinding


def default_client_factory(endpoint_url: str) -> Client:
    return Client(endpoint_url, timeout=MCP_REQUEST_TIMEOUT)


class ToolBinding:
    """Opens MCP connections and invokes the classified tools"""

    def __init__(self, client_factory: Optional[Callable[[str], Any]] = None):
        self._client_factory = client_factory or default_client_factory
        # Tool sets are stable per endpoint for the process lifetime
        self._bindings: Dict[Tuple[str, str], ServiceBinding] = {}

    @asynccontextmanager
    async def open(self, service_id: str, endpoint_url: str) -> AsyncIterator[ToolSession]:
        """
        Connect to a service endpoint for one job attempt

        Yields:
            ToolSession with the discovered binding; the connection is closed
            when the block exits, whatever the outcome
        """
        client = self._client_factory(endpoint_url)
        async with AsyncExitStack() as stack:
            logger.info(f"[ToolBinding] Connecting to {service_id} at {endpoint_url}")
            try:
                await stack.enter_async_context(client)
            except CONNECT_ERRORS as e:
                raise ServiceUnreachable(f"Cannot reach service {service_id} at {endpoint_url}: {e}") from e

            binding = await self._discover(client, service_id, endpoint_url)
            yield ToolSession(client=client, binding=binding)
        logger.info(f"[ToolBinding] Closed connection to {service_id}")

    async def _discover(self, client: Any, service_id: str, endpoint_url: str) -> ServiceBinding:
        key = (service_id, endpoint_url)
        cached = self._bindings.get(key)
        if cached is not None:
            return cached

        try:
            tools = await client.list_tools()
        except CONNECT_ERRORS as e:
            raise ServiceUnreachable(f"Failed to list tools for {service_id}: {e}") from e

        tool_names = [tool.name for tool in tools or []]
        logger.info(f"[ToolBinding] Available tools for {service_id}: {tool_names}")
        binding = classify_tools(tool_names, service_id, endpoint_url)
        self._bindings[key] = binding
        return binding

    async def invoke(self, session: ToolSession, tool_name: str, arguments: Dict[str, Any]) -> ToolResponse:
        """
        Call one tool

        Protocol-level errors come back as an error response so every
        backend failure is classified in one place by the caller.
        """
        try:
            result = await session.client.call_tool_mcp(tool_name, arguments)
        except McpError as e:
            logger.warning(f"[ToolBinding] {tool_name} returned protocol error: {e}")
            return ToolResponse.error(str(e))
        except (httpx.HTTPError, OSError) as e:
            raise ServiceUnreachable(f"Tool call {tool_name} failed: {e}") from e
        return ToolResponse.from_mcp(result)

    def forget(self, service_id: str) -> None:
        """Drop cached bindings for a service (e.g. after its endpoint changed)"""
        for key in [key for key in self._bindings if key[0] == service_id]:
            del self._bindings[key]
