"""
Decoding of heterogeneous tool responses

Generation backends answer in whatever shape they like: JSON text, markdown
with a "**Request ID:**" line, bare URLs in prose, or inline base64 media.
Each shape is handled by one strategy; strategies are tried in a fixed
order and the first match wins.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Union

from .client_mcp import ToolResponse
from ..core.exceptions import NoRequestId, UnresolvedResult

REQUEST_ID_PATTERN = re.compile(r"Request ID:\**\s*([a-f0-9][a-f0-9-]*)", re.IGNORECASE)
DATA_URL_PATTERN = re.compile(r"^data:((?:image|video)/[\w.+-]+);base64,")

MEDIA_EXTENSIONS = {
    "image": ("png", "jpg", "jpeg", "gif", "webp"),
    "video": ("mp4", "webm", "mov", "m4v", "gif")
}

# Result text that still means the media was generated
DEGRADED_TEXT_MARKERS = ("failed to get result", "invalid video url format")
# Error payloads from the result tool that follow a confirmed completion
DEGRADED_ERROR_MARKERS = ("invalid video url format", "url validation failed")

PLACEHOLDER_URLS = {
    "image": "https://placeholder.image/{request_id}.png",
    "video": "https://placeholder.video/{request_id}.mp4"
}


# ==============================================================================
# PAYLOAD TYPES
# ==============================================================================

@dataclass(frozen=True)
class DirectMedia:
    data_base64: str
    mime_hint: Optional[str] = None


@dataclass(frozen=True)
class RemoteUrl:
    url: str
    degraded: bool = False


@dataclass(frozen=True)
class RequestId:
    value: str


@dataclass(frozen=True)
class Unresolved:
    last_text: Optional[str] = None


ResultPayload = Union[DirectMedia, RemoteUrl, RequestId, Unresolved]


# ==============================================================================
# STRATEGIES
# ==============================================================================

def _parse_json(text: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(text)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


class DecodeStrategy:
    """One way of reading a response; returns None when the shape does not apply"""

    def try_decode(self, response: ToolResponse) -> Optional[ResultPayload]:
        raise NotImplementedError


class InlineMediaStrategy(DecodeStrategy):

    def try_decode(self, response):
        for block in response.blocks:
            if block.type in ("image", "video") and block.data:
                data = block.data
                mime = block.mime_type
                match = DATA_URL_PATTERN.match(data)
                if match:
                    mime = mime or match.group(1)
                    data = data[match.end():]
                return DirectMedia(data_base64=data, mime_hint=mime or f"{block.type}/*")
        return None


class JsonRequestIdStrategy(DecodeStrategy):

    def try_decode(self, response):
        for text in response.texts():
            data = _parse_json(text)
            if data and data.get("request_id"):
                return RequestId(str(data["request_id"]))
        return None


class MarkdownRequestIdStrategy(DecodeStrategy):

    def try_decode(self, response):
        for text in response.texts():
            match = REQUEST_ID_PATTERN.search(text)
            if match:
                return RequestId(match.group(1))
        return None


class JsonUrlStrategy(DecodeStrategy):
    """
    Reads a URL from a JSON path such as ("video_url",), ("video", "url")
    or ("videos", 0, "url")
    """

    def __init__(self, path: Sequence[Union[str, int]]):
        self.path = tuple(path)

    def _lookup(self, data: Any) -> Optional[str]:
        current = data
        for key in self.path:
            if isinstance(key, int):
                if not isinstance(current, list) or len(current) <= key:
                    return None
            elif not isinstance(current, dict):
                return None
            current = current[key] if isinstance(key, int) else current.get(key)
            if current is None:
                return None
        return current if isinstance(current, str) and current else None

    def try_decode(self, response):
        for text in response.texts():
            data = _parse_json(text)
            if data is None:
                continue
            url = self._lookup(data)
            if url:
                return RemoteUrl(url)
        return None


class TextUrlStrategy(DecodeStrategy):

    def __init__(self, extensions: Sequence[str]):
        pattern = r"https?://[^\s)\"'<>]+\.(?:%s)(?:\?[^\s)\"'<>]*)?" % "|".join(extensions)
        self.pattern = re.compile(pattern, re.IGNORECASE)

    def try_decode(self, response):
        for text in response.texts():
            match = self.pattern.search(text)
            if match:
                return RemoteUrl(match.group(0))
        return None


class DegradedMarkerStrategy(DecodeStrategy):
    """Known "generated but URL unavailable" replies become a placeholder URL"""

    def __init__(self, placeholder_url: str, markers: Sequence[str] = DEGRADED_TEXT_MARKERS):
        self.placeholder_url = placeholder_url
        self.markers = tuple(markers)

    def try_decode(self, response):
        for text in response.texts():
            lowered = text.lower()
            if any(marker in lowered for marker in self.markers):
                return RemoteUrl(self.placeholder_url, degraded=True)
        return None


def apply_strategies(strategies: List[DecodeStrategy], response: ToolResponse) -> Optional[ResultPayload]:
    for strategy in strategies:
        payload = strategy.try_decode(response)
        if payload is not None:
            return payload
    return None


# ==============================================================================
# CALL SITES
# ==============================================================================

SUBMIT_STRATEGIES = [
    InlineMediaStrategy(),
    JsonRequestIdStrategy(),
    MarkdownRequestIdStrategy()
]

RESULT_URL_PATHS = {
    "image": [("image_url",), ("image_urls", 0), ("image", "url"), ("images", 0, "url")],
    "video": [("video_url",), ("video", "url"), ("videos", 0, "url")]
}


def placeholder_url(kind: str, request_id: Optional[str]) -> str:
    return PLACEHOLDER_URLS[kind].format(request_id=request_id or "unknown")


def result_strategies(kind: str, request_id: Optional[str]) -> List[DecodeStrategy]:
    strategies: List[DecodeStrategy] = [InlineMediaStrategy()]
    strategies.extend(JsonUrlStrategy(path) for path in RESULT_URL_PATHS[kind])
    strategies.append(TextUrlStrategy(MEDIA_EXTENSIONS[kind]))
    strategies.append(DegradedMarkerStrategy(placeholder_url(kind, request_id)))
    return strategies


def decode_submit(response: ToolResponse) -> Union[DirectMedia, RequestId]:
    """
    Decode a submit response

    Raises:
        NoRequestId: If neither inline media nor a request id is present
    """
    payload = apply_strategies(SUBMIT_STRATEGIES, response)
    if payload is None:
        last_text = response.last_text()
        if last_text:
            raise NoRequestId(f"No request_id received from submit: {last_text.strip()}")
        raise NoRequestId()
    return payload


def decode_result(response: ToolResponse, kind: str, request_id: Optional[str] = None) -> Union[DirectMedia, RemoteUrl]:
    """
    Decode a result response into media to materialize

    Raises:
        UnresolvedResult: Carrying the last text block when nothing matched
    """
    payload = apply_strategies(result_strategies(kind, request_id), response) or Unresolved(response.last_text())
    if isinstance(payload, Unresolved):
        raise UnresolvedResult(payload.last_text)
    return payload


def degraded_error_payload(response: ToolResponse, kind: str, request_id: Optional[str]) -> Optional[RemoteUrl]:
    """Placeholder payload for a result error that follows a confirmed completion"""
    error_text = (response.error_text() or "").lower()
    if any(marker in error_text for marker in DEGRADED_ERROR_MARKERS):
        return RemoteUrl(placeholder_url(kind, request_id), degraded=True)
    return None
