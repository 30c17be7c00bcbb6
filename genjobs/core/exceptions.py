"""Error kinds raised while driving a generation job"""

from enum import Enum
from typing import Any, Dict, Optional


class TransientError(str, Enum):
    """Backend errors that are retried by mutating the request"""
    ASPECT_RATIO_REJECTED = "aspect_ratio_rejected"
    FILE_TOO_SMALL = "file_too_small"


FILE_TOO_SMALL_MARKER = "file size is too small, minimum 1mb required"


class GenerationError(Exception):
    """Base class for job failures surfaced to the caller"""

    category = "generation_error"
    transient: Optional[TransientError] = None


class ConfigurationMissing(GenerationError):
    category = "configuration_missing"


class ServiceNotFound(GenerationError):
    category = "configuration_missing"

    def __init__(self, service_id: str):
        super().__init__(f"Service not found in config: {service_id}")
        self.service_id = service_id


class NoToolsAvailable(GenerationError):
    category = "configuration_missing"

    def __init__(self, service_id: str):
        super().__init__(f"No tools available for service: {service_id}")
        self.service_id = service_id


class MissingTool(GenerationError):
    category = "configuration_missing"

    def __init__(self, tool_kind: str, service_id: str = ""):
        suffix = f" for service: {service_id}" if service_id else ""
        super().__init__(f"No {tool_kind} tool found{suffix}")
        self.tool_kind = tool_kind


class ServiceUnreachable(GenerationError):
    category = "service_unreachable"


class UnsupportedKind(GenerationError):
    category = "invalid_request"


class ProtocolError(GenerationError):
    category = "protocol_error"


class NoRequestId(ProtocolError):

    def __init__(self, message: str = "No request_id or direct media received from submit"):
        super().__init__(message)


class UnresolvedResult(ProtocolError):

    def __init__(self, last_text: Optional[str] = None):
        message = last_text.strip() if last_text else "Result did not include a downloadable URL"
        super().__init__(message)
        self.last_text = last_text


class BackendError(GenerationError):
    """Error payload reported by the backend for a tool call"""

    category = "backend_error"

    def __init__(self, message: str, transient: Optional[TransientError] = None):
        super().__init__(message)
        self.transient = transient


class GenerationFailed(GenerationError):
    category = "generation_failed"


class GenerationTimeout(GenerationError):
    category = "timeout"

    def __init__(self, elapsed_minutes: int, checks: int):
        super().__init__(
            f"Generation timeout - did not complete after {elapsed_minutes} minutes ({checks} status checks)"
        )
        self.elapsed_minutes = elapsed_minutes
        self.checks = checks


class JobCancelled(GenerationError):
    category = "cancelled"

    def __init__(self, message: str = "Generation cancelled"):
        super().__init__(message)


def classify_backend_error(text: str, kind: str, parameters: Dict[str, Any]) -> Optional[TransientError]:
    """
    Map backend error text to a retryable error kind

    Only two classes are retried; anything else is final.

    Args:
        text: Error text as reported by the backend or decoder
        kind: Job kind ("image" or "video")
        parameters: Request parameters of the attempt that failed

    Returns:
        TransientError member, or None when the error is not retryable
    """
    if not text:
        return None
    lowered = text.lower()
    if "aspect_ratio" in lowered and parameters.get("aspect_ratio"):
        return TransientError.ASPECT_RATIO_REJECTED
    if kind == "video" and FILE_TOO_SMALL_MARKER in lowered:
        return TransientError.FILE_TOO_SMALL
    return None
