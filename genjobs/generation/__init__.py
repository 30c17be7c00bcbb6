"""Generation job orchestration: registry, tool binding, decoding, polling and media"""

from .registry import ServiceRegistry, ServiceEndpoint, load_service_config
from .client_mcp import ToolBinding, ToolResponse, ToolSession
from .media import MediaFetcher
from .orchestrator import JobOrchestrator

__all__ = [
    'ServiceRegistry',
    'ServiceEndpoint',
    'load_service_config',
    'ToolBinding',
    'ToolResponse',
    'ToolSession',
    'MediaFetcher',
    'JobOrchestrator'
]
