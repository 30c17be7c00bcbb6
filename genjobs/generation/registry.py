"""
Registry of generation services

Resolves a logical service id (e.g. "t2v-kamui-wan-v2-2-5b-fast") to the
MCP endpoint that serves it, plus display metadata. Backed by the parsed
service-config document; reload() swaps in a whole new mapping so readers
never observe a half-updated registry.
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Dict, Any, List, Optional, Union

from ..core.config import MCP_CONFIG_CANDIDATES, DEFAULT_IMAGE_SERVICE, DEFAULT_VIDEO_SERVICE
from ..core.exceptions import ConfigurationMissing, ServiceNotFound

logger = logging.getLogger(__name__)

SERVICE_KINDS = ("image", "video")

CONFIG_GUIDANCE = "No generation server (MCP) is configured. Register an MCP service config to generate media."


@dataclass(frozen=True)
class ServiceEndpoint:
    id: str
    endpoint_url: str
    kind: str
    name: str
    description: str = ""
    tags: List[str] = field(default_factory=list)
    provider: str = "http"

    @property
    def is_fast(self) -> bool:
        return "fast" in self.id.lower()

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["url"] = data.pop("endpoint_url")
        data["type"] = data.pop("kind")
        return data


def get_service_kind(service_id: str, server_config: Optional[Dict[str, Any]] = None) -> str:
    """Infer the media kind of a service from explicit config or its id prefix"""
    explicit = (server_config or {}).get("kind")
    if explicit in SERVICE_KINDS:
        return explicit
    if service_id.startswith("t2i-"):
        return "image"
    if service_id.startswith("t2v-"):
        return "video"
    return "other"


def derive_service_name(service_id: str, server_config: Dict[str, Any]) -> str:
    """Pick a display name: name, displayName, leading part of description, then id"""
    if server_config.get("name"):
        return server_config["name"]
    if server_config.get("displayName"):
        return server_config["displayName"]
    description = server_config.get("description") or ""
    if description:
        short = description.split(" via ")[0].split(" - ")[0].strip()
        if short:
            return short
    return service_id


def build_service_endpoint(service_id: str, server_config: Dict[str, Any]) -> ServiceEndpoint:
    return ServiceEndpoint(
        id=service_id,
        endpoint_url=server_config.get("url", ""),
        kind=get_service_kind(service_id, server_config),
        name=derive_service_name(service_id, server_config),
        description=server_config.get("description", ""),
        tags=list(server_config.get("tags") or []),
        provider=server_config.get("provider") or server_config.get("type") or "http"
    )


def load_service_config(config_path: Union[str, Path]) -> Dict[str, Any]:
    """
    Load the MCP service-config document from disk

    Args:
        config_path: Path to the JSON file, or to a directory containing one
            of the known config file names

    Returns:
        Parsed document ({"mcpServers": {...}})

    Raises:
        ConfigurationMissing: If the path is empty, missing or not valid JSON
    """
    if not config_path:
        raise ConfigurationMissing(f"{CONFIG_GUIDANCE} (config path is empty)")

    target = Path(config_path).expanduser()
    if target.is_dir():
        for candidate in MCP_CONFIG_CANDIDATES:
            if (target / candidate).exists():
                target = target / candidate
                logger.info(f"[Registry] Resolved MCP config directory to file: {target}")
                break

    if not target.is_file():
        raise ConfigurationMissing(f"{CONFIG_GUIDANCE} (config file not found at {target})")

    try:
        raw = target.read_text(encoding="utf-8").lstrip("\ufeff")
        return json.loads(raw)
    except (OSError, ValueError) as e:
        raise ConfigurationMissing(f"{CONFIG_GUIDANCE} (failed to load config at {target}: {e})") from e


class ServiceRegistry:
    """Read-mostly lookup of service id -> endpoint metadata"""

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        default_services: Optional[Dict[str, Optional[str]]] = None
    ):
        self._services: Dict[str, Dict[str, Any]] = {}
        self._defaults = default_services if default_services is not None else {
            "image": DEFAULT_IMAGE_SERVICE,
            "video": DEFAULT_VIDEO_SERVICE
        }
        if config is not None:
            self.reload(config)

    @classmethod
    def from_config_file(cls, config_path: Union[str, Path], **kwargs) -> "ServiceRegistry":
        return cls(load_service_config(config_path), **kwargs)

    def reload(self, config: Dict[str, Any]) -> None:
        """Replace the whole mapping (accepts the document or its mcpServers section)"""
        servers = config.get("mcpServers", config) if isinstance(config, dict) else {}
        fresh = {service_id: dict(server) for service_id, server in servers.items() if isinstance(server, dict)}
        self._services = fresh
        logger.info(f"[Registry] Loaded {len(fresh)} services")

    def resolve(self, service_id: str) -> ServiceEndpoint:
        server_config = self._services.get(service_id)
        if not server_config or not server_config.get("url"):
            raise ServiceNotFound(service_id)
        return build_service_endpoint(service_id, server_config)

    def services_by_kind(self, kind: str) -> List[ServiceEndpoint]:
        services = self._services
        endpoints = [
            build_service_endpoint(service_id, server_config)
            for service_id, server_config in services.items()
        ]
        matching = [endpoint for endpoint in endpoints if endpoint.kind == kind]
        return sorted(matching, key=lambda endpoint: endpoint.name.lower())

    def summary(self) -> Dict[str, List[Dict[str, Any]]]:
        return {kind: [s.to_dict() for s in self.services_by_kind(kind)] for kind in (*SERVICE_KINDS, "other")}

    def default_service(self, kind: str) -> str:
        """Configured default for the kind, else the first registered service of that kind"""
        configured = self._defaults.get(kind)
        if configured:
            return configured
        services = self.services_by_kind(kind)
        if not services:
            raise ServiceNotFound(f"<default {kind} service>")
        return services[0].id

    def __contains__(self, service_id: str) -> bool:
        return service_id in self._services

    def __len__(self) -> int:
        return len(self._services)
