"""
Tidepool Kit Environments

An environment is one reachable deployment of the Tidepool service.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from .errors import InvalidURL, ResponseUnexpectedJSON
from .responses import dispatch, handle_response


@dataclass(frozen=True)
class Environment:
    """A host/port pair. Equality ignores the label."""

    host: str
    port: int = 443
    label: str = field(default="", compare=False)

    @property
    def url(self) -> str:
        if self.port == 443:
            return f"https://{self.host}"
        return f"https://{self.host}:{self.port}"

    @property
    def description(self) -> str:
        if self.label:
            return self.label
        return self.host if self.port == 443 else f"{self.host}:{self.port}"

    def to_dict(self) -> Dict[str, Any]:
        return {"host": self.host, "port": self.port, "label": self.label}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Environment":
        host = data["host"]
        port = data.get("port", 443)
        if not isinstance(host, str) or not host:
            raise ValueError("host must be a non-empty string")
        if isinstance(port, str):
            port = int(port)
        if not isinstance(port, int) or not 0 < port < 65536:
            raise ValueError(f"invalid port: {port!r}")
        return cls(host=host, port=port, label=data.get("label") or data.get("description") or "")

    def __str__(self) -> str:
        return self.description


PRODUCTION = Environment("api.tidepool.org", 443, "Production")

DEFAULT_ENVIRONMENTS: Tuple[Environment, ...] = (
    PRODUCTION,
    Environment("int-api.tidepool.org", 443, "Integration"),
    Environment("qa1.development.tidepool.org", 443, "QA 1"),
    Environment("qa2.development.tidepool.org", 443, "QA 2"),
    Environment("dev1.dev.tidepool.org", 443, "Development 1"),
)


class EnvironmentRegistry:
    """Read-only set of environments with a default."""

    def __init__(
        self,
        environments: Iterable[Environment] = DEFAULT_ENVIRONMENTS,
        default: Optional[Environment] = None,
    ) -> None:
        self._environments: Tuple[Environment, ...] = tuple(dict.fromkeys(environments))
        if default is None and self._environments:
            default = PRODUCTION if PRODUCTION in self._environments else self._environments[0]
        self._default = default

    @property
    def environments(self) -> List[Environment]:
        return list(self._environments)

    @property
    def default(self) -> Optional[Environment]:
        return self._default

    def find(self, host: str, port: Optional[int] = None) -> Optional[Environment]:
        for environment in self._environments:
            if environment.host == host and (port is None or environment.port == port):
                return environment
        return None

    def __contains__(self, environment: object) -> bool:
        return environment in self._environments

    def __iter__(self):
        return iter(self._environments)

    def __len__(self) -> int:
        return len(self._environments)

    @classmethod
    async def fetch(
        cls,
        url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        default_host: Optional[str] = None,
    ) -> "EnvironmentRegistry":
        """
        Build a registry from a JSON list of ``{host, port, label}`` objects.

        Accepts either a bare list or ``{"environments": [...]}``.
        """
        try:
            target = httpx.URL(url)
        except httpx.InvalidURL as e:
            raise InvalidURL(url) from e
        if target.scheme not in ("http", "https") or not target.host:
            raise InvalidURL(url)

        owns_client = http_client is None
        client = http_client or httpx.AsyncClient()
        try:
            request = client.build_request("GET", target, headers={"Accept": "application/json"})
            response = await dispatch(client, request)
        finally:
            if owns_client:
                await client.aclose()

        def parse(payload: Any) -> List[Environment]:
            entries = payload.get("environments") if isinstance(payload, dict) else payload
            if not isinstance(entries, list):
                raise TypeError("expected a list of environments")
            return [Environment.from_dict(entry) for entry in entries]

        environments = handle_response(response, parse)
        if not environments:
            raise ResponseUnexpectedJSON(response, response.content)

        registry = cls(environments)
        if default_host:
            registry._default = registry.find(default_host) or registry._default
        return registry
