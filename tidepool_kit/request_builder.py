"""
Tidepool Kit Request Builder

Builds ``httpx.Request`` objects. Authenticated requests take their token
from the session store at build time.
"""

import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Union

import httpx

from .errors import InvalidURL, RequestInvalid, SessionMissing
from .session import SessionStore
from .types import Session, TidepoolConfig


TRACE_SESSION_HEADER = "X-Tidepool-Trace-Session"
TRACE_REQUEST_HEADER = "X-Tidepool-Trace-Request"


@dataclass(frozen=True)
class BuiltRequest:
    """A request and the session snapshot it was signed with."""

    request: httpx.Request
    session: Optional[Session]


class RequestBuilder:
    def __init__(self, http_client: httpx.AsyncClient, store: SessionStore, config: TidepoolConfig) -> None:
        self._http_client = http_client
        self._store = store
        self._config = config

    def _base_headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": self._config.user_agent,
            TRACE_REQUEST_HEADER: uuid.uuid4().hex,
            **(self._config.headers or {}),
        }

    def build(
        self,
        method: str,
        path: Union[str, Callable[[Session], str]],
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
    ) -> BuiltRequest:
        """
        Build a request against the current session's environment.

        ``path`` may be a callable taking the session, for paths that embed
        the session user.

        Raises:
            SessionMissing: If there is no session.
        """
        session = self._store.current()
        if session is None:
            raise SessionMissing()

        headers = self._base_headers()
        headers["Authorization"] = f"Bearer {session.access_token}"
        headers[TRACE_SESSION_HEADER] = session.trace

        if callable(path):
            path = path(session)
        request = self._build(method, f"{session.environment.url}{path}", headers, params=params, json=body)
        return BuiltRequest(request, session)

    def build_unauthenticated(
        self,
        method: str,
        url: str,
        params: Optional[Dict[str, str]] = None,
        form: Optional[Dict[str, str]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Request:
        """Build a request that carries no session token, such as discovery or token calls."""
        merged = self._base_headers()
        merged.update(headers or {})
        return self._build(method, url, merged, params=params, data=form)

    def _build(self, method: str, url: str, headers: Dict[str, str], **kwargs: Any) -> httpx.Request:
        kwargs = {key: value for key, value in kwargs.items() if value is not None}
        try:
            return self._http_client.build_request(method, url, headers=headers, **kwargs)
        except httpx.InvalidURL as e:
            raise InvalidURL(url) from e
        except (TypeError, ValueError) as e:
            raise RequestInvalid(details={"reason": str(e)}) from e
