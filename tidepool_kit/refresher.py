"""
Tidepool Kit Token Refresher

Refresh and revoke coordination. At most one refresh or revoke runs at a
time per session store; concurrent callers join the operation already in
flight instead of starting their own.
"""

import asyncio
import logging
from typing import Awaitable, Optional

import httpx

from .errors import (
    MissingAuthenticationConfiguration,
    RefreshTokenMissing,
    RequestNotAuthenticated,
    SessionMissing,
    TidepoolError,
)
from .oauth import AuthenticationDiscovery, post_token_endpoint
from .request_builder import RequestBuilder
from .session import SessionStore
from .types import Session, TidepoolConfig


logger = logging.getLogger("tidepool_kit")


class TokenRefresher:
    """Single-flight refresh/revoke coordinator bound to one session store."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        builder: RequestBuilder,
        discovery: AuthenticationDiscovery,
        store: SessionStore,
        config: TidepoolConfig,
    ) -> None:
        self._http_client = http_client
        self._builder = builder
        self._discovery = discovery
        self._store = store
        self._config = config
        self._lock = asyncio.Lock()
        self._in_flight: Optional["asyncio.Task[Optional[Session]]"] = None
        self._in_flight_kind: Optional[str] = None

    @property
    def is_refreshing(self) -> bool:
        return self._in_flight is not None and self._in_flight_kind == "refresh"

    async def refresh_if_needed(self, stale: Optional[Session] = None) -> Session:
        """
        Refresh the current session, or join the refresh already in flight.

        Args:
            stale: The session a failed request was signed with. If the store
                already holds a newer session for the same user, that session
                is returned without another network refresh.

        Raises:
            SessionMissing: If there is no session.
            RefreshTokenMissing: If the session has no refresh token.
        """
        async with self._lock:
            task = self._in_flight
            kind = self._in_flight_kind
            if task is None:
                current = self._store.current()
                if current is None:
                    raise SessionMissing()
                if (
                    stale is not None
                    and current is not stale
                    and current.user_id == stale.user_id
                    and current.access_token != stale.access_token
                ):
                    logger.debug("[Tidepool] Session already refreshed, skipping refresh")
                    return current
                if not current.refresh_token:
                    raise RefreshTokenMissing()
                kind = "refresh"
                task = self._start(kind, self._refresh(current))
            else:
                logger.debug("[Tidepool] Joining %s in flight", kind)

        if kind == "revoke":
            await asyncio.gather(asyncio.shield(task), return_exceptions=True)
            raise SessionMissing()

        session = await asyncio.shield(task)
        if session is None:
            raise SessionMissing()
        return session

    async def revoke(self) -> None:
        """
        Revoke the session's tokens on the server, then clear it locally.

        The local session is cleared whatever the server outcome; a server or
        network failure is still raised to the caller.
        """
        while True:
            async with self._lock:
                task = self._in_flight
                if task is None:
                    task = self._start("revoke", self._revoke(self._store.current()))
                    break
                if self._in_flight_kind == "revoke":
                    break
            # Let the refresh in flight settle before revoking
            await asyncio.gather(asyncio.shield(task), return_exceptions=True)

        await asyncio.shield(task)

    def _start(self, kind: str, coroutine: Awaitable[Optional[Session]]) -> "asyncio.Task[Optional[Session]]":
        task = asyncio.ensure_future(self._run(coroutine))
        self._in_flight = task
        self._in_flight_kind = kind
        return task

    async def _run(self, coroutine: Awaitable[Optional[Session]]) -> Optional[Session]:
        try:
            return await coroutine
        finally:
            if self._in_flight is asyncio.current_task():
                self._in_flight = None
                self._in_flight_kind = None

    async def _refresh(self, session: Session) -> Session:
        logger.info("[Tidepool] Refreshing session")
        try:
            configuration = await self._discovery.configuration(session.environment)
            tokens = await post_token_endpoint(
                self._http_client,
                self._builder,
                configuration.token_endpoint,
                {
                    "grant_type": "refresh_token",
                    "refresh_token": session.refresh_token or "",
                    "client_id": self._config.client_id,
                },
            )
        except RequestNotAuthenticated:
            logger.warning("[Tidepool] Refresh rejected, clearing session")
            self._store.replace(None, expected=session)
            raise
        except TidepoolError as e:
            logger.warning("[Tidepool] Refresh failed: %s", e.code)
            raise

        refreshed = session.refreshed(tokens.access_token, tokens.refresh_token, tokens.expires_in)
        if not self._store.replace(refreshed, expected=session):
            # Superseded by a login or logout while the refresh was running
            current = self._store.current()
            if current is None:
                raise SessionMissing()
            return current
        logger.info("[Tidepool] Session refreshed")
        return refreshed

    async def _revoke(self, session: Optional[Session]) -> None:
        if session is None:
            return

        logger.info("[Tidepool] Revoking session tokens")
        try:
            configuration = await self._discovery.configuration(session.environment)
            if not configuration.revocation_endpoint:
                raise MissingAuthenticationConfiguration({"missing": "revocation_endpoint"})
            tokens = [(session.refresh_token, "refresh_token"), (session.access_token, "access_token")]
            for token, hint in tokens:
                if not token:
                    continue
                await post_token_endpoint(
                    self._http_client,
                    self._builder,
                    configuration.revocation_endpoint,
                    {"token": token, "token_type_hint": hint, "client_id": self._config.client_id},
                    json_required=False,
                )
        finally:
            # A login that finished during the revoke keeps its new session
            self._store.replace(None, expected=session)
