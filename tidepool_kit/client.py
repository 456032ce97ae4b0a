"""
Tidepool Kit Client

Async client for the Tidepool service. Every authenticated call is signed
with the current session; a 401 triggers at most one refresh and one retry.
"""

import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import httpx

from .bulk import DatumBatch, partition_data, require_well_formed
from .environment import Environment, EnvironmentRegistry
from .errors import ConfigurationError, RequestInvalid, RequestNotAuthenticated, TidepoolError
from .oauth import AuthenticationDiscovery, OAuth2Authenticator, UserAgent
from .request_builder import BuiltRequest, RequestBuilder
from .refresher import TokenRefresher
from .responses import dispatch, handle_response
from .session import SessionObserver, SessionStore
from .types import (
    DataSet,
    DataSetFilter,
    Datum,
    DatumFilter,
    Info,
    MalformedEntry,
    Profile,
    Selector,
    Session,
    TidepoolConfig,
)


logger = logging.getLogger("tidepool_kit")

T = TypeVar("T")


def _data_envelope(payload: Any) -> Any:
    """Unwrap ``{"data": ...}`` responses."""
    if isinstance(payload, dict) and "data" in payload:
        return payload["data"]
    return payload


def _as_list(payload: Any) -> List[Any]:
    payload = _data_envelope(payload)
    if not isinstance(payload, list):
        raise TypeError("expected a JSON array")
    return payload


class TidepoolClient:
    """
    Tidepool Client - async SDK entry point.

    Owns the session store, the token refresher and the HTTP transport.
    """

    def __init__(
        self,
        config: Optional[TidepoolConfig] = None,
        session: Optional[Session] = None,
        environments: Optional[EnvironmentRegistry] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """Initialize the Tidepool client."""
        config = config or TidepoolConfig()
        self._validate_config(config)

        self._config = config
        self._debug = config.debug
        self._environments = environments or EnvironmentRegistry()
        self._owns_http_client = http_client is None
        self._http_client = http_client or httpx.AsyncClient(timeout=config.timeout)

        self._store = SessionStore(session)
        self._builder = RequestBuilder(self._http_client, self._store, config)
        self._discovery = AuthenticationDiscovery(self._http_client, self._builder)
        self._refresher = TokenRefresher(self._http_client, self._builder, self._discovery, self._store, config)

        self._log("TidepoolClient initialized (session=%s)", session is not None)

    def _validate_config(self, config: TidepoolConfig) -> None:
        """Validate configuration."""
        if not config.client_id:
            raise ConfigurationError("client_id is required")
        if not config.redirect_scheme:
            raise ConfigurationError("Invalid redirect_uri. Expected <scheme>://<path>")
        if config.timeout <= 0:
            raise ConfigurationError("timeout must be positive")

    def _log(self, message: str, *args: Any) -> None:
        """Log debug message."""
        if self._debug:
            logger.debug(f"[Tidepool] {message}", *args)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def session_store(self) -> SessionStore:
        return self._store

    @property
    def session(self) -> Optional[Session]:
        return self._store.current()

    @property
    def environments(self) -> EnvironmentRegistry:
        return self._environments

    @property
    def default_environment(self) -> Optional[Environment]:
        return self._config.environment or self._environments.default

    def is_authenticated(self) -> bool:
        return self._store.current() is not None

    def add_observer(self, observer: SessionObserver) -> int:
        """Subscribe to session changes. Returns a handle for ``remove_observer``."""
        return self._store.subscribe(observer)

    def remove_observer(self, handle: int) -> None:
        self._store.unsubscribe(handle)

    # =========================================================================
    # Authentication
    # =========================================================================

    def authenticator(self, user_agent: UserAgent, environment: Optional[Environment] = None) -> OAuth2Authenticator:
        environment = environment or self.default_environment
        if environment is None:
            raise ConfigurationError("No environment available for login")
        return OAuth2Authenticator(
            self._http_client,
            self._builder,
            self._discovery,
            self._store,
            self._config,
            environment,
            user_agent,
        )

    async def login(self, user_agent: UserAgent, environment: Optional[Environment] = None) -> Session:
        """
        Log in through the OAuth2 authorization-code flow.

        Args:
            user_agent: Presents the authorization URL and returns the redirect.
            environment: Environment to log in to (default: configured default).

        Returns:
            The new session, also placed in the session store.
        """
        return await self.authenticator(user_agent, environment).login()

    async def refresh_session(self) -> Session:
        """Refresh the current session's tokens."""
        return await self._refresher.refresh_if_needed()

    async def revoke_tokens(self) -> None:
        """Revoke tokens on the server. The local session is always cleared."""
        await self._refresher.revoke()

    async def logout(self) -> None:
        """Logout the current user. Server-side revocation failures are logged, not raised."""
        self._log("Logout")
        try:
            await self._refresher.revoke()
        except TidepoolError as e:
            logger.warning("[Tidepool] Token revocation failed during logout: %s", e.code)

    async def get_info(self, environment: Optional[Environment] = None) -> Info:
        environment = environment or self.default_environment
        if environment is None:
            raise ConfigurationError("No environment available")
        return await self._discovery.get_info(environment)

    # =========================================================================
    # Profile
    # =========================================================================

    async def get_profile(self, user_id: Optional[str] = None) -> Profile:
        """Fetch the profile of the session user, or of ``user_id``."""
        return await self._request(
            "GET",
            lambda session: f"/metadata/{user_id or session.user_id}/profile",
            parse=Profile.from_dict,
        )

    # =========================================================================
    # Data sets
    # =========================================================================

    async def list_data_sets(self, filter: Optional[DataSetFilter] = None, user_id: Optional[str] = None) -> List[DataSet]:
        """
        List data sets.

        Raises:
            ResponseMalformed: If any returned data set fails to decode.
        """
        entries = await self._request(
            "GET",
            lambda session: f"/v1/users/{user_id or session.user_id}/data_sets",
            params=(filter or DataSetFilter()).to_params(),
            parse=_as_list,
        )
        return require_well_formed(entries, DataSet.from_dict)

    async def create_data_set(self, data_set: DataSet, user_id: Optional[str] = None) -> DataSet:
        """Create a data set and return it bound to its server identifier."""
        entry = await self._request(
            "POST",
            lambda session: f"/v1/users/{user_id or session.user_id}/data_sets",
            body=data_set.to_dict(),
            parse=_data_envelope,
        )
        created = require_well_formed([entry], DataSet.from_dict)[0]
        self._log("Created data set %s", created.upload_id)
        return created

    # =========================================================================
    # Data
    # =========================================================================

    async def list_data(
        self,
        filter: Optional[DatumFilter] = None,
        user_id: Optional[str] = None,
    ) -> Tuple[List[Datum], List[MalformedEntry]]:
        """
        List data points.

        Returns:
            The well-formed data and the malformed records, separately.
        """
        entries = await self._request(
            "GET",
            lambda session: f"/data/{user_id or session.user_id}",
            params=(filter or DatumFilter()).to_params(),
            parse=_as_list,
        )
        data, malformed = partition_data(entries)
        if malformed:
            logger.warning("[Tidepool] %d of %d returned data are malformed", len(malformed), len(entries))
        return data, malformed

    async def create_data(self, data: Sequence[Datum], data_set_id: str) -> None:
        """
        Upload data to a data set.

        Raises:
            RequestMalformedJSON: If the service rejects the batch with error details.
        """
        if not data_set_id:
            raise RequestInvalid("data_set_id is required")
        await self._request(
            "POST",
            lambda session: f"/v1/datasets/{data_set_id}/data",
            body=[datum.to_dict() for datum in data],
            json_required=False,
        )

    async def delete_data(self, selectors: Sequence[Selector], data_set_id: str) -> None:
        """Delete data addressed by ``selectors`` from a data set."""
        if not data_set_id:
            raise RequestInvalid("data_set_id is required")
        await self._request(
            "DELETE",
            lambda session: f"/v1/datasets/{data_set_id}/data",
            body=[selector.to_dict() for selector in selectors],
            json_required=False,
        )

    def data_batch(self, data_set_id: str) -> DatumBatch:
        """Start a call-scoped batch that tracks selectors for created data."""
        return DatumBatch(self, data_set_id)

    # =========================================================================
    # Internal Methods
    # =========================================================================

    async def _request(
        self,
        method: str,
        path: Callable[[Session], str],
        params: Optional[Dict[str, str]] = None,
        body: Any = None,
        parse: Optional[Callable[[Any], T]] = None,
        json_required: bool = True,
    ) -> Any:
        """Make an authenticated request, refreshing and retrying once on a 401."""
        built = self._builder.build(method, path, params=params, body=body)
        try:
            return await self._execute(built, parse, json_required)
        except RequestNotAuthenticated:
            session = built.session
            if session is None or not session.refresh_token:
                raise
            self._log("%s %s not authenticated, refreshing", method, built.request.url.path)

        await self._refresher.refresh_if_needed(stale=session)
        retry = self._builder.build(method, path, params=params, body=body)
        return await self._execute(retry, parse, json_required)

    async def _execute(self, built: BuiltRequest, parse: Optional[Callable[[Any], T]], json_required: bool) -> Any:
        self._log("%s %s", built.request.method, built.request.url)
        response = await dispatch(self._http_client, built.request)
        return handle_response(response, parse, json_required=json_required)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._owns_http_client:
            await self._http_client.aclose()

    async def __aenter__(self) -> "TidepoolClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


def create_tidepool_client(
    config: Optional[TidepoolConfig] = None,
    session: Optional[Session] = None,
    **kwargs: Any,
) -> TidepoolClient:
    """Create a Tidepool client."""
    return TidepoolClient(config, session, **kwargs)
