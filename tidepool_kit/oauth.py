"""
Tidepool Kit OAuth2

Authorization-code login with PKCE, plus the token endpoint calls shared
with the token refresher.

The user agent (browser, embedded web view, test double) is supplied by the
caller. It receives the authorization URL and resolves to the redirect URL,
or to ``CANCELED`` when the user backs out.
"""

import base64
import hashlib
import json
import logging
import secrets
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol, Union, runtime_checkable
from urllib.parse import parse_qs, urlencode, urlsplit

import httpx

from .environment import Environment
from .errors import (
    AuthenticationError,
    LoginCanceled,
    MissingAuthenticationCode,
    MissingAuthenticationConfiguration,
    MissingAuthenticationIssuer,
    MissingAuthenticationState,
    MissingAuthenticationToken,
    NetworkError,
    RequestMalformed,
    RequestNotAuthenticated,
    TidepoolError,
)
from .request_builder import RequestBuilder
from .responses import dispatch, handle_response
from .session import SessionStore
from .types import Info, Session, TidepoolConfig


logger = logging.getLogger("tidepool_kit")

# OAuth2 error codes that mean the presented credentials were rejected
REJECTED_GRANT_ERRORS = frozenset({"invalid_grant", "invalid_client", "unauthorized_client"})


class Cancellation:
    """Tag returned by a user agent when the user cancels."""

    def __repr__(self) -> str:
        return "CANCELED"


CANCELED = Cancellation()

UserAgentResult = Union[str, Cancellation]


@runtime_checkable
class UserAgent(Protocol):
    """Presents the authorization URL to the user."""

    async def authorize(self, url: str, callback_scheme: str) -> UserAgentResult:
        """Return the redirect URL, or ``CANCELED``."""
        ...


# =============================================================================
# PKCE
# =============================================================================

def generate_code_verifier() -> str:
    return secrets.token_urlsafe(64)[:128]


def code_challenge_s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def generate_state() -> str:
    return secrets.token_urlsafe(32)


# =============================================================================
# Discovery
# =============================================================================

@dataclass(frozen=True)
class AuthConfiguration:
    """OpenID provider endpoints for one environment."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    revocation_endpoint: Optional[str] = None
    userinfo_endpoint: Optional[str] = None
    end_session_endpoint: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuthConfiguration":
        if not isinstance(data, dict):
            raise TypeError("configuration must be an object")
        for key in ("issuer", "authorization_endpoint", "token_endpoint"):
            if not isinstance(data.get(key), str):
                raise KeyError(key)
        return cls(
            issuer=data["issuer"],
            authorization_endpoint=data["authorization_endpoint"],
            token_endpoint=data["token_endpoint"],
            revocation_endpoint=data.get("revocation_endpoint"),
            userinfo_endpoint=data.get("userinfo_endpoint"),
            end_session_endpoint=data.get("end_session_endpoint"),
        )


class AuthenticationDiscovery:
    """Resolves and caches the OpenID configuration of each environment."""

    def __init__(self, http_client: httpx.AsyncClient, builder: RequestBuilder) -> None:
        self._http_client = http_client
        self._builder = builder
        self._cache: Dict[Environment, AuthConfiguration] = {}

    async def get_info(self, environment: Environment) -> Info:
        request = self._builder.build_unauthenticated("GET", f"{environment.url}/info")
        response = await dispatch(self._http_client, request)
        return handle_response(response, Info.from_dict)

    async def configuration(self, environment: Environment) -> AuthConfiguration:
        cached = self._cache.get(environment)
        if cached is not None:
            return cached

        info = await self.get_info(environment)
        if not info.issuer_url:
            raise MissingAuthenticationIssuer()

        url = f"{info.issuer_url.rstrip('/')}/.well-known/openid-configuration"
        request = self._builder.build_unauthenticated("GET", url)
        response = await dispatch(self._http_client, request)
        try:
            configuration = handle_response(response, AuthConfiguration.from_dict)
        except TidepoolError as e:
            if isinstance(e, (MissingAuthenticationConfiguration, NetworkError)):
                raise
            raise MissingAuthenticationConfiguration({"issuer": info.issuer_url, "cause": e.code}) from e

        logger.debug("[Tidepool] Discovered authentication configuration for %s", environment)
        self._cache[environment] = configuration
        return configuration


# =============================================================================
# Token endpoint
# =============================================================================

@dataclass(frozen=True)
class TokenResponse:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[float] = None
    id_token: Optional[str] = None
    token_type: str = "Bearer"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TokenResponse":
        if not isinstance(data, dict):
            raise TypeError("token response must be an object")
        access_token = data.get("access_token")
        if not isinstance(access_token, str) or not access_token:
            raise MissingAuthenticationToken()
        expires_in = data.get("expires_in")
        return cls(
            access_token=access_token,
            refresh_token=data.get("refresh_token"),
            expires_in=float(expires_in) if isinstance(expires_in, (int, float)) else None,
            id_token=data.get("id_token"),
            token_type=data.get("token_type", "Bearer"),
        )


def _oauth_error(data: Optional[bytes]) -> Optional[Dict[str, Any]]:
    if not data:
        return None
    try:
        payload = json.loads(data)
    except (ValueError, RecursionError):
        return None
    if isinstance(payload, dict) and isinstance(payload.get("error"), str):
        return payload
    return None


async def post_token_endpoint(
    http_client: httpx.AsyncClient,
    builder: RequestBuilder,
    url: str,
    form: Dict[str, str],
    json_required: bool = True,
) -> Any:
    """
    POST a form to a token-style endpoint and classify the result.

    Rejected grants are reported as ``RequestNotAuthenticated``; any other
    OAuth2 error body becomes ``AuthenticationError``.
    """
    request = builder.build_unauthenticated(
        "POST",
        url,
        form=form,
        headers={"Content-Type": "application/x-www-form-urlencoded"},
    )
    response = await dispatch(http_client, request)
    try:
        return handle_response(
            response,
            TokenResponse.from_dict if json_required else None,
            json_required=json_required,
        )
    except RequestMalformed as e:
        error = _oauth_error(e.data)
        if error is None:
            raise
        if error["error"] in REJECTED_GRANT_ERRORS:
            raise RequestNotAuthenticated(response, e.data) from e
        raise AuthenticationError(error.get("error_description") or error["error"]) from e


# =============================================================================
# Authenticator
# =============================================================================

class OAuth2Authenticator:
    """
    Drives one authorization-code login against an environment.

    On success the new session is placed in the session store. A canceled
    or failed login leaves the store untouched.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        builder: RequestBuilder,
        discovery: AuthenticationDiscovery,
        store: SessionStore,
        config: TidepoolConfig,
        environment: Environment,
        user_agent: UserAgent,
    ) -> None:
        self._http_client = http_client
        self._builder = builder
        self._discovery = discovery
        self._store = store
        self._config = config
        self._environment = environment
        self._user_agent = user_agent

    def authorization_url(self, configuration: AuthConfiguration, state: str, code_verifier: str) -> str:
        query = urlencode({
            "response_type": "code",
            "client_id": self._config.client_id,
            "redirect_uri": self._config.redirect_uri,
            "scope": " ".join(self._config.scopes),
            "state": state,
            "code_challenge": code_challenge_s256(code_verifier),
            "code_challenge_method": "S256",
        })
        separator = "&" if "?" in configuration.authorization_endpoint else "?"
        return f"{configuration.authorization_endpoint}{separator}{query}"

    async def login(self) -> Session:
        """
        Run the login flow.

        Raises:
            LoginCanceled: If the user agent reports cancellation.
            AuthenticationError: If the server rejects the login or the state does not match.
            AuthenticationConfigurationMissing: If a required piece of the flow is absent.
        """
        configuration = await self._discovery.configuration(self._environment)
        state = generate_state()
        code_verifier = generate_code_verifier()
        url = self.authorization_url(configuration, state, code_verifier)

        logger.info("[Tidepool] Starting login for %s", self._environment)
        result = await self._user_agent.authorize(url, self._config.redirect_scheme)
        if result is None or isinstance(result, Cancellation):
            logger.info("[Tidepool] Login canceled")
            raise LoginCanceled()

        code = self._extract_code(result, state)
        tokens = await post_token_endpoint(
            self._http_client,
            self._builder,
            configuration.token_endpoint,
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self._config.redirect_uri,
                "client_id": self._config.client_id,
                "code_verifier": code_verifier,
            },
        )

        user_id = await self._fetch_user_id(configuration, tokens.access_token)
        session = Session(
            environment=self._environment,
            access_token=tokens.access_token,
            refresh_token=tokens.refresh_token,
            user_id=user_id,
            expires_at=time.time() + tokens.expires_in if tokens.expires_in else None,
        )
        self._store.replace(session)
        logger.info("[Tidepool] Login successful")
        return session

    @staticmethod
    def _extract_code(redirect_url: str, expected_state: str) -> str:
        query = parse_qs(urlsplit(redirect_url).query)

        def first(name: str) -> Optional[str]:
            values = query.get(name)
            return values[0] if values else None

        error = first("error")
        if error:
            raise AuthenticationError(first("error_description") or error)

        state = first("state")
        if not state:
            raise MissingAuthenticationState()
        if not secrets.compare_digest(state, expected_state):
            raise AuthenticationError("State mismatch")

        code = first("code")
        if not code:
            raise MissingAuthenticationCode()
        return code

    async def _fetch_user_id(self, configuration: AuthConfiguration, access_token: str) -> str:
        if not configuration.userinfo_endpoint:
            raise MissingAuthenticationConfiguration({"missing": "userinfo_endpoint"})

        request = self._builder.build_unauthenticated(
            "GET",
            configuration.userinfo_endpoint,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        response = await dispatch(self._http_client, request)

        def parse(payload: Any) -> str:
            subject = payload["sub"]
            if not isinstance(subject, str) or not subject:
                raise ValueError("sub must be a non-empty string")
            return subject

        return handle_response(response, parse)
