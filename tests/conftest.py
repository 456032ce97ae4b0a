"""
Shared fixtures for the Tidepool Kit tests.
"""

from typing import Any, Callable, Dict, List, Optional
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest
import respx

from tidepool_kit import CANCELED, PRODUCTION, Session, TidepoolClient, TidepoolConfig


API_URL = "https://api.tidepool.org"
ISSUER = "https://auth.tidepool.org/realms/tidepool"
AUTHORIZATION_URL = f"{ISSUER}/protocol/openid-connect/auth"
TOKEN_URL = f"{ISSUER}/protocol/openid-connect/token"
REVOCATION_URL = f"{ISSUER}/protocol/openid-connect/revoke"
USERINFO_URL = f"{ISSUER}/protocol/openid-connect/userinfo"
REDIRECT_URI = "org.tidepool.tidepoolkit.auth://redirect"


def openid_configuration(**overrides: Any) -> Dict[str, Any]:
    configuration = {
        "issuer": ISSUER,
        "authorization_endpoint": AUTHORIZATION_URL,
        "token_endpoint": TOKEN_URL,
        "revocation_endpoint": REVOCATION_URL,
        "userinfo_endpoint": USERINFO_URL,
    }
    configuration.update(overrides)
    return {key: value for key, value in configuration.items() if value is not None}


def mock_discovery(**overrides: Any) -> None:
    """Mock ``/info`` and the OpenID configuration on the active respx router."""
    respx.get(f"{API_URL}/info").mock(
        return_value=httpx.Response(200, json={"auth": {"url": "https://auth.tidepool.org", "issuerURL": ISSUER}})
    )
    respx.get(f"{ISSUER}/.well-known/openid-configuration").mock(
        return_value=httpx.Response(200, json=openid_configuration(**overrides))
    )


def discovery_response(request: httpx.Request) -> Optional[httpx.Response]:
    """Answer discovery requests for ``httpx.MockTransport`` handlers."""
    url = str(request.url)
    if url == f"{API_URL}/info":
        return httpx.Response(200, json={"auth": {"issuerURL": ISSUER}})
    if url == f"{ISSUER}/.well-known/openid-configuration":
        return httpx.Response(200, json=openid_configuration())
    return None


def form(request: httpx.Request) -> Dict[str, str]:
    return {key: values[0] for key, values in parse_qs(request.content.decode()).items()}


class FakeUserAgent:
    """User agent double that answers with a redirect built from the authorization URL."""

    def __init__(self, respond: Callable[[Dict[str, str]], Any]) -> None:
        self._respond = respond
        self.urls: List[str] = []
        self.callback_schemes: List[str] = []

    async def authorize(self, url: str, callback_scheme: str) -> Any:
        self.urls.append(url)
        self.callback_schemes.append(callback_scheme)
        query = {key: values[0] for key, values in parse_qs(urlsplit(url).query).items()}
        return self._respond(query)


def redirect_with(**params: str) -> str:
    return REDIRECT_URI + "?" + "&".join(f"{key}={value}" for key, value in params.items())


@pytest.fixture
def config() -> TidepoolConfig:
    return TidepoolConfig(debug=True)


@pytest.fixture
def session() -> Session:
    return Session(
        environment=PRODUCTION,
        access_token="access-1",
        user_id="user-1",
        refresh_token="refresh-1",
    )


@pytest.fixture
def client(config: TidepoolConfig, session: Session) -> TidepoolClient:
    return TidepoolClient(config, session)


@pytest.fixture
def anonymous_client(config: TidepoolConfig) -> TidepoolClient:
    return TidepoolClient(config)


@pytest.fixture
def approving_agent() -> FakeUserAgent:
    return FakeUserAgent(lambda query: redirect_with(code="auth-code", state=query["state"]))


@pytest.fixture
def canceling_agent() -> FakeUserAgent:
    return FakeUserAgent(lambda query: CANCELED)
