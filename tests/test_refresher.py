"""
Tests for token refresh and revocation.
"""

import asyncio
from typing import List, Optional

import httpx
import pytest
import respx

from conftest import REVOCATION_URL, TOKEN_URL, discovery_response, form, mock_discovery
from tidepool_kit import PRODUCTION, Session, TidepoolClient, TidepoolConfig
from tidepool_kit.errors import (
    NetworkError,
    RefreshTokenMissing,
    RequestMalformed,
    RequestNotAuthenticated,
    ResponseUnexpectedStatusCode,
    SessionMissing,
)


def counting_client(session: Session, token_responses: List[httpx.Response], delay: float = 0.01):
    """Client whose token endpoint answers slowly and records each call."""
    calls: List[httpx.Request] = []
    responses = iter(token_responses)

    async def handler(request: httpx.Request) -> httpx.Response:
        discovered = discovery_response(request)
        if discovered is not None:
            return discovered
        assert str(request.url) == TOKEN_URL
        calls.append(request)
        await asyncio.sleep(delay)
        return next(responses)

    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TidepoolClient(TidepoolConfig(), session, http_client=http_client), calls


class TestRefresh:
    """Tests for TokenRefresher.refresh_if_needed."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_success(self, client: TidepoolClient, session: Session):
        """Test refresh replaces the session with rotated tokens."""
        mock_discovery()
        route = respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={
            "access_token": "access-2",
            "refresh_token": "refresh-2",
            "expires_in": 1800,
        }))

        refreshed = await client.refresh_session()

        assert refreshed.access_token == "access-2"
        assert refreshed.refresh_token == "refresh-2"
        assert refreshed.user_id == session.user_id
        assert refreshed.environment == session.environment
        assert client.session is refreshed
        sent = form(route.calls.last.request)
        assert sent == {"grant_type": "refresh_token", "refresh_token": "refresh-1", "client_id": "tidepool-kit"}

    @pytest.mark.asyncio
    @respx.mock
    async def test_refresh_keeps_refresh_token_when_not_rotated(self, client: TidepoolClient):
        mock_discovery()
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(200, json={"access_token": "access-2"}))

        refreshed = await client.refresh_session()

        assert refreshed.refresh_token == "refresh-1"

    @pytest.mark.asyncio
    async def test_refresh_token_missing(self, config: TidepoolConfig):
        """Test a session without a refresh token fails without logging out."""
        session = Session(environment=PRODUCTION, access_token="access-1", user_id="user-1")
        client = TidepoolClient(config, session)

        with pytest.raises(RefreshTokenMissing):
            await client.refresh_session()
        assert client.session is session

    @pytest.mark.asyncio
    async def test_refresh_without_session(self, anonymous_client: TidepoolClient):
        with pytest.raises(SessionMissing):
            await anonymous_client.refresh_session()

    @pytest.mark.asyncio
    @respx.mock
    async def test_rejected_refresh_clears_session(self, client: TidepoolClient):
        """Test an invalid_grant answer logs out."""
        mock_discovery()
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(400, json={
            "error": "invalid_grant",
            "error_description": "Token is not active",
        }))

        with pytest.raises(RequestNotAuthenticated):
            await client.refresh_session()
        assert client.session is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_unauthorized_refresh_clears_session(self, client: TidepoolClient):
        mock_discovery()
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(401))

        with pytest.raises(RequestNotAuthenticated):
            await client.refresh_session()
        assert client.session is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_network_failure_keeps_session(self, client: TidepoolClient, session: Session):
        """Test a transient failure leaves the session untouched."""
        mock_discovery()
        respx.post(TOKEN_URL).mock(side_effect=httpx.ConnectError("unreachable"))

        with pytest.raises(NetworkError):
            await client.refresh_session()
        assert client.session is session

    @pytest.mark.asyncio
    @respx.mock
    async def test_server_error_keeps_session(self, client: TidepoolClient, session: Session):
        mock_discovery()
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(503))

        with pytest.raises(ResponseUnexpectedStatusCode):
            await client.refresh_session()
        assert client.session is session

    @pytest.mark.asyncio
    @respx.mock
    async def test_undecodable_error_body_keeps_session(self, client: TidepoolClient, session: Session):
        """Test a token error body too deep to decode is a typed error."""
        mock_discovery()
        respx.post(TOKEN_URL).mock(return_value=httpx.Response(400, content=b"[" * 200000 + b"]" * 200000))

        with pytest.raises(RequestMalformed):
            await client.refresh_session()
        assert client.session is session

    @pytest.mark.asyncio
    async def test_concurrent_refreshes_share_one_call(self, session: Session):
        """Test concurrent callers join a single network refresh."""
        client, calls = counting_client(session, [
            httpx.Response(200, json={"access_token": "access-2", "refresh_token": "refresh-2"}),
        ])

        results = await asyncio.gather(*(client.refresh_session() for _ in range(10)))

        assert len(calls) == 1
        assert {result.access_token for result in results} == {"access-2"}
        assert all(result is results[0] for result in results)
        assert client.session is results[0]

    @pytest.mark.asyncio
    async def test_concurrent_failure_shared(self, session: Session):
        """Test every joined caller receives the single failure."""
        client, calls = counting_client(session, [httpx.Response(401)])

        results = await asyncio.gather(
            *(client.refresh_session() for _ in range(5)),
            return_exceptions=True,
        )

        assert len(calls) == 1
        assert all(isinstance(result, RequestNotAuthenticated) for result in results)
        assert client.session is None

    @pytest.mark.asyncio
    async def test_is_refreshing_while_in_flight(self, session: Session):
        """Test the in-flight flag is set only while the token call runs."""
        client, calls = counting_client(session, [httpx.Response(200, json={"access_token": "access-2"})])
        refresher = client._refresher
        assert not refresher.is_refreshing

        pending = asyncio.ensure_future(client.refresh_session())
        while not calls:
            await asyncio.sleep(0)
        assert refresher.is_refreshing

        await pending
        assert not refresher.is_refreshing

    @pytest.mark.asyncio
    async def test_sequential_refreshes_each_call(self, session: Session):
        """Test a refresh after the previous one finished starts a new call."""
        client, calls = counting_client(session, [
            httpx.Response(200, json={"access_token": "access-2"}),
            httpx.Response(200, json={"access_token": "access-3"}),
        ])

        await client.refresh_session()
        refreshed = await client.refresh_session()

        assert len(calls) == 2
        assert refreshed.access_token == "access-3"

    @pytest.mark.asyncio
    async def test_stale_session_skips_refresh(self, session: Session):
        """Test a caller holding a superseded token reuses the newer session."""
        client, calls = counting_client(session, [])
        newer = session.refreshed("access-2")
        client.session_store.replace(newer)

        result = await client._refresher.refresh_if_needed(stale=session)

        assert result is newer
        assert calls == []


class TestRevoke:
    """Tests for TokenRefresher.revoke."""

    @pytest.mark.asyncio
    @respx.mock
    async def test_revoke_success(self, client: TidepoolClient):
        """Test both tokens are revoked and the session cleared."""
        mock_discovery()
        route = respx.post(REVOCATION_URL).mock(return_value=httpx.Response(200))

        await client.revoke_tokens()

        assert client.session is None
        hints = [form(call.request)["token_type_hint"] for call in route.calls]
        assert hints == ["refresh_token", "access_token"]

    @pytest.mark.asyncio
    @respx.mock
    async def test_revoke_failure_still_clears(self, client: TidepoolClient):
        """Test revoke is effective locally when the server call fails."""
        mock_discovery()
        respx.post(REVOCATION_URL).mock(side_effect=httpx.ConnectError("unreachable"))

        with pytest.raises(NetworkError):
            await client.revoke_tokens()
        assert client.session is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_revoke_discovery_failure_still_clears(self, client: TidepoolClient):
        respx.get("https://api.tidepool.org/info").mock(return_value=httpx.Response(500))

        with pytest.raises(ResponseUnexpectedStatusCode):
            await client.revoke_tokens()
        assert client.session is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_logout_reports_nothing(self, client: TidepoolClient):
        """Test logout clears the session and only logs revocation failures."""
        mock_discovery()
        respx.post(REVOCATION_URL).mock(return_value=httpx.Response(500))

        await client.logout()

        assert client.session is None

    @pytest.mark.asyncio
    async def test_revoke_without_session(self, anonymous_client: TidepoolClient):
        """Test revoking with no session makes no call and notifies nobody."""
        seen: List[Optional[Session]] = []
        anonymous_client.add_observer(seen.append)

        await anonymous_client.revoke_tokens()
        await asyncio.sleep(0)

        assert anonymous_client.session is None
        assert seen == []

    @pytest.mark.asyncio
    async def test_login_during_revoke_survives(self, session: Session):
        """Test a session stored while revoking is not cleared by the revoke."""
        newer = Session(environment=PRODUCTION, access_token="access-9", user_id="user-9")
        client: Optional[TidepoolClient] = None

        async def handler(request: httpx.Request) -> httpx.Response:
            discovered = discovery_response(request)
            if discovered is not None:
                return discovered
            client.session_store.replace(newer)
            return httpx.Response(200)

        client = TidepoolClient(
            TidepoolConfig(),
            session,
            http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        )

        await client.revoke_tokens()

        assert client.session is newer

    @pytest.mark.asyncio
    async def test_refresh_during_revoke_reports_session_missing(self, session: Session):
        """Test a refresh requested while revoking joins the revoke and finds no session."""
        revoke_calls: List[httpx.Request] = []

        async def handler(request: httpx.Request) -> httpx.Response:
            discovered = discovery_response(request)
            if discovered is not None:
                return discovered
            revoke_calls.append(request)
            await asyncio.sleep(0.01)
            return httpx.Response(200)

        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        client = TidepoolClient(TidepoolConfig(), session, http_client=http_client)

        revoke = asyncio.ensure_future(client.revoke_tokens())
        await asyncio.sleep(0)
        with pytest.raises(SessionMissing):
            await client.refresh_session()
        await revoke

        assert all(str(request.url) == REVOCATION_URL for request in revoke_calls)
        assert client.session is None
