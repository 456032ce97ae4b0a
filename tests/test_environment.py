"""
Tests for environments and the environment registry.
"""

import httpx
import pytest
import respx

from tidepool_kit import DEFAULT_ENVIRONMENTS, PRODUCTION, Environment, EnvironmentRegistry
from tidepool_kit.errors import InvalidURL, NetworkError, ResponseUnexpectedJSON


ENVIRONMENTS_URL = "https://environments.example.org/environments.json"


class TestEnvironment:
    """Tests for Environment values."""

    def test_url_default_port(self):
        assert PRODUCTION.url == "https://api.tidepool.org"

    def test_url_custom_port(self):
        assert Environment("localhost", 8009).url == "https://localhost:8009"

    def test_description(self):
        assert PRODUCTION.description == "Production"
        assert Environment("localhost", 8009).description == "localhost:8009"

    def test_from_dict_invalid_port(self):
        with pytest.raises(ValueError):
            Environment.from_dict({"host": "localhost", "port": 70000})


class TestEnvironmentRegistry:
    """Tests for EnvironmentRegistry."""

    def test_defaults(self):
        """Test the static registry defaults to production."""
        registry = EnvironmentRegistry()
        assert registry.default == PRODUCTION
        assert registry.environments == list(DEFAULT_ENVIRONMENTS)
        assert PRODUCTION in registry

    def test_duplicates_collapsed(self):
        """Test host/port duplicates appear once."""
        registry = EnvironmentRegistry([PRODUCTION, Environment("api.tidepool.org", 443, "Other")])
        assert len(registry) == 1

    def test_find(self):
        registry = EnvironmentRegistry()
        assert registry.find("int-api.tidepool.org").label == "Integration"
        assert registry.find("missing.example.org") is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch(self):
        """Test a fetched list becomes a new registry."""
        respx.get(ENVIRONMENTS_URL).mock(
            return_value=httpx.Response(200, json={"environments": [
                {"host": "qa3.development.tidepool.org", "port": 443, "label": "QA 3"},
                {"host": "localhost", "port": "8009"},
            ]})
        )

        registry = await EnvironmentRegistry.fetch(ENVIRONMENTS_URL, default_host="localhost")

        assert [environment.host for environment in registry] == ["qa3.development.tidepool.org", "localhost"]
        assert registry.default == Environment("localhost", 8009)

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_unexpected_shape(self):
        """Test a malformed list is an unexpected-JSON error."""
        respx.get(ENVIRONMENTS_URL).mock(return_value=httpx.Response(200, json=[{"port": 443}]))

        with pytest.raises(ResponseUnexpectedJSON):
            await EnvironmentRegistry.fetch(ENVIRONMENTS_URL)

    @pytest.mark.asyncio
    @respx.mock
    async def test_fetch_network_error(self):
        """Test transport failures are network errors."""
        respx.get(ENVIRONMENTS_URL).mock(side_effect=httpx.ConnectError("unreachable"))

        with pytest.raises(NetworkError):
            await EnvironmentRegistry.fetch(ENVIRONMENTS_URL)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url", ["not a url", "ftp://environments.example.org/list.json"])
    async def test_fetch_invalid_url(self, url: str):
        """Test unusable URLs fail before any request is sent."""
        with pytest.raises(InvalidURL) as exc_info:
            await EnvironmentRegistry.fetch(url)
        assert exc_info.value.url == url
