"""Unit tests for the control API client."""

from __future__ import annotations

import json

import httpx
import pytest

from smart_pilot.config.engine import controller_resolver
from smart_pilot.config.settings import PilotSettings
from smart_pilot.integration.control_api import ProxyControlClient
from smart_pilot.middleware.error_handler import ControlAPIError, TransientNetworkError

PROXIES_PAYLOAD = {
    "proxies": {
        "Proxy": {"type": "Selector", "now": "HK 01", "all": ["HK 01", "JP 01"]},
        "Auto": {"type": "URLTest", "now": "JP 01", "all": ["JP 01"]},
        "Broken": {"type": "Selector", "now": "gone", "all": ["HK 01"]},
        "HK 01": {"type": "Vmess"},
        "DIRECT": {"type": "Direct"},
    }
}


def _client(handler, secret: str | None = None) -> ProxyControlClient:
    return ProxyControlClient(
        "http://127.0.0.1:9090/",
        secret=secret,
        transport=httpx.MockTransport(handler),
    )


class TestGetGroups:
    @pytest.mark.asyncio
    async def test_parses_groups_and_skips_plain_nodes(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "GET"
            assert request.url.path == "/proxies"
            return httpx.Response(200, json=PROXIES_PAYLOAD)

        groups = await _client(handler).get_groups()

        assert set(groups) == {"Proxy", "Auto"}
        assert groups["Proxy"].members == ("HK 01", "JP 01")
        assert groups["Proxy"].active_member == "HK 01"

    @pytest.mark.asyncio
    async def test_attaches_bearer_secret(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"proxies": {}})

        await _client(handler, secret="s3cr3t").get_groups()
        assert seen["auth"] == "Bearer s3cr3t"

    @pytest.mark.asyncio
    async def test_no_auth_header_without_secret(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["auth"] = request.headers.get("Authorization")
            return httpx.Response(200, json={"proxies": {}})

        await _client(handler).get_groups()
        assert seen["auth"] is None

    @pytest.mark.asyncio
    async def test_error_status_raises_control_api_error(self):
        client = _client(lambda request: httpx.Response(401, json={"message": "Unauthorized"}))
        with pytest.raises(ControlAPIError) as exc_info:
            await client.get_groups()
        assert exc_info.value.details["status"] == 401

    @pytest.mark.asyncio
    async def test_connection_failure_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(TransientNetworkError):
            await _client(handler).get_groups()

    @pytest.mark.asyncio
    async def test_timeout_is_transient(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        with pytest.raises(TransientNetworkError):
            await _client(handler).get_groups()

    @pytest.mark.asyncio
    async def test_missing_proxies_table(self):
        client = _client(lambda request: httpx.Response(200, json={"unexpected": True}))
        with pytest.raises(ControlAPIError):
            await client.get_groups()


class TestGetDelay:
    @pytest.mark.asyncio
    async def test_returns_delay_and_encodes_name(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.raw_path.decode()
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json={"delay": 231})

        delay = await _client(handler).get_delay("香港 01", 5000, "http://www.gstatic.com/generate_204")

        assert delay == 231
        assert seen["path"].startswith("/proxies/%E9%A6%99%E6%B8%AF%2001/delay")
        assert seen["params"] == {
            "timeout": "5000",
            "url": "http://www.gstatic.com/generate_204",
        }

    @pytest.mark.asyncio
    async def test_zero_delay_is_a_reading(self):
        client = _client(lambda request: httpx.Response(200, json={"delay": 0}))
        assert await client.get_delay("a", 5000, "http://t") == 0

    @pytest.mark.asyncio
    async def test_engine_timeout_raises(self):
        client = _client(lambda request: httpx.Response(504, json={"message": "Timeout"}))
        with pytest.raises(ControlAPIError):
            await client.get_delay("a", 5000, "http://t")

    @pytest.mark.asyncio
    async def test_missing_delay_raises(self):
        client = _client(lambda request: httpx.Response(200, json={"message": "ok"}))
        with pytest.raises(ControlAPIError):
            await client.get_delay("a", 5000, "http://t")


class TestSwitchAndReload:
    @pytest.mark.asyncio
    async def test_switch_active(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["path"] = request.url.raw_path.decode()
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        await _client(handler).switch_active("Proxy", "JP 01")

        assert seen == {"method": "PUT", "path": "/proxies/Proxy", "body": {"name": "JP 01"}}

    @pytest.mark.asyncio
    async def test_switch_failure_raises(self):
        client = _client(lambda request: httpx.Response(400, json={"message": "not found"}))
        with pytest.raises(ControlAPIError):
            await client.switch_active("Proxy", "missing")

    @pytest.mark.asyncio
    async def test_reload_config(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["method"] = request.method
            seen["force"] = request.url.params.get("force")
            seen["body"] = json.loads(request.content)
            return httpx.Response(204)

        await _client(handler).reload_config("/home/u/.smart-pilot/config.yaml")
        assert seen == {
            "method": "PUT",
            "force": "true",
            "body": {"path": "/home/u/.smart-pilot/config.yaml"},
        }


class TestEndpointResolution:
    @pytest.mark.asyncio
    async def test_endpoint_resolved_per_request(self):
        endpoints = iter([("http://127.0.0.1:9090", "old"), ("http://127.0.0.1:9191/", "new")])
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.port, request.headers.get("Authorization")))
            return httpx.Response(200, json={"proxies": {}})

        client = ProxyControlClient(
            endpoint=lambda: next(endpoints), transport=httpx.MockTransport(handler)
        )
        await client.get_groups()
        await client.get_groups()

        assert seen == [(9090, "Bearer old"), (9191, "Bearer new")]

    @pytest.mark.asyncio
    async def test_follows_applied_profile(self, settings: PilotSettings):
        engine_config = settings.resolved_engine_config_path
        engine_config.parent.mkdir(parents=True)
        engine_config.write_text(
            "external-controller: 127.0.0.1:9090\nsecret: old\n", encoding="utf-8"
        )
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.url.port, request.headers.get("Authorization")))
            return httpx.Response(200, json={"delay": 120})

        client = ProxyControlClient(
            endpoint=controller_resolver(settings), transport=httpx.MockTransport(handler)
        )
        await client.get_delay("HK 01", 5000, "http://t")

        # recovery copies a refreshed profile over the engine config
        engine_config.write_text(
            "external-controller: 127.0.0.1:9191\nsecret: new\n", encoding="utf-8"
        )
        await client.get_delay("HK 01", 5000, "http://t")

        assert seen == [(9090, "Bearer old"), (9191, "Bearer new")]
        assert client.resolve() == ("http://127.0.0.1:9191", "new")

    def test_requires_address_or_resolver(self):
        with pytest.raises(ValueError):
            ProxyControlClient()
