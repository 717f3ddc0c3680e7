"""
Unit tests for BinanceRestClient against a local aiohttp server.
"""

import pytest
from aiohttp import test_utils, web

from ingestor.feed.errors import ApiError
from ingestor.feed.rest import BinanceRestClient


def _make_app() -> web.Application:
    async def open_interest(request: web.Request) -> web.Response:
        return web.json_response(
            {"openInterest": "10659.509", "symbol": request.query["symbol"], "time": 1589437530011}
        )

    async def rate_limited(request: web.Request) -> web.Response:
        return web.Response(status=429, text='{"code": -1003, "msg": "Too many requests."}')

    async def not_json(request: web.Request) -> web.Response:
        return web.Response(status=200, text="<html>maintenance</html>")

    app = web.Application()
    app.router.add_get("/fapi/v1/openInterest", open_interest)
    app.router.add_get("/limited", rate_limited)
    app.router.add_get("/html", not_json)
    return app


class TestBinanceRestClient:
    """Tests for get_json error mapping."""

    @pytest.mark.asyncio
    async def test_get_json_decodes_body(self) -> None:
        server = test_utils.TestServer(_make_app())
        await server.start_server()
        client = BinanceRestClient(str(server.make_url("/")))
        try:
            body = await client.get_json("/fapi/v1/openInterest", {"symbol": "BTCUSDT"})
        finally:
            await client.close()
            await server.close()

        assert body["symbol"] == "BTCUSDT"
        assert body["openInterest"] == "10659.509"

    @pytest.mark.asyncio
    async def test_non_2xx_raises_api_error(self) -> None:
        server = test_utils.TestServer(_make_app())
        await server.start_server()
        client = BinanceRestClient(str(server.make_url("/")))
        try:
            with pytest.raises(ApiError) as exc_info:
                await client.get_json("/limited")
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.status == 429
        assert "Too many requests" in (exc_info.value.body or "")

    @pytest.mark.asyncio
    async def test_undecodable_body_raises_api_error(self) -> None:
        server = test_utils.TestServer(_make_app())
        await server.start_server()
        client = BinanceRestClient(str(server.make_url("/")))
        try:
            with pytest.raises(ApiError) as exc_info:
                await client.get_json("/html")
        finally:
            await client.close()
            await server.close()

        assert exc_info.value.status == 200

    @pytest.mark.asyncio
    async def test_unreachable_host_raises_api_error(self) -> None:
        async with BinanceRestClient("http://127.0.0.1:1", connect_timeout_s=1.0) as client:
            with pytest.raises(ApiError):
                await client.get_json("/fapi/v1/openInterest", {"symbol": "BTCUSDT"})
