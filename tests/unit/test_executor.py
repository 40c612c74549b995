"""Tests for the HTTP request executor."""

from __future__ import annotations

import pytest

from loadgate.engine.executor import RequestExecutor, RequestTemplate
from loadgate.metrics.models import Outcome


class TestRequestTemplate:
    def test_defaults(self):
        template = RequestTemplate(url="http://localhost/")
        assert template.method == "GET"
        assert template.headers == {}
        assert template.body is None
        assert template.timeout == 60.0


class TestRequestExecutor:
    async def test_success(self, stub_server: str):
        async with RequestExecutor(RequestTemplate(url=f"{stub_server}/ok")) as executor:
            result = await executor.execute(vu_id=3, iteration=7)

        assert result.outcome is Outcome.SUCCESS
        assert result.status_code == 200
        assert result.error is None
        assert result.bytes_received == 2
        assert result.vu_id == 3
        assert result.iteration == 7
        assert result.latency_ms > 0

    async def test_latency_covers_server_delay(self, stub_server: str):
        template = RequestTemplate(url=f"{stub_server}/wait?delay=0.1")
        async with RequestExecutor(template) as executor:
            result = await executor.execute()

        assert result.outcome is Outcome.SUCCESS
        assert result.latency_ms >= 100.0

    @pytest.mark.parametrize("status", [404, 500, 503])
    async def test_non_2xx_is_client_response_error(self, stub_server: str, status: int):
        template = RequestTemplate(url=f"{stub_server}/status?status={status}")
        async with RequestExecutor(template) as executor:
            result = await executor.execute()

        assert result.outcome is Outcome.CLIENT_RESPONSE_ERROR
        assert result.status_code == status
        assert result.error == f"HTTP {status}"
        assert result.bucket == str(status)

    async def test_connection_refused_is_network_error(self, unreachable_url: str):
        async with RequestExecutor(RequestTemplate(url=unreachable_url, timeout=5.0)) as executor:
            result = await executor.execute()

        assert result.outcome is Outcome.NETWORK_ERROR
        assert result.status_code == 0
        assert result.error
        assert result.bucket == "network_error"

    async def test_timeout(self, stub_server: str):
        template = RequestTemplate(url=f"{stub_server}/wait?delay=2", timeout=0.2)
        async with RequestExecutor(template) as executor:
            result = await executor.execute()

        assert result.outcome is Outcome.TIMEOUT
        assert result.status_code == 0
        assert 150.0 <= result.latency_ms < 2000.0

    async def test_sends_method_headers_and_body(self, stub_server: str):
        template = RequestTemplate(
            url=f"{stub_server}/check?method=POST",
            method="POST",
            headers={"X-Check": "ping"},
            body="ping",
        )
        async with RequestExecutor(template) as executor:
            result = await executor.execute()
            mismatch = await executor.execute(RequestTemplate(url=f"{stub_server}/check?method=POST"))

        assert result.outcome is Outcome.SUCCESS
        assert mismatch.status_code == 400

    async def test_template_override(self, stub_server: str):
        async with RequestExecutor(RequestTemplate(url=f"{stub_server}/ok")) as executor:
            result = await executor.execute(RequestTemplate(url=f"{stub_server}/status?status=418"))

        assert result.status_code == 418

    async def test_requires_context_manager(self):
        executor = RequestExecutor(RequestTemplate(url="http://localhost/"))
        with pytest.raises(RuntimeError, match="context manager"):
            await executor.execute()
