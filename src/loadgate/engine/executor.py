"""HTTP request executor: one timed request per iteration."""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import aiohttp

from loadgate.metrics.models import Outcome, RequestResult

if TYPE_CHECKING:
    from loadgate._internal.types import Headers


@dataclass(frozen=True)
class RequestTemplate:
    """The request every iteration sends.

    Attributes:
        url: Absolute target URL.
        method: HTTP method.
        headers: Headers sent with every request.
        body: Optional request body.
        timeout: Per-request timeout in seconds, covering connect, send and
            reading the full response body.
    """

    url: str
    method: str = "GET"
    headers: Headers = field(default_factory=dict)
    body: str | None = None
    timeout: float = 60.0


def _describe(exc: BaseException) -> str:
    text = str(exc)
    return f"{type(exc).__name__}: {text}" if text else type(exc).__name__


class RequestExecutor:
    """Issues requests through a shared ``aiohttp.ClientSession``.

    :meth:`execute` never raises for request-level failures: connection,
    DNS, TLS and protocol errors, timeouts and non-2xx responses all come
    back as a classified ``RequestResult``.  Cancellation is propagated so
    the caller can record the request as aborted.

    Must be used as an async context manager.
    """

    def __init__(
        self,
        template: RequestTemplate,
        *,
        connection_limit: int = 0,
    ) -> None:
        """Initialize the executor.

        Args:
            template: Default request for :meth:`execute`.
            connection_limit: Maximum simultaneous connections, 0 for no
                limit (one connection per in-flight virtual user).
        """
        self.template = template
        self._connection_limit = connection_limit
        self._session: aiohttp.ClientSession | None = None

    async def __aenter__(self) -> RequestExecutor:
        """Open the underlying aiohttp session."""
        self._session = aiohttp.ClientSession(
            connector=aiohttp.TCPConnector(limit=self._connection_limit),
        )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object | None,
    ) -> None:
        """Close the underlying aiohttp session."""
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def execute(
        self,
        template: RequestTemplate | None = None,
        *,
        vu_id: int = 0,
        iteration: int = 0,
    ) -> RequestResult:
        """Send one request and classify the outcome.

        Latency is measured from just before the request is sent until the
        full body has been read, or until the failure surfaced.

        Args:
            template: Request to send.  Defaults to the executor's template.
            vu_id: Virtual user index, copied into the result.
            iteration: Iteration number, copied into the result.

        Returns:
            The classified RequestResult.

        Raises:
            RuntimeError: If used outside of an async context manager.
        """
        if self._session is None:
            msg = "RequestExecutor must be used as an async context manager"
            raise RuntimeError(msg)

        request = template or self.template
        status_code = 0
        body_size = 0
        error: str | None = None

        start = time.monotonic()
        try:
            async with self._session.request(
                request.method,
                request.url,
                headers=request.headers,
                data=request.body,
                timeout=aiohttp.ClientTimeout(total=request.timeout),
            ) as resp:
                body = await resp.read()
                status_code = resp.status
                body_size = len(body)
        except TimeoutError as exc:
            # aiohttp's ServerTimeoutError is also a ClientError; it is a timeout.
            outcome = Outcome.TIMEOUT
            error = _describe(exc)
        except (aiohttp.ClientError, OSError) as exc:
            outcome = Outcome.NETWORK_ERROR
            error = _describe(exc)
        else:
            if 200 <= status_code < 300:
                outcome = Outcome.SUCCESS
            else:
                outcome = Outcome.CLIENT_RESPONSE_ERROR
                error = f"HTTP {status_code}"
        latency_ms = (time.monotonic() - start) * 1000

        return RequestResult(
            timestamp=start,
            latency_ms=latency_ms,
            outcome=outcome,
            status_code=status_code,
            error=error,
            vu_id=vu_id,
            iteration=iteration,
            bytes_received=body_size,
        )
