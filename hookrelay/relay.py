"""Request relay: forwards an inbound request to a sandbox endpoint.

Method, headers and body are forwarded as received and the upstream
response is streamed back without buffering its body.
"""

from __future__ import annotations

import asyncio
import atexit
import warnings
from collections.abc import AsyncIterator, Awaitable, Callable
from urllib.parse import quote

import httpx
from fastapi import Request
from loguru import logger
from starlette.background import BackgroundTask
from starlette.responses import StreamingResponse

from hookrelay.exceptions import RelayError
from hookrelay.sandbox.provider import Endpoint


HOP_BY_HOP_HEADERS = frozenset({
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "proxy-connection",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
})


def _request_headers(request: Request) -> list[tuple[str, str]]:
    """Headers to send upstream.

    Hop-by-hop headers and Host are dropped, the client address is
    appended to X-Forwarded-For.
    """
    headers = [
        (key, value)
        for key, value in request.headers.items()
        if key not in HOP_BY_HOP_HEADERS and key != "host"
    ]
    if request.client is not None:
        prior = [value for key, value in headers if key == "x-forwarded-for"]
        headers = [(key, value) for key, value in headers if key != "x-forwarded-for"]
        headers.append(("x-forwarded-for", ", ".join([*prior, request.client.host])))
    return headers


def _raw_target(request: Request) -> bytes:
    """Path and query exactly as received, still percent-encoded."""
    raw_path = request.scope.get("raw_path") or quote(request.url.path).encode()
    # Some servers include the query in raw_path.
    raw_path = raw_path.split(b"?", 1)[0]
    query = request.scope.get("query_string", b"")
    return raw_path + b"?" + query if query else raw_path


def _response_headers(response: httpx.Response) -> list[tuple[str, str]]:
    return [
        (key, value)
        for key, value in response.headers.multi_items()
        if key.lower() not in HOP_BY_HOP_HEADERS
    ]


class _ReleaseOnce:
    """Runs release callbacks exactly once, whichever caller gets there first."""

    def __init__(self, *callbacks: Callable[[], Awaitable[None]]) -> None:
        self._callbacks = callbacks
        self._task: asyncio.Future[None] | None = None

    async def _run(self) -> None:
        for callback in self._callbacks:
            try:
                await callback()
            except Exception:
                logger.exception("Release callback failed")

    async def __call__(self) -> None:
        if self._task is None:
            self._task = asyncio.ensure_future(self._run())
        # Shielded so a cancelled stream still finishes releasing.
        await asyncio.shield(self._task)


class RequestRelay:
    """Forwards requests to sandbox endpoints over a pooled HTTP client.

    The client is safe for concurrent use by every request handler.
    ``aclose()`` must be called during app shutdown.

    Args:
        timeout: Connect/write/pool timeout in seconds.
        read_timeout: Read timeout in seconds.
        client: Optional pre-configured client (tests inject a mock transport).
    """

    def __init__(
        self,
        timeout: float = 30.0,
        read_timeout: float = 300.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout=timeout, read=read_timeout),
        )
        self._closed = False
        atexit.register(self._warn_unclosed)

    def _warn_unclosed(self) -> None:
        """Warn if aclose() was never called (potential resource leak)."""
        try:
            if not self._closed and not self._client.is_closed:
                warnings.warn(
                    "RequestRelay.aclose() was never called - HTTP client may not be "
                    "properly closed.",
                    ResourceWarning,
                    stacklevel=1,
                )
        except (TypeError, AttributeError) as e:
            # Interpreter shutdown may have torn down the client already.
            logger.debug("Suppressed exception in _warn_unclosed", error=str(e))

    async def aclose(self) -> None:
        """Close the HTTP client."""
        self._closed = True
        atexit.unregister(self._warn_unclosed)
        await self._client.aclose()

    async def send(
        self,
        request: Request,
        endpoint: Endpoint,
        body: bytes | None = None,
    ) -> httpx.Response:
        """Send ``request`` to ``endpoint`` and return the unread response.

        Args:
            request: Original inbound request.
            endpoint: Endpoint to forward to.
            body: Already-read request body. The inbound stream is forwarded
                when omitted.

        Returns:
            Upstream response with an unconsumed body stream.

        Raises:
            RelayError: On any transport failure.
        """
        url = httpx.URL(endpoint.url).copy_with(raw_path=_raw_target(request))
        logger.info("Proxying request", endpoint=endpoint.url, method=request.method, path=request.url.path)

        content: bytes | AsyncIterator[bytes] = body if body is not None else request.stream()
        try:
            upstream_request = self._client.build_request(
                method=request.method,
                url=url,
                headers=_request_headers(request),
                content=content,
            )
            return await self._client.send(upstream_request, stream=True)
        except httpx.TimeoutException as e:
            raise RelayError(f"Upstream request to {endpoint.url} timed out: {e}", status_code=504) from e
        except httpx.HTTPError as e:
            raise RelayError(f"Upstream request to {endpoint.url} failed: {e}") from e

    def stream_back(
        self,
        upstream: httpx.Response,
        on_close: Callable[[], Awaitable[None]] | None = None,
    ) -> StreamingResponse:
        """Stream ``upstream`` back to the caller.

        Args:
            upstream: Response returned by ``send()``.
            on_close: Released once the body has been streamed, the caller
                disconnected or streaming failed.

        Returns:
            Streaming response with upstream status and headers.
        """
        callbacks = [upstream.aclose]
        if on_close is not None:
            callbacks.append(on_close)
        release = _ReleaseOnce(*callbacks)

        async def body() -> AsyncIterator[bytes]:
            try:
                async for chunk in upstream.aiter_raw():
                    yield chunk
            except httpx.HTTPError as e:
                # Headers are already flushed, the body can only be cut short.
                logger.warning("Upstream stream failed", url=str(upstream.url), error=str(e))
                raise RelayError(f"Upstream stream failed: {e}") from e
            finally:
                await release()

        response = StreamingResponse(
            content=body(),
            status_code=upstream.status_code,
            background=BackgroundTask(release),
        )
        # Set raw so repeated headers such as Set-Cookie survive.
        response.raw_headers = [
            (key.encode("latin-1"), value.encode("latin-1"))
            for key, value in _response_headers(upstream)
        ]
        return response

    async def forward(
        self,
        request: Request,
        endpoint: Endpoint,
        body: bytes | None = None,
    ) -> StreamingResponse:
        """Forward ``request`` to ``endpoint`` and stream the response back.

        Raises:
            RelayError: If the upstream request fails before a response arrives.
        """
        upstream = await self.send(request, endpoint, body=body)
        return self.stream_back(upstream)
