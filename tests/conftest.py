"""Shared fixtures and fakes for all tests.

The fakes stand in for Docker, git and the sandbox endpoint so that no test
touches a real daemon or network.
"""
from collections.abc import AsyncIterator, Callable
from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest

from hookrelay.exceptions import ProvisionError, ResolveError, TunnelError
from hookrelay.relay import RequestRelay
from hookrelay.sandbox.provider import Endpoint, Payload, RunningEnvironment, Tunnel
from hookrelay.sandbox.template import EnvironmentTemplate, webhook_template
from hookrelay.source import SourceTree


class MockStream(httpx.AsyncByteStream):
    """Async byte stream yielding fixed chunks, compatible with httpx streaming.

    ``httpx.Response(content=...)`` marks the body as consumed, so upstream
    responses consumed with ``aiter_raw()`` must be built with a stream.
    """

    def __init__(self, *chunks: bytes, error: Exception | None = None) -> None:
        self._chunks = chunks
        self._error = error

    async def __aiter__(self) -> AsyncIterator[bytes]:
        for chunk in self._chunks:
            yield chunk
        if self._error is not None:
            raise self._error

    async def aclose(self) -> None:
        pass


def streaming_response(
    status_code: int = 200,
    body: bytes = b"ok",
    headers: dict[str, str] | None = None,
) -> httpx.Response:
    """Build an upstream response with an unconsumed stream."""
    return httpx.Response(
        status_code=status_code,
        stream=MockStream(body),
        headers=headers or {"content-type": "text/plain"},
    )


def make_proc(returncode: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> AsyncMock:
    """Mock of an asyncio subprocess that has already finished."""
    proc = AsyncMock()
    proc.communicate.return_value = (stdout, stderr)
    proc.returncode = returncode
    return proc


class FakeSourceTree(SourceTree):
    """Source tree that counts cleanups instead of touching the filesystem."""

    cleanups: int = 0

    async def cleanup(self) -> None:
        self.cleanups += 1


class FakeResolver:
    """Source resolver recording its calls."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[tuple[str, str]] = []
        self.trees: list[FakeSourceTree] = []

    async def resolve(self, full_name: str, commit: str) -> SourceTree:
        self.calls.append((full_name, commit))
        if self.fail:
            raise ResolveError(full_name, commit, "repository not found")
        tree = FakeSourceTree(full_name=full_name, commit=commit, path=Path("/tmp") / commit)
        self.trees.append(tree)
        return tree


class FakeProvisioner:
    """Provisioner recording instantiations and stops."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.built: list[EnvironmentTemplate] = []
        self.environments: list[RunningEnvironment] = []
        self.payloads: list[Payload | None] = []
        self.stop_calls: list[str] = []

    async def build_template(self, template: EnvironmentTemplate) -> EnvironmentTemplate:
        self.built.append(template)
        return template

    async def instantiate(
        self,
        template: EnvironmentTemplate,
        payload: Payload | None = None,
        workdir: str | None = None,
    ) -> RunningEnvironment:
        if self.fail:
            raise ProvisionError("failed to create environment")
        environment = RunningEnvironment(
            name=f"env-{len(self.environments)}",
            image=template.image,
            exposed_port=template.exposed_port,
            workdir=workdir or template.workdir,
        )
        self.environments.append(environment)
        self.payloads.append(payload)
        return environment

    async def stop(self, environment: RunningEnvironment) -> None:
        self.stop_calls.append(environment.name)
        environment.stopped = True


class FakeTunnelManager:
    """Tunnel manager handing out one endpoint per environment."""

    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.opened: list[Tunnel] = []
        self.close_calls: list[str] = []

    async def open(self, environment: RunningEnvironment) -> Tunnel:
        if self.fail:
            raise TunnelError(f"{environment.name} never became reachable")
        tunnel = Tunnel(
            environment=environment,
            endpoint=Endpoint(host=f"{environment.name}.sandbox", port=9000),
        )
        self.opened.append(tunnel)
        return tunnel

    async def close(self, tunnel: Tunnel) -> None:
        self.close_calls.append(tunnel.environment.name)
        tunnel.closed = True


@pytest.fixture
def template() -> EnvironmentTemplate:
    return webhook_template()


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver()


@pytest.fixture
def provisioner() -> FakeProvisioner:
    return FakeProvisioner()


@pytest.fixture
def tunnels() -> FakeTunnelManager:
    return FakeTunnelManager()


@pytest.fixture
def upstream_requests() -> list[httpx.Request]:
    """Requests received by the mock sandbox endpoint."""
    return []


@pytest.fixture
def relay_factory(
    upstream_requests: list[httpx.Request],
) -> Callable[..., RequestRelay]:
    """Factory for relays whose upstream is an ``httpx.MockTransport``.

    The default upstream echoes the request body with status 200.
    """

    def _create(handler: Callable[[httpx.Request], Any] | None = None) -> RequestRelay:
        def _record(request: httpx.Request) -> Any:
            upstream_requests.append(request)
            if handler is not None:
                return handler(request)
            return streaming_response(200, request.content)

        return RequestRelay(client=httpx.AsyncClient(transport=httpx.MockTransport(_record)))

    return _create
