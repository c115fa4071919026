"""Host access to sandbox environments through published Docker ports."""

from __future__ import annotations

import asyncio
import time

import httpx
from loguru import logger

from hookrelay.exceptions import TunnelError
from hookrelay.sandbox.docker import container_running, run_docker
from hookrelay.sandbox.provider import Endpoint, RunningEnvironment, Tunnel, TunnelManager


_POLL_INTERVAL = 0.5
_WILDCARD_HOSTS = {"0.0.0.0", "::", "[::]"}


def parse_port_binding(output: str) -> tuple[str, int]:
    """Parse the first binding printed by ``docker port``.

    Args:
        output: Output such as ``127.0.0.1:49153`` or ``[::]:49153``,
            one binding per line.

    Returns:
        Tuple of (host, port). Wildcard hosts map to the loopback address.

    Raises:
        ValueError: If no binding can be parsed.
    """
    for line in output.splitlines():
        line = line.strip()
        if not line:
            continue
        host, sep, port = line.rpartition(":")
        if not sep or not port.isdigit():
            continue
        if host in _WILDCARD_HOSTS:
            host = "127.0.0.1"
        return host, int(port)
    raise ValueError(f"No port binding in {output!r}")


class PublishedPortTunnelManager(TunnelManager):
    """Resolves an environment's published port and waits until it answers.

    Readiness is the first HTTP response of any status from the endpoint;
    transport errors are retried until ``timeout`` expires.

    Args:
        timeout: Maximum seconds to wait for the environment.
        client: Optional HTTP client used for readiness probes.
    """

    def __init__(self, timeout: float = 30.0, client: httpx.AsyncClient | None = None) -> None:
        self.timeout = timeout
        self._client = client

    async def open(self, environment: RunningEnvironment) -> Tunnel:
        """Resolve the endpoint and block until it is reachable."""
        endpoint = await self._resolve_endpoint(environment)
        await self._wait_until_reachable(environment, endpoint)
        logger.info("Tunnel open", environment=environment.name, endpoint=endpoint.url)
        return Tunnel(environment=environment, endpoint=endpoint)

    async def close(self, tunnel: Tunnel) -> None:
        """Release the tunnel.

        The published port disappears with its container, so closing only
        marks the endpoint unusable.
        """
        if tunnel.closed:
            logger.debug("Tunnel already closed", endpoint=tunnel.endpoint.url)
            return
        tunnel.closed = True
        logger.info("Tunnel closed", environment=tunnel.environment.name, endpoint=tunnel.endpoint.url)

    async def _resolve_endpoint(self, environment: RunningEnvironment) -> Endpoint:
        try:
            returncode, stdout, stderr = await run_docker(
                "port", environment.name, f"{environment.exposed_port}/tcp",
            )
        except OSError as exc:
            raise TunnelError(f"Failed to run docker: {exc}") from exc
        if returncode != 0:
            raise TunnelError(f"No published port for {environment.name}: {stderr}")
        try:
            host, port = parse_port_binding(stdout)
        except ValueError as exc:
            raise TunnelError(str(exc)) from exc
        return Endpoint(host=host, port=port, scheme="http")

    async def _wait_until_reachable(self, environment: RunningEnvironment, endpoint: Endpoint) -> None:
        """Poll the endpoint until it answers.

        Raises:
            TunnelError: If the environment exits or the timeout expires.
        """
        client = self._client or httpx.AsyncClient(timeout=httpx.Timeout(_POLL_INTERVAL * 4))
        deadline = time.monotonic() + self.timeout
        last_error = "no attempt made"
        try:
            while time.monotonic() < deadline:
                try:
                    await client.get(endpoint.url + "/")
                    return
                except httpx.TransportError as exc:
                    last_error = str(exc) or type(exc).__name__
                if not await container_running(environment.name):
                    raise TunnelError(f"Environment {environment.name} exited before becoming reachable")
                await asyncio.sleep(_POLL_INTERVAL)
        finally:
            if self._client is None:
                await client.aclose()
        raise TunnelError(
            f"Environment {environment.name} not reachable at {endpoint.url} "
            f"after {self.timeout}s: {last_error}"
        )
