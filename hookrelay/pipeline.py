"""Shared provision-and-tunnel pipeline used by both relay modes.

``provisioned_environment`` instantiates an environment, opens a tunnel to it
and guarantees both are released when the scope exits. The two modes only
differ in the payload they inject and how long they hold the scope.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass
from typing import TYPE_CHECKING

from loguru import logger


if TYPE_CHECKING:
    from hookrelay.sandbox.provider import (
        Endpoint,
        Payload,
        RunningEnvironment,
        SandboxProvisioner,
        Tunnel,
        TunnelManager,
    )
    from hookrelay.sandbox.template import EnvironmentTemplate


@dataclass(frozen=True)
class ActiveEnvironment:
    """A running environment together with its open tunnel."""

    environment: RunningEnvironment
    tunnel: Tunnel

    @property
    def endpoint(self) -> Endpoint:
        return self.tunnel.endpoint


@asynccontextmanager
async def provisioned_environment(
    provisioner: SandboxProvisioner,
    tunnels: TunnelManager,
    template: EnvironmentTemplate,
    payload: Payload | None = None,
    workdir: str | None = None,
) -> AsyncIterator[ActiveEnvironment]:
    """Instantiate ``template`` and open a tunnel to it for the scope's lifetime.

    The tunnel is closed and the environment stopped on every exit path,
    including a tunnel that never opens.

    Args:
        provisioner: Creates and stops the environment.
        tunnels: Opens and closes host access.
        template: Built template to instantiate.
        payload: File or directory injected into the environment.
        workdir: Working directory of the entrypoint.

    Yields:
        The active environment.

    Raises:
        ProvisionError: If the environment cannot be started.
        TunnelError: If the environment never becomes reachable.
    """
    environment = await provisioner.instantiate(template, payload=payload, workdir=workdir)
    try:
        tunnel = await tunnels.open(environment)
        try:
            yield ActiveEnvironment(environment=environment, tunnel=tunnel)
        finally:
            logger.debug("Stopping tunnel", environment=environment.name)
            await tunnels.close(tunnel)
    finally:
        logger.debug("Stopping environment", environment=environment.name)
        await provisioner.stop(environment)


class EnvironmentLease:
    """Holds a provisioned environment beyond a single request.

    Used by static mode: acquired once at startup and released by the
    lifecycle coordinator. ``stop()`` is idempotent.
    """

    def __init__(self) -> None:
        self._stack = AsyncExitStack()
        self._active: ActiveEnvironment | None = None

    @property
    def endpoint(self) -> Endpoint:
        if self._active is None:
            raise RuntimeError("Environment lease is not active")
        return self._active.endpoint

    async def acquire(
        self,
        provisioner: SandboxProvisioner,
        tunnels: TunnelManager,
        template: EnvironmentTemplate,
        payload: Payload | None = None,
        workdir: str | None = None,
    ) -> ActiveEnvironment:
        """Provision the environment and keep it until ``stop()``."""
        self._active = await self._stack.enter_async_context(
            provisioned_environment(provisioner, tunnels, template, payload=payload, workdir=workdir)
        )
        return self._active

    async def stop(self) -> None:
        """Close the tunnel and stop the environment."""
        self._active = None
        await self._stack.aclose()
