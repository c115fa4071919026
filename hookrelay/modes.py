"""Operating modes of the relay.

Chosen once at startup:

- static mode: a hooks file is given, one environment serves every request.
- clone mode: no hooks file, each push notification gets a fresh environment
  built from the pushed commit and destroyed after the response.
"""

from __future__ import annotations

from contextlib import AsyncExitStack
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from loguru import logger

from hookrelay.exceptions import ProvisionError, StartupError, TunnelError
from hookrelay.pipeline import EnvironmentLease, provisioned_environment
from hookrelay.sandbox.provider import DirectoryPayload, FilePayload
from hookrelay.sandbox.template import HOOKS_DIR, HOOKS_FILE
from hookrelay.webhook import parse_notification


if TYPE_CHECKING:
    from fastapi import Request
    from starlette.responses import Response

    from hookrelay.lifecycle import LifecycleCoordinator
    from hookrelay.relay import RequestRelay
    from hookrelay.sandbox.provider import Endpoint, SandboxProvisioner, TunnelManager
    from hookrelay.sandbox.template import EnvironmentTemplate
    from hookrelay.source import SourceResolver


class RelayMode(Protocol):
    """Handles every inbound request for the lifetime of the process."""

    name: str

    async def handle(self, request: Request) -> Response:
        """Serve one inbound request."""
        ...


class StaticProxyMode(RelayMode):
    """Relays every request to one long-lived environment.

    Args:
        relay: Request relay.
        endpoint: Endpoint of the shared environment, fixed for the process.
    """

    name = "static"

    def __init__(self, relay: RequestRelay, endpoint: Endpoint) -> None:
        self._relay = relay
        self.endpoint = endpoint

    async def handle(self, request: Request) -> Response:
        return await self._relay.forward(request, self.endpoint)


class CloneProxyMode(RelayMode):
    """Provisions an environment per push notification.

    Each request is parsed, its commit resolved and mounted at
    ``/<repo name>``, then relayed. The environment, its tunnel and the
    source snapshot are released once the response has been streamed, or
    as soon as any stage fails.

    Args:
        relay: Request relay.
        resolver: Source tree resolver.
        provisioner: Environment provisioner.
        tunnels: Tunnel manager.
        template: Built template instantiated per request.
    """

    name = "clone"

    def __init__(
        self,
        relay: RequestRelay,
        resolver: SourceResolver,
        provisioner: SandboxProvisioner,
        tunnels: TunnelManager,
        template: EnvironmentTemplate,
    ) -> None:
        self._relay = relay
        self._resolver = resolver
        self._provisioner = provisioner
        self._tunnels = tunnels
        self._template = template

    async def handle(self, request: Request) -> Response:
        # The body is read once and kept, so it can be parsed and still be
        # forwarded verbatim.
        body = await request.body()
        notification = parse_notification(body)
        mount = f"/{notification.repo_name}"

        async with AsyncExitStack() as stack:
            tree = await self._resolver.resolve(notification.full_name, notification.after)
            stack.push_async_callback(tree.cleanup)
            active = await stack.enter_async_context(
                provisioned_environment(
                    self._provisioner,
                    self._tunnels,
                    self._template,
                    payload=DirectoryPayload(source=tree.path, target=mount),
                    workdir=mount,
                )
            )
            upstream = await self._relay.send(request, active.endpoint, body=body)
            # From here on the response stream owns the release.
            release = stack.pop_all()
        return self._relay.stream_back(upstream, on_close=release.aclose)


def read_hooks_file(path: Path) -> str:
    """Read and validate the static-mode hooks file.

    Raises:
        StartupError: If the file cannot be read or is empty.
    """
    try:
        contents = path.read_text()
    except OSError as exc:
        raise StartupError(f"Failed to read hooks file {path}: {exc}") from exc
    if not contents.strip():
        raise StartupError(f"Hooks file {path} is empty")
    logger.debug("Hooks file loaded", path=str(path), hooks=contents)
    return contents


async def start_static_mode(
    hooks_path: Path,
    relay: RequestRelay,
    provisioner: SandboxProvisioner,
    tunnels: TunnelManager,
    template: EnvironmentTemplate,
    coordinator: LifecycleCoordinator,
) -> StaticProxyMode:
    """Provision the shared environment and register its teardown.

    Raises:
        StartupError: If the environment cannot be provisioned or reached.
    """
    lease = EnvironmentLease()
    try:
        await lease.acquire(
            provisioner,
            tunnels,
            template,
            payload=FilePayload(source=hooks_path, target=f"{HOOKS_DIR}/{HOOKS_FILE}"),
            workdir=HOOKS_DIR,
        )
    except (ProvisionError, TunnelError) as exc:
        raise StartupError(f"Failed to start webhook environment: {exc}") from exc
    coordinator.register_stop(lease.stop)
    return StaticProxyMode(relay, lease.endpoint)


async def select_mode(
    hooks_path: Path | None,
    relay: RequestRelay,
    resolver: SourceResolver,
    provisioner: SandboxProvisioner,
    tunnels: TunnelManager,
    template: EnvironmentTemplate,
    coordinator: LifecycleCoordinator,
) -> RelayMode:
    """Choose the operating mode from the startup arguments.

    Args:
        hooks_path: Hooks file for static mode, or None for clone mode.
        relay: Request relay shared by the mode.
        resolver: Source resolver (clone mode only).
        provisioner: Environment provisioner.
        tunnels: Tunnel manager.
        template: Built template.
        coordinator: Receives the static environment's teardown.

    Returns:
        The configured mode.

    Raises:
        StartupError: If static mode cannot be started.
    """
    if hooks_path is not None:
        logger.info("Starting reverse proxy mode", hooks=str(hooks_path))
        return await start_static_mode(hooks_path, relay, provisioner, tunnels, template, coordinator)

    logger.info("Starting git clone proxy mode")
    return CloneProxyMode(relay, resolver, provisioner, tunnels, template)
