"""Sandbox provisioning and tunnel interfaces.

Transport-agnostic: the relay only depends on these protocols, the Docker
implementations live in ``hookrelay.sandbox.docker`` and
``hookrelay.sandbox.tunnel``.
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, runtime_checkable


if TYPE_CHECKING:
    from hookrelay.sandbox.template import EnvironmentTemplate


@dataclass(frozen=True)
class FilePayload:
    """A single host file copied into the environment.

    Attributes:
        source: Path of the file on the host.
        target: Absolute destination path inside the environment.
    """

    source: Path
    target: str


@dataclass(frozen=True)
class DirectoryPayload:
    """A host directory whose contents are mounted at ``target``.

    Attributes:
        source: Directory on the host.
        target: Absolute destination directory inside the environment.
    """

    source: Path
    target: str


type Payload = FilePayload | DirectoryPayload


@dataclass(frozen=True)
class Endpoint:
    """Host-reachable address of a tunnel."""

    host: str
    port: int
    scheme: str = "http"

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    def __str__(self) -> str:
        return self.url


@dataclass
class RunningEnvironment:
    """A live environment instantiated from a template.

    Owned by the code path that created it; must be stopped exactly once.

    Attributes:
        name: Unique environment name.
        image: Template image the environment runs.
        exposed_port: Port exposed inside the environment.
        workdir: Working directory of the entrypoint process.
        stopped: Set once the environment has been stopped.
    """

    name: str
    image: str
    exposed_port: int
    workdir: str
    stopped: bool = False


@dataclass
class Tunnel:
    """Host-reachable binding over a running environment's exposed port."""

    environment: RunningEnvironment
    endpoint: Endpoint
    closed: bool = False


@runtime_checkable
class SandboxProvisioner(Protocol):
    """Builds templates and manages environment instances."""

    async def build_template(self, template: EnvironmentTemplate) -> EnvironmentTemplate:
        """Build (or reuse) the image backing ``template``.

        Args:
            template: Template definition to build.

        Returns:
            The template, ready to be instantiated.

        Raises:
            ProvisionError: If the image cannot be built.
        """
        ...

    async def instantiate(
        self,
        template: EnvironmentTemplate,
        payload: Payload | None = None,
        workdir: str | None = None,
    ) -> RunningEnvironment:
        """Start a new environment from ``template``.

        Returns as soon as the environment is scheduled to run; readiness
        is established by the tunnel manager.

        Args:
            template: Built template to instantiate.
            payload: Optional file or directory injected before start.
            workdir: Working directory override for the entrypoint.

        Returns:
            The running environment.

        Raises:
            ProvisionError: If the environment cannot be created or started.
        """
        ...

    async def stop(self, environment: RunningEnvironment) -> None:
        """Stop the environment. Best-effort and idempotent, never raises."""
        ...


@runtime_checkable
class TunnelManager(Protocol):
    """Establishes and tears down host access to environments."""

    async def open(self, environment: RunningEnvironment) -> Tunnel:
        """Wait until the environment's exposed port is reachable.

        Args:
            environment: Running environment to reach.

        Returns:
            Open tunnel with its resolved endpoint.

        Raises:
            TunnelError: If the environment never becomes reachable.
        """
        ...

    async def close(self, tunnel: Tunnel) -> None:
        """Close the tunnel. Best-effort and idempotent, never raises."""
        ...
