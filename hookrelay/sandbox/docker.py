"""Docker-based sandbox provisioner.

All docker interactions use asyncio.create_subprocess_exec, no Docker SDK
dependency. Each environment is one container running the template's
entrypoint, with its exposed port published on the host loopback.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import TYPE_CHECKING

from loguru import logger

from hookrelay.exceptions import ProvisionError
from hookrelay.sandbox.provider import DirectoryPayload, Payload, RunningEnvironment, SandboxProvisioner


if TYPE_CHECKING:
    from hookrelay.sandbox.template import EnvironmentTemplate


MANAGED_LABEL = "hookrelay.managed=true"
CONTAINER_PREFIX = "hookrelay-env-"


async def run_docker(*args: str, stdin: bytes | None = None) -> tuple[int, str, str]:
    """Run a docker command and collect its output.

    Args:
        args: Arguments after ``docker``.
        stdin: Optional bytes piped to the command.

    Returns:
        Tuple of (returncode, stdout, stderr).
    """
    proc = await asyncio.create_subprocess_exec(
        "docker", *args,
        stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
    )
    stdout, stderr = await proc.communicate(input=stdin)
    return proc.returncode or 0, stdout.decode().strip(), stderr.decode().strip()


async def container_running(name: str) -> bool:
    """Check if a container exists and its entrypoint is running."""
    returncode, stdout, _ = await run_docker("inspect", "--format", "{{.State.Running}}", name)
    return returncode == 0 and stdout == "true"


class DockerProvisioner(SandboxProvisioner):
    """Provisions sandbox environments as Docker containers.

    Args:
        publish_host: Host interface exposed ports are published on.
    """

    def __init__(self, publish_host: str = "127.0.0.1") -> None:
        self.publish_host = publish_host

    async def build_template(self, template: EnvironmentTemplate) -> EnvironmentTemplate:
        """Build the template image unless an identical one already exists."""
        if await self._image_exists(template.image):
            logger.info("Reusing template image", image=template.image)
            return template

        logger.info("Building template image", image=template.image, base=template.base_image)
        try:
            returncode, _, stderr = await run_docker(
                "build", "-t", template.image, "-",
                stdin=template.dockerfile().encode(),
            )
        except OSError as exc:
            raise ProvisionError(f"Failed to run docker: {exc}") from exc
        if returncode != 0:
            raise ProvisionError(f"Failed to build template {template.image}: {stderr}")
        logger.info("Template image built", image=template.image)
        return template

    async def instantiate(
        self,
        template: EnvironmentTemplate,
        payload: Payload | None = None,
        workdir: str | None = None,
    ) -> RunningEnvironment:
        """Create a container, copy the payload in and start it."""
        environment = RunningEnvironment(
            name=f"{CONTAINER_PREFIX}{uuid.uuid4().hex[:12]}",
            image=template.image,
            exposed_port=template.exposed_port,
            workdir=workdir or template.workdir,
        )
        cmd = [
            "create",
            "--name", environment.name,
            "--label", MANAGED_LABEL,
            "--workdir", environment.workdir,
            "-p", f"{self.publish_host}::{template.exposed_port}",
            template.image,
            *template.command,
        ]
        try:
            returncode, _, stderr = await run_docker(*cmd)
        except OSError as exc:
            raise ProvisionError(f"Failed to run docker: {exc}") from exc
        if returncode != 0:
            raise ProvisionError(f"Failed to create environment: {stderr}")

        try:
            if payload is not None:
                await self._copy_payload(environment, payload)
            returncode, _, stderr = await run_docker("start", environment.name)
            if returncode != 0:
                raise ProvisionError(f"Failed to start environment {environment.name}: {stderr}")
        except BaseException:
            # The caller never sees this environment, so release it here.
            await self.stop(environment)
            raise

        logger.info(
            "Environment started",
            environment=environment.name,
            image=environment.image,
            workdir=environment.workdir,
        )
        return environment

    async def stop(self, environment: RunningEnvironment) -> None:
        """Remove the container, logging instead of raising on failure."""
        if environment.stopped:
            logger.debug("Environment already stopped", environment=environment.name)
            return
        environment.stopped = True
        try:
            returncode, _, stderr = await run_docker("rm", "-f", environment.name)
        except OSError as exc:
            logger.warning("Failed to stop environment", environment=environment.name, error=str(exc))
            return
        if returncode != 0:
            logger.warning("Failed to stop environment", environment=environment.name, error=stderr)
        else:
            logger.info("Environment stopped", environment=environment.name)

    async def _image_exists(self, image: str) -> bool:
        try:
            returncode, _, _ = await run_docker("image", "inspect", image)
        except OSError as exc:
            raise ProvisionError(f"Failed to run docker: {exc}") from exc
        return returncode == 0

    async def _copy_payload(self, environment: RunningEnvironment, payload: Payload) -> None:
        """Copy a host file or directory into the created container."""
        source = str(payload.source)
        if isinstance(payload, DirectoryPayload):
            # Trailing "/." copies the directory contents, whether or not
            # the target already exists.
            source = f"{source.rstrip('/')}/."
        returncode, _, stderr = await run_docker("cp", source, f"{environment.name}:{payload.target}")
        if returncode != 0:
            raise ProvisionError(
                f"Failed to copy {payload.source} into {environment.name}:{payload.target}: {stderr}"
            )
        logger.debug("Payload copied", environment=environment.name, target=payload.target)
