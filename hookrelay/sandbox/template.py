"""Immutable environment template for the webhook dispatch binary."""

from __future__ import annotations

import hashlib
import json
import shlex

from pydantic import BaseModel, ConfigDict, Field


WEBHOOK_RELEASE_URL = (
    "https://github.com/adnanh/webhook/releases/download/"
    "{version}/webhook-linux-amd64.tar.gz"
)
WEBHOOK_BINARY = "/usr/local/bin/webhook"
HOOKS_DIR = "/hooks"
HOOKS_FILE = "hooks.json"


class EnvironmentTemplate(BaseModel):
    """Blueprint for a sandbox environment.

    Built once at startup and shared read-only by every instantiation.

    Attributes:
        name: Image repository name.
        base_image: Image the template starts from.
        setup: Shell commands run in order while building.
        workdir: Default working directory.
        entrypoint: Entrypoint of every instance.
        command: Arguments passed to the entrypoint.
        exposed_port: The single port exposed by instances.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    base_image: str
    setup: tuple[str, ...] = ()
    workdir: str = "/"
    entrypoint: tuple[str, ...]
    command: tuple[str, ...] = ()
    exposed_port: int = Field(ge=1, le=65535)

    def dockerfile(self) -> str:
        """Render the template as a Dockerfile."""
        lines = [f"FROM {self.base_image}"]
        lines.extend(f"RUN {step}" for step in self.setup)
        lines.append(f"WORKDIR {self.workdir}")
        lines.append(f"EXPOSE {self.exposed_port}")
        lines.append(f"ENTRYPOINT {json.dumps(list(self.entrypoint))}")
        if self.command:
            lines.append(f"CMD {json.dumps(list(self.command))}")
        return "\n".join(lines) + "\n"

    @property
    def image(self) -> str:
        """Image reference, tagged with a hash of the definition.

        Identical definitions share a tag, so rebuilding is a cache hit.
        """
        digest = hashlib.sha256(self.dockerfile().encode()).hexdigest()[:12]
        return f"{self.name}:{digest}"


def webhook_template(
    version: str = "2.8.1",
    base_image: str = "ubuntu:24.04",
    port: int = 9000,
    name: str = "hookrelay-webhook",
) -> EnvironmentTemplate:
    """Template that installs adnanh/webhook and runs it as the entrypoint.

    Args:
        version: Webhook release to download.
        base_image: Base image to install into.
        port: Port the webhook binary listens on.
        name: Image repository name.

    Returns:
        The webhook environment template.
    """
    archive = "webhook-linux-amd64.tar.gz"
    url = WEBHOOK_RELEASE_URL.format(version=version)
    return EnvironmentTemplate(
        name=name,
        base_image=base_image,
        setup=(
            "apt-get update && apt-get install -y --no-install-recommends wget ca-certificates "
            "&& rm -rf /var/lib/apt/lists/*",
            f"wget -q {shlex.quote(url)} -O /tmp/{archive}",
            f"tar -C /usr/local/bin --strip-components 1 -xf /tmp/{archive} "
            f"webhook-linux-amd64/webhook && rm /tmp/{archive}",
        ),
        workdir=HOOKS_DIR,
        entrypoint=(WEBHOOK_BINARY,),
        command=("-verbose", "-port", str(port), "-hooks", HOOKS_FILE),
        exposed_port=port,
    )
