"""Sandbox environments that run the webhook dispatch binary."""

from hookrelay.sandbox.docker import DockerProvisioner
from hookrelay.sandbox.provider import (
    DirectoryPayload,
    Endpoint,
    FilePayload,
    Payload,
    RunningEnvironment,
    SandboxProvisioner,
    Tunnel,
    TunnelManager,
)
from hookrelay.sandbox.template import EnvironmentTemplate, webhook_template
from hookrelay.sandbox.tunnel import PublishedPortTunnelManager


__all__ = [
    "DirectoryPayload",
    "DockerProvisioner",
    "Endpoint",
    "EnvironmentTemplate",
    "FilePayload",
    "Payload",
    "PublishedPortTunnelManager",
    "RunningEnvironment",
    "SandboxProvisioner",
    "Tunnel",
    "TunnelManager",
    "webhook_template",
]
