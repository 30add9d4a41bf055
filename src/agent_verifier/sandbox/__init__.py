"""Sandbox subsystem: isolation policy, request building, and container execution."""

from agent_verifier.sandbox.container import ContainerSandbox, SandboxResult
from agent_verifier.sandbox.executor import BaseSandboxExecutor, DockerSandboxExecutor
from agent_verifier.sandbox.request import build_request
from agent_verifier.sandbox.security import build_config, to_container_config

__all__ = [
    "BaseSandboxExecutor",
    "ContainerSandbox",
    "DockerSandboxExecutor",
    "SandboxResult",
    "build_config",
    "build_request",
    "to_container_config",
]
