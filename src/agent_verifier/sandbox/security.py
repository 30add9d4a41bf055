"""Sandbox isolation policy: the default config factory and its Docker translation."""

from __future__ import annotations

import logging

from agent_verifier.models.enums import NetworkMode, Runtime, SeccompProfile
from agent_verifier.models.sandbox import (
    NetworkPolicy,
    ResourceLimits,
    SandboxConfig,
    SecurityConfig,
)

logger = logging.getLogger(__name__)

# Writable scratch area inside the container; everything else is read-only.
SCRATCH_DIR = "/scratch"
SCRATCH_SIZE_MB = 64

# CFS quota expressed in billionths of a CPU, as the Docker API expects.
_NANO_CPUS_PER_CORE = 1_000_000_000

# Ceiling on concurrent processes/threads inside a sandbox.
_PIDS_LIMIT = 128


def build_config(runtime: Runtime) -> SandboxConfig:
    """Return the maximally restrictive sandbox policy for *runtime*.

    Pure function of the runtime: 512 MB memory, half a CPU core, 30 s
    wall clock, 1 MiB captured output per stream, no network with
    exfiltration blocking, read-only root filesystem, no new privileges,
    all capabilities dropped, strict seccomp profile, empty environment.
    Calling it twice for the same runtime yields equal values.
    """
    return SandboxConfig(
        runtime=runtime,
        resource_limits=ResourceLimits(
            memory_mb=512,
            cpu_cores=0.5,
            timeout_seconds=30,
            max_output_bytes=1024 * 1024,
        ),
        network_policy=NetworkPolicy(mode=NetworkMode.NONE, block_exfiltration=True),
        security=SecurityConfig(
            read_only_filesystem=True,
            no_new_privileges=True,
            drop_capabilities=("ALL",),
            seccomp_profile=SeccompProfile.STRICT,
        ),
        environment={},
    )


def to_container_config(
    config: SandboxConfig,
    seccomp_profile_json: str | None = None,
) -> dict:
    """Convert a :class:`SandboxConfig` into Docker SDK ``create`` keyword arguments.

    Parameters
    ----------
    config:
        The sandbox policy to translate.
    seccomp_profile_json:
        Contents of a JSON seccomp profile used when the policy asks for
        the ``strict`` profile.  Without one, Docker's built-in default
        profile applies.
    """
    limits = config.resource_limits
    security = config.security

    if config.network_policy.mode == NetworkMode.NONE:
        network_mode = "none"
    else:
        # Egress filtering to allowed_hosts is the job of the network the
        # container joins; the sandbox only selects it.
        logger.info(
            "Sandbox network relaxed to %s (allowed_hosts=%s)",
            config.network_policy.mode.value,
            list(config.network_policy.allowed_hosts),
        )
        network_mode = "bridge"

    security_opt: list[str] = []
    if security.no_new_privileges:
        security_opt.append("no-new-privileges")
    if security.seccomp_profile == SeccompProfile.STRICT and seccomp_profile_json:
        security_opt.append(f"seccomp={seccomp_profile_json}")

    return {
        "network_mode": network_mode,
        "read_only": security.read_only_filesystem,
        "mem_limit": f"{limits.memory_mb}m",
        "memswap_limit": f"{limits.memory_mb}m",  # No swap
        "nano_cpus": int(limits.cpu_cores * _NANO_CPUS_PER_CORE),
        "pids_limit": _PIDS_LIMIT,
        "security_opt": security_opt,
        "cap_drop": list(security.drop_capabilities),
        "tmpfs": {
            "/tmp": f"size={SCRATCH_SIZE_MB}m,nosuid",
            SCRATCH_DIR: f"size={SCRATCH_SIZE_MB}m,nosuid",
        },
    }
