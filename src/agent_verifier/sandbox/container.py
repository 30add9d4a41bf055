"""Docker container lifecycle management for sandboxed artifact execution."""

from __future__ import annotations

import asyncio
import logging
import re
import tempfile
import time
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

import docker
import docker.errors
import requests.exceptions

from agent_verifier.models.sandbox import SandboxConfig
from agent_verifier.runners.base import WORKSPACE_DIR
from agent_verifier.sandbox.security import to_container_config

logger = logging.getLogger(__name__)

# Regex to strip ANSI escape sequences (colours, cursor movement, etc.).
_ANSI_ESCAPE_RE: re.Pattern[str] = re.compile(r"\x1b\[[0-9;]*[a-zA-Z]")

# Control characters to strip (everything except newline \n, carriage return \r, tab \t).
_CONTROL_CHAR_RE: re.Pattern[str] = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# Environment variable names that must never be forwarded to sandbox
# containers because they can alter interpreter behaviour in dangerous ways
# (e.g. executing arbitrary code at startup, loading shared libraries).
_BLOCKED_ENV_VARS: frozenset[str] = frozenset({
    "LD_PRELOAD", "LD_LIBRARY_PATH", "PYTHONSTARTUP", "PYTHONPATH",
    "PYTHONINSPECT", "PYTHONBREAKPOINT", "NODE_OPTIONS", "NODE_PATH",
    "NPM_CONFIG_USERCONFIG", "NPM_CONFIG_REGISTRY",
    "BASH_ENV", "ENV", "CDPATH", "GLOBIGNORE", "PATH", "HOME",
})

_BYTES_PER_MB = 1024 * 1024


def _sanitize_output(raw: str) -> str:
    """Strip ANSI escape codes and control characters from container output.

    Newlines, carriage returns, and tabs are preserved because they carry
    meaningful formatting for tool output.
    """
    text = _ANSI_ESCAPE_RE.sub("", raw)
    text = _CONTROL_CHAR_RE.sub("", text)
    return text


def _truncate_bytes(data: bytes, limit: int) -> tuple[bytes, bool]:
    """Truncate *data* to at most *limit* bytes.

    If the data is truncated, a trailing marker is appended so downstream
    consumers know the output was cut short.
    """
    if len(data) <= limit:
        return data, False
    return data[:limit] + f"\n... [truncated at {limit} bytes]\n".encode(), True


@dataclass(frozen=True)
class SandboxResult:
    """Outcome of a sandboxed container execution."""

    exit_code: int
    stdout: str
    stderr: str
    execution_time_seconds: float = 0.0
    timed_out: bool = False
    oom_killed: bool = False
    truncated: bool = False
    peak_memory_mb: float = 0.0
    cpu_time_ms: int = 0
    container_id: str = ""


class ContainerSandbox:
    """Manages the full lifecycle of an ephemeral Docker container.

    Each call to :meth:`run` creates a fresh container, executes the
    specified command, collects results, and **unconditionally** removes the
    container regardless of success, failure or cancellation.

    All blocking Docker SDK calls are dispatched via
    ``asyncio.to_thread`` so that the event loop is never blocked.

    Parameters
    ----------
    docker_client:
        Client to use.  Defaults to ``docker.from_env()``.
    allowed_images:
        Images the sandbox is allowed to run.  Any other image is rejected
        before a container is ever created.
    """

    def __init__(
        self,
        docker_client: docker.DockerClient | None = None,
        allowed_images: Iterable[str] = (),
    ) -> None:
        self._client = docker_client or docker.from_env()
        self._allowed_images = frozenset(allowed_images)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(
        self,
        image: str,
        command: list[str],
        code_files: dict[str, str],
        config: SandboxConfig,
        env_vars: dict[str, str] | None = None,
        seccomp_profile_json: str | None = None,
    ) -> SandboxResult:
        """Execute *command* inside a sandboxed container and return the result.

        Parameters
        ----------
        image:
            Docker image to use (must already be pulled).
        command:
            Command and arguments to execute inside the container.
        code_files:
            Mapping of ``relative_path -> content`` placed under
            ``/workspace/`` inside the container (read-only bind mount).
        config:
            Isolation policy: resource limits, network and security
            settings.  Its ``timeout_seconds`` bounds the wall clock and
            its ``max_output_bytes`` bounds each captured stream.
        env_vars:
            Optional environment variables to set inside the container.
        seccomp_profile_json:
            Optional JSON seccomp profile for ``strict`` policies.

        Returns
        -------
        SandboxResult
            Exit code, captured output, timing, resource usage, and whether
            the container was killed due to timeout or memory exhaustion.
        """
        if image not in self._allowed_images:
            raise ValueError(
                f"Image {image!r} is not in the allowed image list. "
                f"Allowed: {sorted(self._allowed_images)}"
            )

        limits = config.resource_limits
        container = None
        workspace: tempfile.TemporaryDirectory[str] | None = None

        try:
            # ---- 1. Write artifacts to a temp directory for bind mount -----
            workspace = tempfile.TemporaryDirectory(prefix="agent_verifier_ws_")
            for relative_path, content in code_files.items():
                if relative_path.startswith("/") or ".." in relative_path.split("/"):
                    raise ValueError(f"Path traversal in code_files key: {relative_path!r}")
                dest = Path(workspace.name) / relative_path
                dest.parent.mkdir(parents=True, exist_ok=True)
                dest.write_text(content, encoding="utf-8")

            # ---- 2. Build the full container configuration -----------------
            host_config = to_container_config(config, seccomp_profile_json)
            host_config["volumes"] = {workspace.name: {"bind": WORKSPACE_DIR, "mode": "ro"}}

            # ---- 3. Filter environment variables ---------------------------
            safe_env: dict[str, str] = {}
            for key, value in (env_vars or {}).items():
                if key.upper() in _BLOCKED_ENV_VARS:
                    logger.warning("Blocked dangerous env var: %s", key)
                    continue
                safe_env[key] = value

            # ---- 4. Create container (not yet started) ---------------------
            container = await asyncio.to_thread(
                self._client.containers.create,
                image=image,
                command=command,
                working_dir=WORKSPACE_DIR,
                detach=True,
                stdin_open=False,
                tty=False,
                environment=safe_env,
                **host_config,
            )

            logger.info(
                "Container created: id=%s image=%s",
                container.short_id,
                image,
            )

            # ---- 5. Start container and wait with timeout ------------------
            start_time = time.monotonic()
            await asyncio.to_thread(container.start)

            timed_out = False
            try:
                exit_info = await asyncio.to_thread(
                    container.wait,
                    timeout=limits.timeout_seconds,
                )
                exit_code: int = int(exit_info.get("StatusCode", -1))
            except (
                ConnectionError,
                requests.exceptions.ReadTimeout,
                requests.exceptions.ConnectionError,
            ) as exc:
                logger.warning(
                    "Container %s exceeded %ss wall clock, killing: %s",
                    container.short_id,
                    limits.timeout_seconds,
                    exc,
                )
                timed_out = True
                exit_code = -1
                try:
                    await asyncio.to_thread(container.kill)
                except docker.errors.APIError:
                    # Container may have already exited; ignore.
                    pass

            elapsed = time.monotonic() - start_time

            # ---- 6. Resource usage and OOM state ---------------------------
            peak_memory_mb, cpu_time_ms = await self._collect_stats(container)
            oom_killed = False
            try:
                await asyncio.to_thread(container.reload)
                oom_killed = bool(container.attrs.get("State", {}).get("OOMKilled", False))
            except docker.errors.APIError as exc:
                logger.debug("Could not inspect container %s: %s", container.short_id, exc)

            # ---- 7. Capture stdout / stderr (truncated) --------------------
            raw_stdout: bytes = await asyncio.to_thread(
                container.logs, stdout=True, stderr=False
            )
            raw_stderr: bytes = await asyncio.to_thread(
                container.logs, stdout=False, stderr=True
            )

            raw_stdout, stdout_truncated = _truncate_bytes(raw_stdout, limits.max_output_bytes)
            raw_stderr, stderr_truncated = _truncate_bytes(raw_stderr, limits.max_output_bytes)

            # ---- 8. Sanitize text output -----------------------------------
            stdout_text = _sanitize_output(raw_stdout.decode("utf-8", errors="replace"))
            stderr_text = _sanitize_output(raw_stderr.decode("utf-8", errors="replace"))

            return SandboxResult(
                exit_code=exit_code,
                stdout=stdout_text,
                stderr=stderr_text,
                execution_time_seconds=round(elapsed, 3),
                timed_out=timed_out,
                oom_killed=oom_killed,
                truncated=stdout_truncated or stderr_truncated,
                peak_memory_mb=peak_memory_mb,
                cpu_time_ms=cpu_time_ms,
                container_id=container.short_id,
            )

        except asyncio.CancelledError:
            logger.info(
                "Sandbox run cancelled, tearing down container %s",
                container.short_id if container is not None else "<not created>",
            )
            raise
        except docker.errors.ImageNotFound:
            logger.error("Docker image not found: %s", image)
            raise
        except docker.errors.APIError:
            logger.exception("Docker API error while running container")
            raise
        finally:
            # ---- 9. ALWAYS remove container --------------------------------
            if container is not None:
                try:
                    await asyncio.to_thread(container.remove, force=True)
                    logger.info("Container removed: id=%s", container.short_id)
                except docker.errors.APIError as exc:
                    # Log but do not raise – the caller should still get the
                    # original exception (if any).
                    logger.error(
                        "Failed to remove container %s: %s",
                        container.short_id,
                        exc,
                    )

            if workspace is not None:
                workspace.cleanup()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _collect_stats(self, container) -> tuple[float, int]:
        """Best-effort peak memory (MB) and CPU time (ms) of a finished container."""
        try:
            stats = await asyncio.to_thread(container.stats, stream=False)
        except docker.errors.APIError as exc:
            logger.debug("No stats for container %s: %s", container.short_id, exc)
            return 0.0, 0
        memory = stats.get("memory_stats") or {}
        peak_bytes = memory.get("max_usage") or memory.get("usage") or 0
        cpu_ns = ((stats.get("cpu_stats") or {}).get("cpu_usage") or {}).get("total_usage") or 0
        return round(peak_bytes / _BYTES_PER_MB, 2), int(cpu_ns // 1_000_000)
