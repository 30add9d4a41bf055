"""Verification run queue via Redis Streams.

Provides :class:`VerificationQueue` -- the interface for enqueuing,
dequeuing and tracking verification runs.  Runs travel through a Redis
Stream consumed by a consumer group; status, the latest report snapshot,
cancellation flags and run data live in plain keys.  Repair requests for
failed runs are published to a second stream read by the agent layer.
"""

from __future__ import annotations

import logging

import redis.asyncio as redis

from agent_verifier.models.enums import RunStatus, VerificationPhase
from agent_verifier.models.report import VerificationReport
from agent_verifier.models.run import RepairRequest, VerificationRun

logger = logging.getLogger(__name__)

# Redis key prefixes / names
STREAM_KEY = "verifier:runs:stream"
STATUS_PREFIX = "verifier:runs:status:"
REPORT_PREFIX = "verifier:runs:report:"
PHASE_PREFIX = "verifier:runs:phase:"
ERROR_PREFIX = "verifier:runs:error:"
CANCEL_PREFIX = "verifier:runs:cancel:"
RUN_PREFIX = "verifier:runs:data:"
RUNS_INDEX_KEY = "verifier:runs:index"
REPAIR_STREAM_KEY = "verifier:repairs:stream"

# Cancellation flags outlive any sane run but are not kept forever.
CANCEL_TTL_SECONDS = 24 * 60 * 60


def _text(raw: bytes | str) -> str:
    return raw.decode() if isinstance(raw, bytes) else raw


class VerificationQueue:
    """Redis-backed run queue using Redis Streams.

    Parameters
    ----------
    redis_client:
        An ``redis.asyncio.Redis`` instance connected to the Redis server.
    """

    def __init__(self, redis_client: redis.Redis) -> None:
        self._redis = redis_client

    # ------------------------------------------------------------------
    # Health
    # ------------------------------------------------------------------

    async def health_check(self) -> bool:
        """Return ``True`` if Redis is reachable."""
        try:
            return await self._redis.ping()
        except (redis.RedisError, OSError):
            return False

    # ------------------------------------------------------------------
    # Enqueue / Dequeue
    # ------------------------------------------------------------------

    async def enqueue(self, run: VerificationRun) -> str:
        """Add a run to the stream and set its status to QUEUED.

        Returns the Redis message ID.
        """
        run_data = run.model_dump_json()

        await self._redis.set(f"{RUN_PREFIX}{run.run_id}", run_data)
        await self._redis.zadd(RUNS_INDEX_KEY, {run.run_id: run.created_at.timestamp()})
        await self.set_status(run.run_id, RunStatus.QUEUED)

        msg_id = await self._redis.xadd(STREAM_KEY, {"run_id": run.run_id, "data": run_data})
        logger.info("Enqueued run %s for task %s (msg_id=%s)", run.run_id, run.task_id, msg_id)
        return _text(msg_id)

    async def dequeue(
        self,
        group: str,
        consumer: str,
        count: int = 1,
        block_ms: int = 5000,
    ) -> list[tuple[str, VerificationRun]]:
        """Read new messages from the stream as part of a consumer group.

        Automatically creates the consumer group if it does not yet exist.
        Messages that cannot be deserialised are acknowledged and dropped.

        Returns a list of ``(message_id, VerificationRun)`` tuples.
        """
        try:
            await self._redis.xgroup_create(STREAM_KEY, group, id="0", mkstream=True)
        except redis.ResponseError as exc:
            # "BUSYGROUP Consumer Group name already exists"
            if "BUSYGROUP" not in str(exc):
                raise

        raw: list = await self._redis.xreadgroup(
            groupname=group,
            consumername=consumer,
            streams={STREAM_KEY: ">"},
            count=count,
            block=block_ms,
        )

        results: list[tuple[str, VerificationRun]] = []
        if not raw:
            return results

        for _stream_name, messages in raw:
            for msg_id, fields in messages:
                msg_id_str = _text(msg_id)
                data = fields.get(b"data", fields.get("data", b""))
                try:
                    run = VerificationRun.model_validate_json(_text(data))
                except ValueError:
                    logger.exception("Failed to deserialise run from message %s", msg_id_str)
                    await self.acknowledge(msg_id_str, group)
                    continue
                results.append((msg_id_str, run))

        return results

    async def acknowledge(self, msg_id: str, group: str) -> None:
        """Acknowledge a message so it is not re-delivered."""
        await self._redis.xack(STREAM_KEY, group, msg_id)

    # ------------------------------------------------------------------
    # Status tracking
    # ------------------------------------------------------------------

    async def set_status(
        self,
        run_id: str,
        status: RunStatus,
        error: str | None = None,
    ) -> None:
        """Update the status of a run, recording *error* when given."""
        await self._redis.set(f"{STATUS_PREFIX}{run_id}", status.value)
        if error is not None:
            await self._redis.set(f"{ERROR_PREFIX}{run_id}", error)
        logger.debug("Run %s -> %s", run_id, status.value)

    async def get_status(self, run_id: str) -> RunStatus | None:
        """Retrieve the current status of a run, or ``None`` if unknown."""
        raw = await self._redis.get(f"{STATUS_PREFIX}{run_id}")
        if raw is None:
            return None
        try:
            return RunStatus(_text(raw))
        except ValueError:
            return None

    async def get_error(self, run_id: str) -> str | None:
        raw = await self._redis.get(f"{ERROR_PREFIX}{run_id}")
        return None if raw is None else _text(raw)

    # ------------------------------------------------------------------
    # Report snapshots
    # ------------------------------------------------------------------

    async def store_snapshot(
        self,
        run_id: str,
        report: VerificationReport,
        phase: VerificationPhase,
    ) -> None:
        """Persist the latest report snapshot and the phase it was taken in."""
        await self._redis.set(f"{REPORT_PREFIX}{run_id}", report.model_dump_json())
        await self._redis.set(f"{PHASE_PREFIX}{run_id}", phase.value)

    async def get_report(self, run_id: str) -> VerificationReport | None:
        """Retrieve the latest report snapshot, or ``None``."""
        raw = await self._redis.get(f"{REPORT_PREFIX}{run_id}")
        if raw is None:
            return None
        return VerificationReport.model_validate_json(_text(raw))

    async def get_phase(self, run_id: str) -> VerificationPhase | None:
        raw = await self._redis.get(f"{PHASE_PREFIX}{run_id}")
        if raw is None:
            return None
        try:
            return VerificationPhase(_text(raw))
        except ValueError:
            return None

    # ------------------------------------------------------------------
    # Cancellation
    # ------------------------------------------------------------------

    async def request_cancel(self, run_id: str) -> None:
        """Flag *run_id* for cancellation; the worker polls the flag."""
        await self._redis.set(f"{CANCEL_PREFIX}{run_id}", "1", ex=CANCEL_TTL_SECONDS)
        logger.info("Cancellation requested for run %s", run_id)

    async def is_cancel_requested(self, run_id: str) -> bool:
        return bool(await self._redis.exists(f"{CANCEL_PREFIX}{run_id}"))

    # ------------------------------------------------------------------
    # Repair requests
    # ------------------------------------------------------------------

    async def publish_repair_request(self, request: RepairRequest) -> str:
        """Publish a repair request for the target agent.

        Returns the Redis message ID.
        """
        msg_id = await self._redis.xadd(
            REPAIR_STREAM_KEY,
            {
                "run_id": request.run_id,
                "target_agent": request.target_agent.value,
                "data": request.model_dump_json(),
            },
        )
        logger.info(
            "Published repair request for run %s to %s",
            request.run_id,
            request.target_agent.value,
        )
        return _text(msg_id)

    # ------------------------------------------------------------------
    # Run data retrieval
    # ------------------------------------------------------------------

    async def get_run(self, run_id: str) -> VerificationRun | None:
        """Retrieve the full run data, or ``None``."""
        raw = await self._redis.get(f"{RUN_PREFIX}{run_id}")
        if raw is None:
            return None
        return VerificationRun.model_validate_json(_text(raw))

    async def list_recent_runs(self, limit: int = 50) -> list[dict]:
        """Return the most recent *limit* run IDs with their statuses.

        Returns a list of dicts with ``run_id`` and ``status`` keys,
        ordered by creation time (newest first).
        """
        run_ids_raw: list = await self._redis.zrevrange(RUNS_INDEX_KEY, 0, limit - 1)

        results: list[dict] = []
        for raw_id in run_ids_raw:
            run_id = _text(raw_id)
            status = await self.get_status(run_id)
            results.append({
                "run_id": run_id,
                "status": status.value if status else "UNKNOWN",
            })

        return results

    # ------------------------------------------------------------------
    # Cleanup
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying Redis connection."""
        await self._redis.aclose()
