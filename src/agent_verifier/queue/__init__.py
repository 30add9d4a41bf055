"""Redis-backed run queue shared by the API and the worker."""

from agent_verifier.queue.redis_queue import VerificationQueue

__all__ = ["VerificationQueue"]
