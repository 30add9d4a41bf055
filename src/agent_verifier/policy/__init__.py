"""Adjudication policies: verdict mapping, failure routing, and retry budget."""

from agent_verifier.policy.retry import should_retry
from agent_verifier.policy.routing import route
from agent_verifier.policy.verdict import map_to_verdict

__all__ = [
    "map_to_verdict",
    "route",
    "should_retry",
]
