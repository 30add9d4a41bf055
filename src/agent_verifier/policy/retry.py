"""Repair-budget policy."""

from agent_verifier.models.enums import FailureCategory


def should_retry(iteration: int, max_budget: int, category: FailureCategory) -> bool:
    """Whether another automated repair attempt is permitted.

    No attempt is allowed once *iteration* reaches *max_budget*.  Security
    failures only get the first half of the budget (``max_budget // 2``)
    before they must be escalated.
    """
    if iteration >= max_budget:
        return False
    if category == FailureCategory.SECURITY:
        return iteration < max_budget // 2
    return True
