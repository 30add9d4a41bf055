"""Abstract contract validator interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from agent_verifier.models.findings import ContractValidationResult
from agent_verifier.models.sandbox import CodeArtifact
from agent_verifier.models.task import ContractEndpoint


class BaseContractValidator(ABC):
    """Checks artifacts against a declared API contract.

    Implementations raise
    :class:`~agent_verifier.errors.CollaboratorUnavailableError` when the
    contract cannot be loaded.
    """

    @abstractmethod
    async def validate(
        self,
        spec_url: str,
        artifacts: Sequence[CodeArtifact],
        endpoints: Sequence[ContractEndpoint] = (),
    ) -> ContractValidationResult:
        """Validate *artifacts* against the contract at *spec_url*.

        *endpoints* lists operations declared inline with the task; they
        are checked in addition to those the contract document defines.
        """
        ...
