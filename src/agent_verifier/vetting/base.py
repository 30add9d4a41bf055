"""Abstract dependency vetter interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Sequence

from agent_verifier.models.findings import DependencyVet
from agent_verifier.models.sandbox import CodeArtifact
from agent_verifier.models.task import SecurityConstraints


class BaseDependencyVetter(ABC):
    """Classifies every dependency the artifacts declare.

    Implementations raise
    :class:`~agent_verifier.errors.CollaboratorUnavailableError` when a
    backing service they depend on cannot be reached.
    """

    @abstractmethod
    async def vet(
        self,
        artifacts: Sequence[CodeArtifact],
        constraints: SecurityConstraints,
    ) -> list[DependencyVet]:
        """Return one :class:`DependencyVet` per declared dependency, in manifest order."""
        ...
