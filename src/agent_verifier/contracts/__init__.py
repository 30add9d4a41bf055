"""Contract validation: check artifacts against a declared API contract."""

from agent_verifier.contracts.base import BaseContractValidator
from agent_verifier.contracts.openapi import OpenApiContractValidator, normalize_path

__all__ = [
    "BaseContractValidator",
    "OpenApiContractValidator",
    "normalize_path",
]
