"""Dependency vetting: classify the dependencies an artifact bundle declares."""

from agent_verifier.vetting.base import BaseDependencyVetter
from agent_verifier.vetting.manifest import ManifestDependencyVetter, normalize_name
from agent_verifier.vetting.osv import OsvClient

__all__ = [
    "BaseDependencyVetter",
    "ManifestDependencyVetter",
    "OsvClient",
    "normalize_name",
]
