"""Dependency vetting from the manifests shipped among the artifacts.

``requirements*.txt`` files and ``package.json`` are read; every declared
dependency is classified as:

* ``BANNED`` -- on the service or task ban list, or missing from a
  non-empty task allow list;
* ``UNPINNED`` -- no exact version (``==`` for Python, a bare semver for npm);
* ``OUTDATED`` -- pinned, but older than the version the allow list pins,
  or affected by a known vulnerability (when OSV lookups are enabled);
* ``APPROVED`` -- everything else.
"""

from __future__ import annotations

import json
import logging
import posixpath
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass

from agent_verifier.models.enums import ArtifactType, DependencyStatus
from agent_verifier.models.findings import DependencyVet, VulnerabilityInfo
from agent_verifier.models.sandbox import CodeArtifact
from agent_verifier.models.task import SecurityConstraints
from agent_verifier.vetting.base import BaseDependencyVetter
from agent_verifier.vetting.osv import OsvClient

logger = logging.getLogger(__name__)

# ``name[extras] <specifier> ; <marker>``
_REQUIREMENT_RE: re.Pattern[str] = re.compile(
    r"^(?P<name>[A-Za-z0-9][A-Za-z0-9._-]*)\s*(?:\[[^\]]*\])?\s*(?P<spec>[^;#]*)"
)
_PINNED_PY_RE: re.Pattern[str] = re.compile(r"^===?\s*(?P<version>[^\s,*]+)$")
_PINNED_NPM_RE: re.Pattern[str] = re.compile(
    r"^=?v?(?P<version>\d+\.\d+\.\d+(?:[-+][0-9A-Za-z.-]+)?)$"
)

_NODE_MANIFEST = "package.json"


@dataclass(frozen=True)
class _Declared:
    name: str
    spec: str
    source_file: str
    ecosystem: str  # OSV ecosystem: "PyPI" or "npm"
    pinned_version: str | None


def normalize_name(name: str) -> str:
    """Canonical package name (PEP 503 style, also applied to npm names)."""
    return re.sub(r"[-_.]+", "-", name).lower()


class ManifestDependencyVetter(BaseDependencyVetter):
    """Vets dependencies declared in ``requirements*.txt`` and ``package.json``.

    Parameters
    ----------
    banned:
        Service-wide ban list, merged with each task's own ban list.
    osv_client:
        Optional vulnerability lookup for pinned versions.
    """

    def __init__(
        self,
        banned: Iterable[str] = (),
        osv_client: OsvClient | None = None,
    ) -> None:
        self._banned = {normalize_name(name) for name in banned}
        self._osv = osv_client

    async def vet(
        self,
        artifacts: Sequence[CodeArtifact],
        constraints: SecurityConstraints,
    ) -> list[DependencyVet]:
        banned = self._banned | {normalize_name(n) for n in constraints.banned_dependencies}
        allowed = _parse_allow_list(constraints.allowed_dependencies)

        results: list[DependencyVet] = []
        for declared in _declared_dependencies(artifacts):
            results.append(await self._classify(declared, banned, allowed))

        logger.info(
            "Vetted %d dependencies: %d banned, %d unpinned",
            len(results),
            sum(1 for r in results if r.status == DependencyStatus.BANNED),
            sum(1 for r in results if r.status == DependencyStatus.UNPINNED),
        )
        return results

    async def _classify(
        self,
        declared: _Declared,
        banned: set[str],
        allowed: dict[str, str | None],
    ) -> DependencyVet:
        key = normalize_name(declared.name)
        version = declared.pinned_version or declared.spec or "*"

        def make(
            status: DependencyStatus,
            reason: str | None = None,
            vulnerability: VulnerabilityInfo | None = None,
        ) -> DependencyVet:
            return DependencyVet(
                name=declared.name,
                version=version,
                status=status,
                source_file=declared.source_file,
                reason=reason,
                vulnerability=vulnerability,
            )

        if key in banned:
            return make(DependencyStatus.BANNED, "Banned by security policy")
        if allowed and key not in allowed:
            return make(DependencyStatus.BANNED, "Not in the task's allowed dependencies")
        if declared.pinned_version is None:
            return make(DependencyStatus.UNPINNED, "Version not pinned")

        allowed_version = allowed.get(key)
        pinned = declared.pinned_version
        if allowed_version and _is_older(pinned, allowed_version):
            return make(DependencyStatus.OUTDATED, f"Allowed version is {allowed_version}")

        if self._osv is not None:
            vulnerability = await self._osv.query(declared.name, pinned, declared.ecosystem)
            if vulnerability is not None:
                fix = f"; fixed in {vulnerability.fix_version}" if vulnerability.fix_version else ""
                return make(
                    DependencyStatus.OUTDATED,
                    f"Known vulnerability {vulnerability.cve_id}{fix}",
                    vulnerability,
                )

        return make(DependencyStatus.APPROVED)


# ---------------------------------------------------------------------------
# Manifest parsing
# ---------------------------------------------------------------------------


def _declared_dependencies(artifacts: Sequence[CodeArtifact]) -> list[_Declared]:
    declared: list[_Declared] = []
    for artifact in artifacts:
        basename = posixpath.basename(artifact.filename)
        if basename == _NODE_MANIFEST:
            declared.extend(_parse_package_json(artifact))
        elif (
            basename.startswith("requirements") and basename.endswith(".txt")
        ) or artifact.type == ArtifactType.REQUIREMENTS:
            declared.extend(_parse_requirements(artifact))
    return declared


def _parse_requirements(artifact: CodeArtifact) -> list[_Declared]:
    declared: list[_Declared] = []
    for raw_line in artifact.content.splitlines():
        line = raw_line.split("#", 1)[0].strip()
        # Options (-r, -e, --index-url) and direct URLs are not dependencies we can vet.
        if not line or line.startswith("-") or "://" in line:
            continue
        match = _REQUIREMENT_RE.match(line)
        if match is None:
            logger.debug("Skipping unparseable requirement line: %s", raw_line)
            continue
        spec = match.group("spec").strip()
        pinned = _PINNED_PY_RE.match(spec)
        declared.append(
            _Declared(
                name=match.group("name"),
                spec=spec,
                source_file=artifact.filename,
                ecosystem="PyPI",
                pinned_version=pinned.group("version") if pinned else None,
            )
        )
    return declared


def _parse_package_json(artifact: CodeArtifact) -> list[_Declared]:
    try:
        manifest = json.loads(artifact.content)
    except json.JSONDecodeError:
        logger.warning("Ignoring unparseable %s", artifact.filename)
        return []

    declared: list[_Declared] = []
    for section in ("dependencies", "devDependencies"):
        for name, spec in (manifest.get(section) or {}).items():
            spec = str(spec).strip()
            pinned = _PINNED_NPM_RE.match(spec)
            declared.append(
                _Declared(
                    name=name,
                    spec=spec,
                    source_file=artifact.filename,
                    ecosystem="npm",
                    pinned_version=pinned.group("version") if pinned else None,
                )
            )
    return declared


def _parse_allow_list(entries: Iterable[str]) -> dict[str, str | None]:
    """Map normalized names to the exact version the allow list pins, if any."""
    allowed: dict[str, str | None] = {}
    for entry in entries:
        match = _REQUIREMENT_RE.match(entry.strip())
        if match is None:
            continue
        pinned = _PINNED_PY_RE.match(match.group("spec").strip())
        allowed[normalize_name(match.group("name"))] = pinned.group("version") if pinned else None
    return allowed


def _version_key(version: str) -> tuple[int, ...]:
    """Numeric release tuple; pre-release and build suffixes are ignored."""
    parts: list[int] = []
    for piece in re.split(r"[.+-]", version):
        if not piece.isdigit():
            break
        parts.append(int(piece))
    return tuple(parts)


def _is_older(version: str, reference: str) -> bool:
    """Compare release tuples, treating missing trailing parts as zero (2.31 == 2.31.0)."""
    left, right = _version_key(version), _version_key(reference)
    width = max(len(left), len(right))
    return left + (0,) * (width - len(left)) < right + (0,) * (width - len(right))
