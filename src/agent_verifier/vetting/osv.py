"""Async client for the OSV vulnerability database."""

from __future__ import annotations

import logging

import httpx

from agent_verifier.errors import CollaboratorUnavailableError
from agent_verifier.models.enums import SeverityLevel
from agent_verifier.models.findings import VulnerabilityInfo

logger = logging.getLogger(__name__)

_OSV_SEVERITY: dict[str, SeverityLevel] = {
    "LOW": SeverityLevel.LOW,
    "MODERATE": SeverityLevel.MEDIUM,
    "MEDIUM": SeverityLevel.MEDIUM,
    "HIGH": SeverityLevel.HIGH,
    "CRITICAL": SeverityLevel.CRITICAL,
}


class OsvClient:
    """Looks up known vulnerabilities for one package version.

    Parameters
    ----------
    api_url:
        The OSV ``/v1/query`` endpoint.
    client:
        Optional pre-configured ``httpx.AsyncClient`` (tests pass one with
        a mock transport).
    """

    def __init__(
        self,
        api_url: str = "https://api.osv.dev/v1/query",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._api_url = api_url
        self._client = client or httpx.AsyncClient(timeout=10.0)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def query(self, name: str, version: str, ecosystem: str) -> VulnerabilityInfo | None:
        """Return the first known vulnerability affecting *name*==*version*, if any.

        Parameters
        ----------
        name:
            Package name as published in *ecosystem*.
        version:
            Exact version to check.
        ecosystem:
            OSV ecosystem name, ``"PyPI"`` or ``"npm"``.

        Raises
        ------
        CollaboratorUnavailableError
            If the OSV API cannot be reached or answers with an error.
        """
        payload = {"version": version, "package": {"name": name, "ecosystem": ecosystem}}
        try:
            resp = await self._client.post(self._api_url, json=payload)
            resp.raise_for_status()
        except httpx.HTTPError as exc:
            raise CollaboratorUnavailableError(
                "dependency vetter", f"OSV lookup failed: {exc}"
            ) from exc

        vulns = resp.json().get("vulns") or []
        if not vulns:
            return None
        logger.info("OSV reports %d advisories for %s %s", len(vulns), name, version)
        return _to_vulnerability(vulns[0])


def _to_vulnerability(vuln: dict) -> VulnerabilityInfo:
    aliases = vuln.get("aliases") or []
    cve_id = next((a for a in aliases if a.startswith("CVE-")), vuln.get("id", "UNKNOWN"))
    raw_severity = str((vuln.get("database_specific") or {}).get("severity", "")).upper()

    fixed = [
        event["fixed"]
        for affected in vuln.get("affected") or []
        for version_range in affected.get("ranges") or []
        for event in version_range.get("events") or []
        if "fixed" in event
    ]
    fix_version = fixed[0] if fixed else None

    return VulnerabilityInfo(
        cve_id=cve_id,
        severity=_OSV_SEVERITY.get(raw_severity, SeverityLevel.MEDIUM),
        description=vuln.get("summary") or (vuln.get("details") or "")[:200] or cve_id,
        fix_version=fix_version,
    )
