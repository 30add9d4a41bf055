"""OpenAPI contract validation by route discovery in source artifacts.

The contract document (JSON or YAML) is fetched over HTTP or read from an
artifact with the same filename.  Every operation it declares must be
served by a route found in the source artifacts:

* FastAPI / Starlette style: ``@app.get("/users/{user_id}")``
* Flask style: ``@app.route("/users/<int:user_id>", methods=["GET"])``
* Express style: ``app.get("/users/:userId", handler)``

Missing operations are reported as ``missing_endpoint`` (HIGH).  When a
route declares an explicit success ``status_code`` that the contract does
not list for that operation, a ``wrong_status_code`` (MEDIUM) is reported.
"""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
import yaml

from agent_verifier.contracts.base import BaseContractValidator
from agent_verifier.errors import CollaboratorUnavailableError
from agent_verifier.models.enums import ArtifactType, ContractViolationType, SeverityLevel
from agent_verifier.models.findings import ContractValidationResult, ContractViolation
from agent_verifier.models.sandbox import CodeArtifact
from agent_verifier.models.task import ContractEndpoint

logger = logging.getLogger(__name__)

VALIDATOR_NAME = "openapi-route-check"
COLLABORATOR_NAME = "contract validator"

_HTTP_METHODS: tuple[str, ...] = ("get", "post", "put", "patch", "delete", "head", "options")

# ``.get("/path"`` -- covers FastAPI decorators and Express handlers.
_METHOD_ROUTE_RE: re.Pattern[str] = re.compile(
    r"\.(?P<method>get|post|put|patch|delete|head|options)\(\s*['\"`](?P<path>/[^'\"`]*)['\"`]"
    r"(?P<rest>[^\n]*)",
    re.IGNORECASE,
)
# ``.route("/path", methods=["GET", "POST"])`` -- Flask.
_FLASK_ROUTE_RE: re.Pattern[str] = re.compile(
    r"\.route\(\s*['\"](?P<path>/[^'\"]*)['\"]"
    r"(?:[^\n]*?methods\s*=\s*[\[(](?P<methods>[^\])]*)[\])])?"
)
_STATUS_CODE_RE: re.Pattern[str] = re.compile(r"status_code\s*=\s*(?P<code>\d{3})")

# Path parameters in every dialect: {id}, <int:id>, :id
_PATH_PARAM_RE: re.Pattern[str] = re.compile(r"\{[^}]+\}|<[^>]+>|:[A-Za-z_]\w*")

_SOURCE_SUFFIXES: tuple[str, ...] = (".py", ".js", ".mjs", ".cjs", ".ts", ".tsx", ".jsx")


@dataclass(frozen=True)
class _Route:
    method: str
    path: str
    status_code: int | None = None


def normalize_path(path: str) -> str:
    """Collapse path parameters to ``{}`` and drop a trailing slash."""
    path = _PATH_PARAM_RE.sub("{}", path.split("?", 1)[0])
    if len(path) > 1:
        path = path.rstrip("/")
    return path or "/"


class OpenApiContractValidator(BaseContractValidator):
    """Validates artifacts against an OpenAPI document.

    Parameters
    ----------
    client:
        Optional pre-configured ``httpx.AsyncClient`` used to fetch remote
        contracts.
    fetch_timeout:
        Timeout in seconds for fetching a remote contract.
    """

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        fetch_timeout: float = 10.0,
    ) -> None:
        self._client = client or httpx.AsyncClient(timeout=fetch_timeout, follow_redirects=True)

    async def close(self) -> None:
        await self._client.aclose()

    async def validate(
        self,
        spec_url: str,
        artifacts: Sequence[CodeArtifact],
        endpoints: Sequence[ContractEndpoint] = (),
    ) -> ContractValidationResult:
        document = await self._load(spec_url, artifacts)
        expected = _expected_operations(document)
        for endpoint in endpoints:
            key = (endpoint.method.upper(), endpoint.path)
            expected.setdefault(key, set())

        routes = _discover_routes(artifacts)
        implemented: dict[tuple[str, str], _Route] = {
            (route.method, normalize_path(route.path)): route for route in routes
        }

        violations: list[ContractViolation] = []
        validated = 0
        for (method, path), success_codes in expected.items():
            route = implemented.get((method, normalize_path(path)))
            if route is None:
                violations.append(
                    ContractViolation(
                        endpoint=path,
                        method=method,
                        violation_type=ContractViolationType.MISSING_ENDPOINT,
                        expected=f"{method} {path} is implemented",
                        actual="no matching route in the source artifacts",
                        severity=SeverityLevel.HIGH,
                    )
                )
                continue
            validated += 1
            declared = route.status_code
            if declared is not None and success_codes and declared not in success_codes:
                violations.append(
                    ContractViolation(
                        endpoint=path,
                        method=method,
                        violation_type=ContractViolationType.WRONG_STATUS_CODE,
                        expected=f"one of {sorted(success_codes)}",
                        actual=str(route.status_code),
                        severity=SeverityLevel.MEDIUM,
                    )
                )

        logger.info(
            "Contract %s: %d/%d operations implemented, %d violations",
            spec_url,
            validated,
            len(expected),
            len(violations),
        )
        return ContractValidationResult(
            validator=VALIDATOR_NAME,
            spec_url=spec_url,
            total_endpoints=len(expected),
            validated=validated,
            violations=tuple(violations),
            passed=not violations,
        )

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def _load(self, spec_url: str, artifacts: Sequence[CodeArtifact]) -> dict:
        if spec_url.startswith(("http://", "https://")):
            try:
                resp = await self._client.get(spec_url)
                resp.raise_for_status()
            except httpx.HTTPError as exc:
                raise CollaboratorUnavailableError(
                    COLLABORATOR_NAME, f"could not fetch {spec_url}: {exc}"
                ) from exc
            text = resp.text
        else:
            match = next((a for a in artifacts if a.filename == spec_url), None)
            if match is None:
                raise CollaboratorUnavailableError(
                    COLLABORATOR_NAME,
                    f"contract {spec_url!r} is neither a URL nor a submitted artifact",
                )
            text = match.content

        try:
            document = json.loads(text) if text.lstrip().startswith("{") else yaml.safe_load(text)
        except (json.JSONDecodeError, yaml.YAMLError) as exc:
            raise CollaboratorUnavailableError(
                COLLABORATOR_NAME, f"contract {spec_url} is not valid JSON or YAML: {exc}"
            ) from exc
        if not isinstance(document, dict):
            raise CollaboratorUnavailableError(
                COLLABORATOR_NAME, f"contract {spec_url} is not an object"
            )
        return document


def _expected_operations(document: dict) -> dict[tuple[str, str], set[int]]:
    """``(METHOD, path) -> declared 2xx status codes`` for every operation."""
    operations: dict[tuple[str, str], set[int]] = {}
    for path, item in (document.get("paths") or {}).items():
        if not isinstance(item, dict):
            continue
        for method in _HTTP_METHODS:
            operation = item.get(method)
            if not isinstance(operation, dict):
                continue
            codes = {
                int(code)
                for code in (operation.get("responses") or {})
                if str(code).isdigit() and 200 <= int(code) < 300
            }
            operations[(method.upper(), path)] = codes
    return operations


def _discover_routes(artifacts: Sequence[CodeArtifact]) -> list[_Route]:
    routes: list[_Route] = []
    for artifact in artifacts:
        if artifact.type != ArtifactType.SOURCE or not artifact.filename.endswith(_SOURCE_SUFFIXES):
            continue
        for match in _METHOD_ROUTE_RE.finditer(artifact.content):
            status = _STATUS_CODE_RE.search(match.group("rest"))
            routes.append(
                _Route(
                    method=match.group("method").upper(),
                    path=match.group("path"),
                    status_code=int(status.group("code")) if status else None,
                )
            )
        for match in _FLASK_ROUTE_RE.finditer(artifact.content):
            methods = re.findall(r"[A-Za-z]+", match.group("methods") or "") or ["GET"]
            routes.extend(_Route(method=m.upper(), path=match.group("path")) for m in methods)
    return routes
