"""Tests for OpenAPI contract validation."""

from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from agent_verifier.contracts import OpenApiContractValidator, normalize_path
from agent_verifier.errors import CollaboratorUnavailableError
from agent_verifier.models.enums import ArtifactType, ContractViolationType, SeverityLevel
from agent_verifier.models.sandbox import CodeArtifact
from agent_verifier.models.task import ContractEndpoint

OPENAPI_YAML = """\
openapi: 3.1.0
info:
  title: Users
  version: 1.0.0
paths:
  /users:
    post:
      responses:
        '201':
          description: created
        '422':
          description: invalid
  /users/{user_id}:
    get:
      responses:
        200:
          description: ok
  /health:
    get:
      responses:
        '200':
          description: ok
"""

FASTAPI_APP = """\
from fastapi import FastAPI

app = FastAPI()


@app.post("/users", status_code=201)
def create_user(): ...


@app.get("/users/{user_id}")
def get_user(user_id: int): ...
"""


def _source(content: str, filename: str = "main.py") -> CodeArtifact:
    return CodeArtifact(filename=filename, content=content, type=ArtifactType.SOURCE)


def _spec(content: str = OPENAPI_YAML, filename: str = "openapi.yaml") -> CodeArtifact:
    return CodeArtifact(filename=filename, content=content, type=ArtifactType.CONFIG)


def _validate(artifacts, spec_url: str = "openapi.yaml", endpoints=(), client=None):
    validator = OpenApiContractValidator(client=client)
    return asyncio.run(validator.validate(spec_url, artifacts, endpoints))


class TestNormalizePath:
    @pytest.mark.parametrize(
        "raw, expected",
        [
            ("/users/{user_id}", "/users/{}"),
            ("/users/<int:user_id>", "/users/{}"),
            ("/users/:userId/posts", "/users/{}/posts"),
            ("/users/", "/users"),
            ("/", "/"),
            ("/search?q=x", "/search"),
        ],
    )
    def test_dialects_collapse(self, raw, expected):
        assert normalize_path(raw) == expected


class TestOpenApiContractValidator:
    def test_missing_endpoint(self):
        result = _validate([_spec(), _source(FASTAPI_APP)])

        assert result.validator == "openapi-route-check"
        assert result.spec_url == "openapi.yaml"
        assert result.total_endpoints == 3
        assert result.validated == 2
        assert result.passed is False
        (violation,) = result.violations
        assert violation.violation_type == ContractViolationType.MISSING_ENDPOINT
        assert violation.method == "GET"
        assert violation.endpoint == "/health"
        assert violation.severity == SeverityLevel.HIGH

    def test_fully_implemented(self):
        app = FASTAPI_APP + '\n\n@app.get("/health/")\ndef health(): ...\n'
        result = _validate([_spec(), _source(app)])
        assert result.passed is True
        assert result.violations == ()
        assert result.validated == 3

    def test_wrong_status_code(self):
        app = FASTAPI_APP.replace("status_code=201", "status_code=200")
        result = _validate([_spec(), _source(app)])
        wrong = [
            v for v in result.violations
            if v.violation_type == ContractViolationType.WRONG_STATUS_CODE
        ]
        assert len(wrong) == 1
        assert wrong[0].endpoint == "/users"
        assert wrong[0].actual == "200"
        assert wrong[0].severity == SeverityLevel.MEDIUM

    def test_express_routes(self):
        app = (
            "const app = require('express')();\n"
            "app.post('/users', create);\n"
            "app.get('/users/:userId', show);\n"
            "app.get(`/health`, (req, res) => res.send('ok'));\n"
        )
        result = _validate([_spec(), _source(app, "index.js")])
        assert result.passed is True

    def test_flask_routes(self):
        app = (
            "@app.route('/users', methods=['POST'])\n"
            "def create(): ...\n"
            "@app.route('/users/<int:user_id>')\n"
            "def show(user_id): ...\n"
            "@app.route('/health', methods=('GET',))\n"
            "def health(): ...\n"
        )
        result = _validate([_spec(), _source(app)])
        assert result.passed is True

    def test_routes_in_tests_do_not_count(self):
        tests = CodeArtifact(
            filename="test_main.py",
            content='client.get("/health")\n',
            type=ArtifactType.TEST,
        )
        result = _validate([_spec(), _source(FASTAPI_APP), tests])
        assert result.passed is False

    def test_task_endpoints_are_required_too(self):
        result = _validate(
            [_spec(), _source(FASTAPI_APP + '@app.get("/health")\ndef h(): ...\n')],
            endpoints=[ContractEndpoint(path="/metrics", method="get")],
        )
        assert [v.endpoint for v in result.violations] == ["/metrics"]

    def test_json_document(self):
        document = {"openapi": "3.1.0", "paths": {"/ping": {"get": {"responses": {"200": {}}}}}}
        result = _validate(
            [_spec(json.dumps(document), "openapi.json"), _source('@app.get("/ping")\n')],
            spec_url="openapi.json",
        )
        assert result.passed is True

    def test_remote_contract(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.url == "https://contracts.test/users.yaml"
            return httpx.Response(200, text=OPENAPI_YAML)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        result = _validate(
            [_source(FASTAPI_APP)],
            spec_url="https://contracts.test/users.yaml",
            client=client,
        )
        assert result.total_endpoints == 3


class TestContractUnavailable:
    def test_remote_failure(self):
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(404)))
        with pytest.raises(CollaboratorUnavailableError, match="could not fetch"):
            _validate([_source(FASTAPI_APP)], spec_url="https://contracts.test/x", client=client)

    def test_missing_artifact(self):
        with pytest.raises(CollaboratorUnavailableError, match="neither a URL"):
            _validate([_source(FASTAPI_APP)])

    def test_invalid_document(self):
        with pytest.raises(CollaboratorUnavailableError, match="not valid JSON or YAML"):
            _validate([_spec("paths: [unclosed"), _source(FASTAPI_APP)])

    def test_document_not_an_object(self):
        with pytest.raises(CollaboratorUnavailableError, match="not an object"):
            _validate([_spec("- just\n- a list\n"), _source(FASTAPI_APP)])
