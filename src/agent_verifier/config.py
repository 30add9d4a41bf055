"""Pydantic settings for the verification service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = {"env_prefix": "VERIFIER_"}

    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"
    cors_allowed_origins: list[str] = []
    max_submission_bytes: int = 5_000_000

    # Sandbox images, one per runtime.
    python_image: str = "agent-verifier-runner-python:latest"
    node_image: str = "agent-verifier-runner-node:latest"

    # Optional JSON seccomp profile applied when a config asks for "strict".
    seccomp_profile_path: str = ""

    # Per-phase SLAs.  A collaborator call that exceeds its SLA marks the
    # phase as completed-but-failed with a synthetic timeout status.
    dependency_vetting_seconds: float = 30.0
    static_analysis_seconds: float = 120.0
    test_execution_seconds: float = 120.0
    contract_validation_seconds: float = 30.0

    # Admission control: runs beyond this stay queued in the stream.
    max_concurrent_runs: int = 4

    # Dependency vetting.
    banned_dependencies: list[str] = ["pickle", "pickle5", "pycrypto", "event-stream"]
    osv_enabled: bool = False
    osv_api_url: str = "https://api.osv.dev/v1/query"

    # Contract validation.
    contract_fetch_timeout_seconds: float = 10.0
