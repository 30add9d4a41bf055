"""agent-verifier: sandboxed verification of agent-generated code."""

__version__ = "0.1.0"
