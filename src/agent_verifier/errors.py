"""Exception hierarchy for the verification pipeline."""


class VerifierError(Exception):
    """Base class for all errors raised by agent-verifier."""


class InvalidRequestError(VerifierError, ValueError):
    """The caller supplied a malformed request (empty artifacts, unsupported runtime).

    Raised synchronously before any sandbox is started.  It is a contract
    violation by the caller, not a verification failure, so no report is
    produced.
    """


class CollaboratorUnavailableError(VerifierError):
    """An external collaborator (executor, scanner, validator) could not run.

    Fatal to the current verification run.
    """

    def __init__(self, collaborator: str, message: str) -> None:
        super().__init__(f"{collaborator}: {message}")
        self.collaborator = collaborator
        self.message = message


class VerificationCancelledError(VerifierError):
    """The requester cancelled a run before finalization started."""
