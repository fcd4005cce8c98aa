"""
Error taxonomy for the RAG backend.

- RemoteUnavailable: network/timeout failure of the vector database or the
  embedding/completion API, raised after retries are exhausted
- NotFound: collection or record absent (never retried)
- ValidationError: malformed input rejected immediately (never retried)
- ProvisionError: collection create/index failed
- AccessDenied: an injected access rule refused a collection

Degraded reads (stale cache served after a remote failure) are not errors:
they are logged at WARNING level and counted by the CollectionStore.
"""


class RagBackendError(Exception):
    """Base class for all RAG backend errors."""


class RemoteUnavailable(RagBackendError):
    """A remote service could not be reached within the retry budget."""

    def __init__(self, operation: str, attempts: int, cause: BaseException | None = None):
        self.operation = operation
        self.attempts = attempts
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"{operation} failed after {attempts} attempt(s){detail}")


class NotFound(RagBackendError):
    """A collection or record does not exist."""


class ValidationError(RagBackendError):
    """Input was rejected before any remote call was made."""


class GuardrailViolation(ValidationError):
    """The guardrail boundary rejected a question."""

    def __init__(self, reason: str, violations: list[str] | None = None):
        self.reason = reason
        self.violations = violations or []
        super().__init__(reason)


class ProvisionError(RagBackendError):
    """Creating a collection or its index failed."""


class AccessDenied(RagBackendError):
    """The caller's role may not read a collection."""
