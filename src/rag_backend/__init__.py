"""RAG backend - collection store, ingestion and retrieval over a vector database."""

__version__ = "0.1.0"

from .config import Config
from .errors import (
    AccessDenied,
    GuardrailViolation,
    NotFound,
    ProvisionError,
    RagBackendError,
    RemoteUnavailable,
    ValidationError,
)

__all__ = [
    "AccessDenied",
    "Config",
    "GuardrailViolation",
    "NotFound",
    "ProvisionError",
    "RagBackendError",
    "RemoteUnavailable",
    "ValidationError",
    "__version__",
]
