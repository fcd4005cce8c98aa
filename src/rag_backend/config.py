"""Centralized configuration for the RAG backend."""

import os


def _env_int(name: str, default: str) -> int:
    """Parse an integer environment variable."""
    value = os.getenv(name, default)
    try:
        return int(value)
    except ValueError as e:
        raise ValueError(f"Invalid {name} environment variable: {value!r}") from e


def _env_float(name: str, default: str) -> float:
    """Parse a float environment variable."""
    value = os.getenv(name, default)
    try:
        return float(value)
    except ValueError as e:
        raise ValueError(f"Invalid {name} environment variable: {value!r}") from e


class Config:
    """
    RAG backend configuration with environment variable overrides.

    All configuration values are centralized here with sensible defaults.
    Components accept explicit constructor arguments and fall back to these
    values, so tests can run without touching the environment.
    """

    # ========================================================================
    # Vector Database (Qdrant)
    # ========================================================================
    QDRANT_URL: str = os.getenv("QDRANT_URL", "http://localhost:6333")
    QDRANT_API_KEY: str | None = os.getenv("QDRANT_API_KEY") or None
    QDRANT_TIMEOUT: int = _env_int("QDRANT_TIMEOUT", "30")

    # ========================================================================
    # Remote Call Policy
    # ========================================================================
    REMOTE_MAX_RETRIES: int = _env_int("REMOTE_MAX_RETRIES", "3")
    REMOTE_TIMEOUT_SECONDS: float = _env_float("REMOTE_TIMEOUT_SECONDS", "15")
    REMOTE_RETRY_DELAY: float = _env_float("REMOTE_RETRY_DELAY", "0.5")
    REMOTE_RETRY_MAX_DELAY: float = _env_float("REMOTE_RETRY_MAX_DELAY", "8")

    # ========================================================================
    # Collection Store Caches
    # ========================================================================
    EXISTENCE_CACHE_TTL: float = _env_float("EXISTENCE_CACHE_TTL", "30")
    METADATA_CACHE_TTL: float = _env_float("METADATA_CACHE_TTL", "300")

    # ========================================================================
    # Collections
    # ========================================================================
    DEFAULT_VECTOR_DIM: int = _env_int("DEFAULT_VECTOR_DIM", "768")  # Gemini embedding-001
    METADATA_COLLECTION: str = os.getenv("METADATA_COLLECTION", "_collections_metadata")
    METADATA_VECTOR_DIM: int = _env_int("METADATA_VECTOR_DIM", "384")
    METADATA_BACKEND: str = os.getenv("METADATA_BACKEND", "vector")  # "vector" or "redis"
    RESERVED_COLLECTION_NAMES: frozenset[str] = frozenset({METADATA_COLLECTION, "system"})
    INDEX_TYPE: str = os.getenv("INDEX_TYPE", "HNSW")
    METRIC_TYPE: str = os.getenv("METRIC_TYPE", "COSINE")
    INDEX_PARAMS: dict[str, int] = {"m": 16, "ef_construct": 100}
    INSERT_BATCH_SIZE: int = _env_int("INSERT_BATCH_SIZE", "100")

    # ========================================================================
    # RAG Pipeline
    # ========================================================================
    RAG_CHUNK_SIZE: int = _env_int("RAG_CHUNK_SIZE", "1000")
    RAG_CHUNK_OVERLAP: int = _env_int("RAG_CHUNK_OVERLAP", "200")
    RAG_TOP_K: int = _env_int("RAG_TOP_K", "5")
    RAG_MAX_CONTEXT_LENGTH: int = _env_int("RAG_MAX_CONTEXT_LENGTH", "4000")
    RAG_RERANK_STRATEGY: str = os.getenv("RAG_RERANK_STRATEGY", "hybrid")
    INGEST_CONCURRENCY: int = _env_int("INGEST_CONCURRENCY", "4")
    QUERY_CONCURRENCY: int = _env_int("QUERY_CONCURRENCY", "8")

    # ========================================================================
    # Embedding and Completion APIs
    # ========================================================================
    GEMINI_API_KEY: str | None = os.getenv("GEMINI_API_KEY") or None
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "models/embedding-001")
    EMBEDDING_BATCH_SIZE: int = _env_int("EMBEDDING_BATCH_SIZE", "100")
    EMBEDDING_CALLS_PER_MINUTE: int = _env_int("EMBEDDING_CALLS_PER_MINUTE", "60")
    LLM_MODEL: str = os.getenv("LLM_MODEL", "gpt-4-turbo")
    LLM_TEMPERATURE: float = _env_float("LLM_TEMPERATURE", "0.5")
    LLM_MAX_TOKENS: int = _env_int("LLM_MAX_TOKENS", "1500")

    # ========================================================================
    # Redis (METADATA_BACKEND=redis only)
    # ========================================================================
    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379")
    REDIS_MAX_CONNECTIONS: int = _env_int("REDIS_MAX_CONNECTIONS", "50")
    REDIS_SOCKET_CONNECT_TIMEOUT: float = _env_float("REDIS_SOCKET_CONNECT_TIMEOUT", "2")
    REDIS_SOCKET_TIMEOUT: float = _env_float("REDIS_SOCKET_TIMEOUT", "2")
    REDIS_CONNECT_RETRIES: int = _env_int("REDIS_CONNECT_RETRIES", "3")
    REDIS_CONNECT_RETRY_DELAY: float = _env_float("REDIS_CONNECT_RETRY_DELAY", "0.5")
    REDIS_CONNECT_RETRY_MAX_DELAY: float = _env_float("REDIS_CONNECT_RETRY_MAX_DELAY", "5")
    METADATA_KEY_PREFIX: str = os.getenv("METADATA_KEY_PREFIX", "rag:collections_metadata")

    @classmethod
    def validate(cls) -> bool:
        """
        Validate configuration consistency.

        Returns:
            True if validation passes

        Raises:
            ValueError: If validation fails
        """
        errors = []

        positive_values = {
            "QDRANT_TIMEOUT": cls.QDRANT_TIMEOUT,
            "REMOTE_MAX_RETRIES": cls.REMOTE_MAX_RETRIES,
            "REMOTE_TIMEOUT_SECONDS": cls.REMOTE_TIMEOUT_SECONDS,
            "EXISTENCE_CACHE_TTL": cls.EXISTENCE_CACHE_TTL,
            "METADATA_CACHE_TTL": cls.METADATA_CACHE_TTL,
            "DEFAULT_VECTOR_DIM": cls.DEFAULT_VECTOR_DIM,
            "METADATA_VECTOR_DIM": cls.METADATA_VECTOR_DIM,
            "INSERT_BATCH_SIZE": cls.INSERT_BATCH_SIZE,
            "RAG_CHUNK_SIZE": cls.RAG_CHUNK_SIZE,
            "RAG_TOP_K": cls.RAG_TOP_K,
            "RAG_MAX_CONTEXT_LENGTH": cls.RAG_MAX_CONTEXT_LENGTH,
            "INGEST_CONCURRENCY": cls.INGEST_CONCURRENCY,
            "QUERY_CONCURRENCY": cls.QUERY_CONCURRENCY,
            "EMBEDDING_BATCH_SIZE": cls.EMBEDDING_BATCH_SIZE,
            "EMBEDDING_CALLS_PER_MINUTE": cls.EMBEDDING_CALLS_PER_MINUTE,
        }
        for name, value in positive_values.items():
            if value <= 0:
                errors.append(f"{name} must be > 0, got {value}")

        if cls.REMOTE_RETRY_DELAY < 0:
            errors.append(f"REMOTE_RETRY_DELAY must be >= 0, got {cls.REMOTE_RETRY_DELAY}")

        if cls.RAG_CHUNK_OVERLAP < 0:
            errors.append(f"RAG_CHUNK_OVERLAP must be >= 0, got {cls.RAG_CHUNK_OVERLAP}")
        elif cls.RAG_CHUNK_OVERLAP >= cls.RAG_CHUNK_SIZE:
            errors.append(
                f"RAG_CHUNK_OVERLAP ({cls.RAG_CHUNK_OVERLAP}) must be smaller than "
                f"RAG_CHUNK_SIZE ({cls.RAG_CHUNK_SIZE})"
            )

        if cls.METADATA_BACKEND not in ("vector", "redis"):
            errors.append(
                f"METADATA_BACKEND must be 'vector' or 'redis', got {cls.METADATA_BACKEND!r}"
            )

        if cls.RAG_RERANK_STRATEGY not in ("lexical", "semantic", "hybrid", "diversity", "none"):
            errors.append(f"Unknown RAG_RERANK_STRATEGY: {cls.RAG_RERANK_STRATEGY!r}")

        if errors:
            raise ValueError(f"Config validation failed: {'; '.join(errors)}")

        return True
