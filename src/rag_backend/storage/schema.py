"""
Fixed collection schema and provisioning.

Every collection (user collections, memory collections and the reserved
metadata collection) uses the same four-field layout.
"""

from loguru import logger

from ..config import Config
from ..errors import ProvisionError, RemoteUnavailable
from ..retry import RetryPolicy
from .base import VectorDatabase
from .models import FieldSchema, FieldType

ID_FIELD = "id"
VECTOR_FIELD = "embedding"
TEXT_FIELD = "text"
ATTRIBUTES_FIELD = "attributes"
TEXT_MAX_LENGTH = 65535


def build_collection_fields(vector_dim: int, metric_type: str | None = None) -> list[FieldSchema]:
    """Auto-increment int64 key, fixed-dimension vector, free text, schemaless attributes."""
    return [
        FieldSchema(ID_FIELD, FieldType.INT64, is_primary_key=True, auto_id=True),
        FieldSchema(
            VECTOR_FIELD,
            FieldType.FLOAT_VECTOR,
            dim=vector_dim,
            metric_type=metric_type or Config.METRIC_TYPE,
        ),
        FieldSchema(TEXT_FIELD, FieldType.VARCHAR, max_length=TEXT_MAX_LENGTH),
        FieldSchema(ATTRIBUTES_FIELD, FieldType.JSON),
    ]


async def provision_collection(
    db: VectorDatabase,
    name: str,
    vector_dim: int,
    retry: RetryPolicy,
    description: str = "",
    index_type: str | None = None,
    metric_type: str | None = None,
    index_params: dict | None = None,
) -> None:
    """
    Create a collection and its vector index.

    A concurrent creator winning the race is treated as success. If the index
    cannot be built the new collection is dropped so a retry starts clean.

    Raises:
        ProvisionError: If the collection or index could not be created
    """
    metric_type = metric_type or Config.METRIC_TYPE
    fields = build_collection_fields(vector_dim, metric_type)

    try:
        await retry.call(
            lambda: db.create_collection(name, fields, description or f"Collection: {name}"),
            f"create collection {name}",
        )
    except RemoteUnavailable as exc:
        # Another request may have created it between our check and create.
        try:
            if await retry.call(lambda: db.has_collection(name), f"check collection {name}"):
                logger.info(f"Collection {name} was created concurrently; treating as success")
                return
        except RemoteUnavailable:
            pass
        raise ProvisionError(f"Failed to create collection {name}: {exc}") from exc

    try:
        await retry.call(
            lambda: db.create_index(
                name,
                VECTOR_FIELD,
                index_type or Config.INDEX_TYPE,
                metric_type,
                dict(index_params or Config.INDEX_PARAMS),
            ),
            f"create index on {name}",
        )
    except RemoteUnavailable as exc:
        logger.error(f"Index creation failed for {name}, dropping collection: {exc}")
        try:
            await retry.call(lambda: db.drop_collection(name), f"drop collection {name}")
        except RemoteUnavailable as drop_exc:
            logger.error(f"Could not drop half-created collection {name}: {drop_exc}")
        raise ProvisionError(f"Failed to create index on {name}: {exc}") from exc

    logger.info(f"Collection {name} created with {index_type or Config.INDEX_TYPE} index")
