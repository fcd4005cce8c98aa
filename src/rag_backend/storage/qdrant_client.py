# storage/qdrant_client.py
"""
Qdrant implementation of the VectorDatabase contract.

Records are stored as points: the vector in the default vector slot and
``{"text": ..., "attributes": {...}}`` as payload. Attribute filters address
``attributes.<field>``.
"""

import uuid
from typing import Any

from loguru import logger
from qdrant_client import AsyncQdrantClient, models
from qdrant_client.http.exceptions import UnexpectedResponse

from ..config import Config
from ..errors import NotFound, ValidationError
from .models import (
    CollectionStats,
    FieldSchema,
    FieldType,
    FilterOperator,
    InsertResult,
    SearchFilter,
    SearchResult,
    VectorRecord,
)
from .schema import ATTRIBUTES_FIELD, TEXT_FIELD, VECTOR_FIELD

_DISTANCES = {
    "COSINE": models.Distance.COSINE,
    "L2": models.Distance.EUCLID,
    "EUCLID": models.Distance.EUCLID,
    "IP": models.Distance.DOT,
    "DOT": models.Distance.DOT,
}

_METRIC_NAMES = {
    models.Distance.COSINE: "COSINE",
    models.Distance.EUCLID: "L2",
    models.Distance.DOT: "IP",
    models.Distance.MANHATTAN: "MANHATTAN",
}


def _new_point_id() -> int:
    """Random positive int64 point id."""
    return uuid.uuid4().int >> 65


def _attribute_key(field_name: str) -> str:
    return f"{ATTRIBUTES_FIELD}.{field_name}"


def build_qdrant_filter(search_filter: SearchFilter | None) -> models.Filter | None:
    """Compile a structured filter triple into a Qdrant filter."""
    if search_filter is None:
        return None

    key = _attribute_key(search_filter.field)
    op = search_filter.operator
    value = search_filter.value

    if op in (FilterOperator.EQ, FilterOperator.NE):
        if isinstance(value, float):
            condition = models.FieldCondition(key=key, range=models.Range(gte=value, lte=value))
        else:
            condition = models.FieldCondition(key=key, match=models.MatchValue(value=value))
        if op == FilterOperator.EQ:
            return models.Filter(must=[condition])
        return models.Filter(must_not=[condition])

    if op in (FilterOperator.GT, FilterOperator.GTE, FilterOperator.LT, FilterOperator.LTE):
        bounds = {op.value: value}
        if isinstance(value, str):
            # ISO-8601 timestamps compare as datetimes
            condition = models.FieldCondition(key=key, range=models.DatetimeRange(**bounds))
        else:
            condition = models.FieldCondition(key=key, range=models.Range(**bounds))
        return models.Filter(must=[condition])

    if op == FilterOperator.IN:
        return models.Filter(
            must=[models.FieldCondition(key=key, match=models.MatchAny(any=list(value)))]
        )

    if op == FilterOperator.LIKE:
        return models.Filter(
            must=[models.FieldCondition(key=key, match=models.MatchText(text=str(value)))]
        )

    raise ValidationError(f"Unsupported filter operator: {op}")


class QdrantVectorDatabase:
    """Async Qdrant client exposing the VectorDatabase contract."""

    def __init__(
        self,
        url: str = Config.QDRANT_URL,
        api_key: str | None = Config.QDRANT_API_KEY,
        timeout: int = Config.QDRANT_TIMEOUT,
        client: AsyncQdrantClient | None = None,
    ):
        if client is not None:
            self.client = client
        elif api_key:
            self.client = AsyncQdrantClient(url=url, api_key=api_key, timeout=timeout)
        else:
            self.client = AsyncQdrantClient(url=url, timeout=timeout)

    @classmethod
    def in_memory(cls) -> "QdrantVectorDatabase":
        """Local in-process Qdrant (no server), for development and tests."""
        return cls(client=AsyncQdrantClient(location=":memory:"))

    async def has_collection(self, name: str) -> bool:
        return await self.client.collection_exists(collection_name=name)

    async def create_collection(
        self, name: str, fields: list[FieldSchema], description: str = ""
    ) -> None:
        vector_field = next((f for f in fields if f.data_type == FieldType.FLOAT_VECTOR), None)
        if vector_field is None or not vector_field.dim:
            raise ValidationError(f"Schema for {name} needs a vector field with a dimension")

        metric = (vector_field.metric_type or Config.METRIC_TYPE).upper()
        if metric not in _DISTANCES:
            raise ValidationError(f"Unsupported metric type: {metric}")

        try:
            await self.client.create_collection(
                collection_name=name,
                vectors_config=models.VectorParams(size=vector_field.dim, distance=_DISTANCES[metric]),
            )
        except UnexpectedResponse as e:
            if e.status_code == 409:
                logger.debug(f"Collection {name} already exists")
                return
            raise
        except ValueError as e:
            # Local mode reports duplicates as ValueError
            if "already exists" in str(e):
                logger.debug(f"Collection {name} already exists")
                return
            raise

        logger.debug(f"Created Qdrant collection {name} (dim={vector_field.dim}, {metric}): {description}")

    async def create_index(
        self,
        collection: str,
        field_name: str,
        index_type: str,
        metric_type: str,
        params: dict[str, Any],
    ) -> None:
        if field_name != VECTOR_FIELD:
            await self.client.create_payload_index(
                collection_name=collection,
                field_name=_attribute_key(field_name),
                field_schema=models.PayloadSchemaType.KEYWORD,
                wait=True,
            )
            return

        if index_type.upper() != "HNSW":
            logger.debug(f"Qdrant only supports HNSW; {index_type} requested for {collection}")

        # Qdrant fixes the metric when the collection is created; only HNSW params are tunable.
        await self.client.update_collection(
            collection_name=collection,
            hnsw_config=models.HnswConfigDiff(
                m=params.get("m"),
                ef_construct=params.get("ef_construct"),
            ),
        )

    async def insert(self, collection: str, records: list[VectorRecord]) -> InsertResult:
        if not records:
            return InsertResult(inserted_count=0, ids=[])

        ids = [_new_point_id() for _ in records]
        points = [
            models.PointStruct(
                id=point_id,
                vector=list(record.embedding),
                payload={TEXT_FIELD: record.text, ATTRIBUTES_FIELD: dict(record.attributes)},
            )
            for point_id, record in zip(ids, records)
        ]

        result = await self.client.upsert(collection_name=collection, points=points, wait=True)
        if result.status != models.UpdateStatus.COMPLETED:
            logger.warning(f"Upsert into {collection} finished with status {result.status}")

        for point_id, record in zip(ids, records):
            record.id = point_id
        return InsertResult(inserted_count=len(points), ids=ids)

    async def search(
        self,
        collection: str,
        vector: list[float],
        limit: int,
        filter: SearchFilter | None = None,
    ) -> list[SearchResult]:
        response = await self.client.query_points(
            collection_name=collection,
            query=list(vector),
            query_filter=build_qdrant_filter(filter),
            limit=limit,
            with_payload=True,
            with_vectors=True,
        )

        results = []
        for point in response.points:
            payload = point.payload or {}
            embedding = point.vector if isinstance(point.vector, list) else None
            results.append(
                SearchResult(
                    id=point.id,
                    text=payload.get(TEXT_FIELD, ""),
                    attributes=payload.get(ATTRIBUTES_FIELD) or {},
                    score=float(point.score),
                    embedding=embedding,
                    collection=collection,
                )
            )
        return results

    async def delete(self, collection: str, filter: SearchFilter) -> int:
        qdrant_filter = build_qdrant_filter(filter)
        count = (
            await self.client.count(
                collection_name=collection, count_filter=qdrant_filter, exact=True
            )
        ).count

        if count > 0:
            await self.client.delete(
                collection_name=collection,
                points_selector=models.FilterSelector(filter=qdrant_filter),
                wait=True,
            )
        return count

    async def list_collections(self) -> list[str]:
        response = await self.client.get_collections()
        return [c.name for c in response.collections]

    async def drop_collection(self, name: str) -> None:
        await self.client.delete_collection(collection_name=name)

    async def load_collection(self, name: str) -> None:
        # Qdrant serves every collection; loading only checks existence.
        if not await self.has_collection(name):
            raise NotFound(f"Collection not found: {name}")

    async def release_collection(self, name: str) -> None:
        if not await self.has_collection(name):
            raise NotFound(f"Collection not found: {name}")
        logger.debug(f"Qdrant has no release step; {name} stays servable")

    async def get_load_progress(self, name: str) -> int:
        info = await self.client.get_collection(collection_name=name)
        if info.status == models.CollectionStatus.RED:
            return 0
        return 100

    async def describe_collection(self, name: str) -> dict[str, Any]:
        info = await self.client.get_collection(collection_name=name)
        vectors = info.config.params.vectors
        vector_dim = vectors.size if isinstance(vectors, models.VectorParams) else None
        metric = _METRIC_NAMES.get(vectors.distance) if isinstance(vectors, models.VectorParams) else None
        hnsw = info.config.hnsw_config

        return {
            "name": name,
            "vector_dim": vector_dim,
            "metric_type": metric,
            "status": str(info.status.value if hasattr(info.status, "value") else info.status),
            "points_count": info.points_count or 0,
            "hnsw_config": {"m": hnsw.m, "ef_construct": hnsw.ef_construct} if hnsw else {},
            "payload_schema": list(info.payload_schema.keys()) if info.payload_schema else [],
        }

    async def get_statistics(self, name: str) -> CollectionStats:
        description = await self.describe_collection(name)
        count = (await self.client.count(collection_name=name, exact=True)).count

        indexes = [
            {
                "field_name": VECTOR_FIELD,
                "index_type": "HNSW",
                "metric_type": description["metric_type"],
                "params": description["hnsw_config"],
            }
        ]
        indexes.extend(
            {"field_name": key, "index_type": "PAYLOAD", "metric_type": None, "params": {}}
            for key in description["payload_schema"]
        )

        return CollectionStats(
            name=name,
            row_count=count,
            vector_dim=description["vector_dim"],
            metric_type=description["metric_type"],
            status=description["status"],
            indexes=indexes,
        )

    async def health_check(self) -> tuple[bool, str]:
        """Check if Qdrant is reachable."""
        try:
            names = await self.list_collections()
            return True, f"Healthy: {len(names)} collections"
        except Exception as e:
            return False, f"Connection error: {e}"

    async def close(self) -> None:
        await self.client.close()
