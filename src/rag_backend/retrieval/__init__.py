"""Retrieval and reranking."""

from .reranker import Reranker, RerankStrategy, hybrid_score, keyword_score, lexical_score
from .retriever import RetrievalPipeline

__all__ = [
    "Reranker",
    "RerankStrategy",
    "RetrievalPipeline",
    "hybrid_score",
    "keyword_score",
    "lexical_score",
]
