"""
Context assembly under a character budget.
"""

from loguru import logger

from ..config import Config
from ..storage.models import SearchResult

CONTEXT_SEPARATOR = "\n\n---\n\n"


class ContextAssembler:
    """Selects passages, in ranking order, that fit the context budget."""

    def __init__(self, max_chars: int = Config.RAG_MAX_CONTEXT_LENGTH, separator: str = CONTEXT_SEPARATOR):
        self.max_chars = max_chars
        self.separator = separator

    def build_context(self, results: list[SearchResult], max_chars: int | None = None) -> list[str]:
        """
        Accept passages until the next one would exceed the budget.

        The first passage is always accepted, even when it alone exceeds the
        budget, so a non-empty result list never yields an empty context.
        """
        budget = self.max_chars if max_chars is None else max_chars
        try:
            total_length = 0
            passages: list[str] = []
            for result in results:
                length = len(result.text)
                if passages and total_length + length > budget:
                    logger.debug(f"Context length limit reached ({total_length} chars)")
                    break
                passages.append(result.text)
                total_length += length

            logger.debug(f"Built context from {len(passages)} chunks ({total_length} chars)")
            return passages
        except Exception as e:
            logger.error(f"Failed to build context: {e}")
            return []

    def format_context(self, passages: list[str]) -> str:
        return self.separator.join(passages)
