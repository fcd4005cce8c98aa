"""Context assembly and prompt construction."""

from .assembler import ContextAssembler
from .prompts import PromptBuilder

__all__ = ["ContextAssembler", "PromptBuilder"]
