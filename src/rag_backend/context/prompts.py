"""
Prompt templates for the query path.
"""

from ..llm.gateway import ChatMessage

RAG_SYSTEM_PROMPT = """You are a helpful AI assistant. Answer the user's question based on the provided context.
If the context doesn't contain relevant information, say so clearly.
Be concise and accurate."""

REPHRASE_SYSTEM_PROMPT = """You are a query rephrasing assistant. Rephrase the user's query to be more specific and detailed for better document retrieval.
Keep the core meaning but expand with relevant context.
Return ONLY the rephrased query, no additional text."""

SUMMARIZE_SYSTEM_PROMPT = """You are a document summarizer. Create a concise summary of the provided documents.
Focus on key points and main ideas.
Return ONLY the summary, no additional text."""

DOCUMENT_SEPARATOR = "\n\n---\n\n"


class PromptBuilder:
    """Builds chat messages for generation, rephrasing and summarization."""

    def __init__(self, system_prompt: str = RAG_SYSTEM_PROMPT):
        self.system_prompt = system_prompt

    def build_rag_user_prompt(self, question: str, context: str, memory: str = "") -> str:
        sections = []
        if memory:
            sections.append(f"What you know about the user:\n{memory}")
        sections.append(f"Context:\n{context}")
        sections.append(f"Question: {question}")
        return "\n\n".join(sections) + "\n\nAnswer:"

    def build_rag_messages(
        self, question: str, passages: list[str], memory: str = ""
    ) -> list[ChatMessage]:
        context = DOCUMENT_SEPARATOR.join(passages)
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": self.build_rag_user_prompt(question, context, memory)},
        ]

    def build_multi_collection_messages(
        self, question: str, contexts: dict[str, list[str]]
    ) -> list[ChatMessage]:
        """Group passages under the collection they came from."""
        prompt = f"Question: {question}\n\nContext from multiple sources:\n\n"
        for collection, passages in contexts.items():
            prompt += f"From {collection}:\n{DOCUMENT_SEPARATOR.join(passages)}\n\n"
        prompt += "Please provide a comprehensive answer synthesizing information from all sources."
        return [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]

    def build_rephrase_messages(self, question: str) -> list[ChatMessage]:
        return [
            {"role": "system", "content": REPHRASE_SYSTEM_PROMPT},
            {"role": "user", "content": question},
        ]

    def build_summarize_messages(self, documents: list[str]) -> list[ChatMessage]:
        return [
            {"role": "system", "content": SUMMARIZE_SYSTEM_PROMPT},
            {"role": "user", "content": DOCUMENT_SEPARATOR.join(documents)},
        ]
