"""Formats retrieved books into the context block given to the model."""

from typing import Optional

import structlog
import tiktoken

from booklib.models.book import RetrievedDocument

logger = structlog.get_logger(__name__)

EMPTY_CONTEXT = "No relevant documents were found in the library catalog."
CONTEXT_HEADER = "Books from the library catalog that may be relevant:"

# Tiktoken encoding for token counting
_encoding: Optional[tiktoken.Encoding] = None


def get_encoding() -> tiktoken.Encoding:
    """Get or create tiktoken encoding."""
    global _encoding
    if _encoding is None:
        _encoding = tiktoken.get_encoding("cl100k_base")
    return _encoding


def count_tokens(text: str) -> int:
    return len(get_encoding().encode(text))


def format_document(index: int, doc: RetrievedDocument) -> str:
    """Render one numbered document block (index is 1-based)."""
    lines = [
        f"[Document {index}]",
        f"Title: {doc.title}",
        f"Author: {doc.author}",
        f"Category: {doc.category or 'Unknown'}",
        f"Description: {doc.description}",
    ]
    if doc.publish_year is not None:
        lines.append(f"Publish year: {doc.publish_year}")
    if doc.score is not None:
        lines.append(f"Relevance: {doc.score * 100:.1f}%")
    return "\n".join(lines)


class ContextBuilder:
    """Assembles retrieved documents into a bounded context string."""

    def __init__(self, token_budget: int):
        self.token_budget = token_budget

    def build_context(self, documents: list[RetrievedDocument]) -> str:
        """Build the context block in retrieval order.

        An empty list yields EMPTY_CONTEXT. The first document is always
        included; later ones are dropped once the token budget would be
        exceeded.

        Args:
            documents: Retrieved documents, best match first

        Returns:
            Context text ready to embed in a prompt
        """
        if not documents:
            return EMPTY_CONTEXT

        parts = [CONTEXT_HEADER]
        used = count_tokens(CONTEXT_HEADER)

        for index, doc in enumerate(documents, start=1):
            block = format_document(index, doc)
            block_tokens = count_tokens(block)
            if index > 1 and used + block_tokens > self.token_budget:
                logger.info(
                    "context_truncated",
                    included=index - 1,
                    dropped=len(documents) - index + 1,
                    token_budget=self.token_budget,
                )
                break
            parts.append(block)
            used += block_tokens

        return "\n\n".join(parts)
