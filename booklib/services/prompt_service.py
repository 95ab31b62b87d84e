"""Builds chat-completion message lists from rules, context and history."""

from typing import Optional

from booklib.models.conversation import MessageRole
from booklib.prompts.defaults import PROMPT_DEFAULTS


def load_prompt(name: str) -> str:
    """Look up a bundled prompt template by name.

    Raises:
        KeyError: If no template has that name
    """
    return PROMPT_DEFAULTS[name]


class PromptBuilder:
    """Combines the answering rules, a context block and the question."""

    def __init__(self, language: str, history_limit: int):
        self.language = language
        self.history_limit = history_limit

    @property
    def rules(self) -> str:
        return load_prompt("assistant-rules").format(language=self.language)

    def single_turn(self, question: str, context: str) -> list[dict]:
        """One user message carrying rules, context and the literal question."""
        content = load_prompt("single-turn").format(
            rules=self.rules,
            context=context,
            question=question,
        )
        return [{"role": MessageRole.USER.value, "content": content}]

    def multi_turn(
        self,
        question: str,
        context: str,
        history: Optional[list[dict]] = None,
    ) -> list[dict]:
        """System message, then prior turns oldest first, then the question.

        Args:
            question: New user question
            context: Context block for this turn
            history: Prior {role, content} messages, oldest first; only the
                last history_limit are used

        Returns:
            Messages for a chat completion request
        """
        system = load_prompt("multi-turn-system").format(rules=self.rules, context=context)
        messages = [{"role": "system", "content": system}]

        recent = (history or [])[-self.history_limit:] if self.history_limit > 0 else []
        for item in recent:
            messages.append({"role": item["role"], "content": item["content"]})

        messages.append({"role": MessageRole.USER.value, "content": question})
        return messages
