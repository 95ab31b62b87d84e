"""Unit tests for context assembly and prompt construction."""

from booklib.prompts.defaults import PROMPT_DEFAULTS
from booklib.services.context_builder import (
    CONTEXT_HEADER,
    EMPTY_CONTEXT,
    ContextBuilder,
    count_tokens,
    format_document,
)
from booklib.services.prompt_service import PromptBuilder, load_prompt


class TestContextBuilder:
    def test_empty_input_gives_sentinel(self):
        context = ContextBuilder(token_budget=3000).build_context([])

        assert context == EMPTY_CONTEXT
        assert context.strip()

    def test_single_document_contains_title(self, document_factory):
        doc = document_factory(title="The Left Hand of Darkness", author="Ursula K. Le Guin")

        context = ContextBuilder(token_budget=3000).build_context([doc])

        assert context != EMPTY_CONTEXT
        assert context.startswith(CONTEXT_HEADER)
        assert "The Left Hand of Darkness" in context
        assert "Ursula K. Le Guin" in context
        assert "[Document 1]" in context

    def test_blocks_keep_retrieval_order(self, document_factory):
        docs = [document_factory(title=t) for t in ("First", "Second", "Third")]

        context = ContextBuilder(token_budget=3000).build_context(docs)

        assert context.index("First") < context.index("Second") < context.index("Third")
        assert "[Document 3]" in context

    def test_relevance_as_percentage(self, document_factory):
        block = format_document(1, document_factory(score=0.873))

        assert "Relevance: 87.3%" in block

    def test_optional_fields_omitted(self, document_factory):
        block = format_document(2, document_factory(score=None, category=None))

        assert "Relevance" not in block
        assert "Publish year" not in block
        assert "Category: Unknown" in block

    def test_year_included_when_known(self, document_factory):
        block = format_document(1, document_factory(publish_year=1965))

        assert "Publish year: 1965" in block

    def test_budget_drops_later_documents(self, document_factory):
        long_description = "word " * 400
        docs = [
            document_factory(title=f"Book {i}", description=long_description) for i in range(5)
        ]
        budget = count_tokens(CONTEXT_HEADER) + count_tokens(format_document(1, docs[0])) + 10

        context = ContextBuilder(token_budget=budget).build_context(docs)

        assert "Book 0" in context
        assert "Book 1" not in context

    def test_first_document_always_included(self, document_factory):
        doc = document_factory(title="Huge", description="word " * 2000)

        context = ContextBuilder(token_budget=10).build_context([doc])

        assert "Huge" in context


class TestPromptBuilder:
    def test_defaults_are_bundled(self):
        assert set(PROMPT_DEFAULTS) == {"assistant-rules", "single-turn", "multi-turn-system"}
        assert "{language}" in load_prompt("assistant-rules")

    def test_single_turn_is_one_user_message(self):
        messages = PromptBuilder("Vietnamese", 10).single_turn("Who wrote Dune?", "CTX")

        assert len(messages) == 1
        assert messages[0]["role"] == "user"
        content = messages[0]["content"]
        assert "Who wrote Dune?" in content
        assert "CTX" in content
        assert "Vietnamese" in content

    def test_rules_cover_grounding_and_citation(self):
        rules = PromptBuilder("English", 10).rules

        assert "ONLY from the documents" in rules
        assert "title and its author" in rules

    def test_question_with_braces_is_kept_literally(self):
        messages = PromptBuilder("English", 10).single_turn("What is {this}?", "CTX")

        assert "What is {this}?" in messages[0]["content"]

    def test_multi_turn_layout(self):
        history = [
            {"role": "user", "content": "q1"},
            {"role": "assistant", "content": "a1"},
        ]

        messages = PromptBuilder("English", 10).multi_turn("q2", "CTX", history)

        assert [m["role"] for m in messages] == ["system", "user", "assistant", "user"]
        assert "CTX" in messages[0]["content"]
        assert messages[-1] == {"role": "user", "content": "q2"}

    def test_multi_turn_keeps_only_recent_history(self):
        history = [
            {"role": "user" if i % 2 == 0 else "assistant", "content": f"m{i}"}
            for i in range(15)
        ]

        messages = PromptBuilder("English", 10).multi_turn("next", "CTX", history)

        prior = [m["content"] for m in messages[1:-1]]
        assert prior == [f"m{i}" for i in range(5, 15)]

    def test_multi_turn_without_history(self):
        messages = PromptBuilder("English", 10).multi_turn("first", EMPTY_CONTEXT)

        assert len(messages) == 2
        assert EMPTY_CONTEXT in messages[0]["content"]
