"""Unit tests for the AnswerSynthesizer."""

from unittest.mock import MagicMock

import pytest

from codeqa.core.errors import AuthenticationError, TransientServiceError
from codeqa.core.models import SearchOutcome, SearchResult
from codeqa.services.answer import (
    AnswerSynthesizer,
    NO_RESULTS_ANSWER,
    SYSTEM_PROMPT,
    confidence_for,
    is_auth_failure,
)
from codeqa.services.reranker import Reranker, to_candidates


def _result(chunk, score):
    return SearchResult(id=chunk.id, content=chunk.content, metadata=chunk.metadata, score=score)


@pytest.fixture
def results(make_chunk):
    return [
        _result(
            make_chunk(
                "parseConfig",
                "function parseConfig(raw) { return JSON.parse(raw); }",
                file_path="src/config.ts",
                docstring="Parses raw configuration text.",
            ),
            0.82,
        ),
        _result(make_chunk("ConfigLoader", "class ConfigLoader {}", chunk_type="class", file_path="src/loader.ts"), 0.5),
        _result(make_chunk("readFile", "function readFile(p) {}", file_path="src/fs.ts"), 0.3),
    ]


@pytest.fixture
def retriever(results):
    retriever = MagicMock()
    retriever.search_with_path.return_value = SearchOutcome(results=results, path="vector")
    return retriever


class TestConfidence:
    @pytest.mark.parametrize(
        "score, expected",
        [(1.7, "high"), (0.7, "high"), (0.69, "medium"), (0.4, "medium"), (0.39, "low"), (-1.0, "low")],
    )
    def test_buckets(self, score, expected):
        assert confidence_for(score) == expected


class TestAuthDetection:
    def test_authentication_error(self):
        assert is_auth_failure(AuthenticationError("llm", "denied", status_code=401))

    @pytest.mark.parametrize("message", ["HTTP 401", "Unauthorized", "invalid API key", "invalid_api_key"])
    def test_message_patterns(self, message):
        assert is_auth_failure(RuntimeError(message))

    def test_other_errors(self):
        assert not is_auth_failure(TransientServiceError("llm", "HTTP 500: boom"))


class TestAnswer:
    def test_no_results(self):
        retriever = MagicMock()
        retriever.search_with_path.return_value = SearchOutcome(path="degraded")
        result = AnswerSynthesizer(retriever, Reranker()).answer("what is nothing")

        assert result.answer == NO_RESULTS_ANSWER
        assert result.confidence == "low"
        assert result.sources == []
        assert result.relevant_nodes == []
        assert result.ai_generated is False
        assert result.path == "degraded"

    def test_llm_answer(self, retriever):
        llm = MagicMock()
        llm.complete.return_value = "parseConfig turns raw text into a Config."
        synthesizer = AnswerSynthesizer(retriever, Reranker(), llm=llm)

        result = synthesizer.answer("What does parseConfig do?")

        assert result.answer == "parseConfig turns raw text into a Config."
        assert result.ai_generated is True
        assert result.confidence == "high"
        assert result.path == "vector"
        retriever.search_with_path.assert_called_once_with("What does parseConfig do?", 8)

        system_prompt, user_prompt = llm.complete.call_args.args
        assert system_prompt == SYSTEM_PROMPT
        assert "### 1. parseConfig (function)" in user_prompt
        assert "**File**: src/config.ts:1" in user_prompt
        assert "**Summary**: Parses raw configuration text." in user_prompt
        assert "What does parseConfig do?" in user_prompt

    def test_context_is_truncated(self, make_chunk):
        retriever = MagicMock()
        retriever.search_with_path.return_value = SearchOutcome(
            results=[_result(make_chunk("huge", "q" * 2000), 0.9)], path="keyword"
        )
        llm = MagicMock()
        llm.complete.return_value = "ok"

        AnswerSynthesizer(retriever, Reranker(), llm=llm).answer("what is huge")

        user_prompt = llm.complete.call_args.args[1]
        assert "q" * 800 in user_prompt
        assert "q" * 801 not in user_prompt

    def test_relevant_nodes_and_sources(self, retriever):
        result = AnswerSynthesizer(retriever, Reranker()).answer("what is parseConfig")

        assert [n.name for n in result.relevant_nodes] == ["parseConfig", "ConfigLoader", "readFile"]
        assert result.relevant_nodes[0].summary == "Parses raw configuration text."
        assert result.relevant_nodes[1].summary == "class ConfigLoader {}"
        assert result.sources[0].relevance_score == pytest.approx(0.82)

    def test_auth_failure_notice(self, retriever):
        llm = MagicMock()
        llm.complete.side_effect = AuthenticationError("llm", "401 Unauthorized: bad key", status_code=401)

        result = AnswerSynthesizer(retriever, Reranker(), llm=llm).answer("what is parseConfig")

        assert result.ai_generated is False
        assert result.answer.startswith("**API Key Error**")
        assert "**parseConfig** (function)" in result.answer

    def test_generic_failure_notice(self, retriever):
        llm = MagicMock()
        llm.complete.side_effect = TransientServiceError("llm", "request timed out")

        result = AnswerSynthesizer(retriever, Reranker(), llm=llm).answer("what is parseConfig")

        assert result.ai_generated is False
        assert result.answer.startswith("**AI Service Unavailable**")

    def test_not_configured_notice(self, retriever):
        result = AnswerSynthesizer(retriever, Reranker()).answer("what is parseConfig")

        assert result.ai_generated is False
        assert "AI answers are not configured" in result.answer
        assert "Location: `src/config.ts`" in result.answer


class TestRuleBasedAnswer:
    @pytest.fixture
    def ranked(self, results):
        return to_candidates(results)

    @pytest.fixture
    def synthesizer(self, retriever):
        return AnswerSynthesizer(retriever, Reranker())

    def test_list_question(self, synthesizer, ranked):
        text = synthesizer.rule_based_answer("List all config helpers", ranked)
        assert text.startswith("Found 3 relevant items:")
        assert "- **ConfigLoader** (class)" in text

    def test_show_me_question(self, synthesizer, ranked):
        text = synthesizer.rule_based_answer("show me the loaders", ranked)
        assert text.startswith("Found 3 relevant items:")

    def test_all_inside_a_word_is_not_a_list_question(self, synthesizer, ranked):
        text = synthesizer.rule_based_answer("what does the callback do", ranked)
        assert not text.startswith("Found")

    def test_where_question(self, synthesizer, ranked):
        text = synthesizer.rule_based_answer("Where is the config parsed?", ranked)
        assert text.startswith("Here's where you can find relevant code:")
        assert "**parseConfig** is in `src/config.ts`" in text

    def test_how_question(self, synthesizer, ranked):
        text = synthesizer.rule_based_answer("How does config loading work?", ranked)
        assert text.startswith("Based on the codebase analysis:")
        assert "**Related components:**" in text
        assert "- ConfigLoader:" in text

    def test_what_question(self, synthesizer, ranked):
        text = synthesizer.rule_based_answer("What is parseConfig?", ranked)
        assert text.startswith("**parseConfig** (function)\n\nParses raw configuration text.")
        assert "Location: `src/config.ts`" in text
        assert "**See also:**" in text
        assert "- readFile (`src/fs.ts`)" in text

    def test_single_result_has_no_see_also(self, synthesizer, ranked):
        text = synthesizer.rule_based_answer("What is parseConfig?", ranked[:1])
        assert "See also" not in text
