import re

from loguru import logger

from codeqa.core.errors import AuthenticationError
from codeqa.core.models import AnswerResult, Confidence, RelevantNode, ScoredChunk
from codeqa.core.ports import ICompletionClient
from codeqa.services.reranker import Reranker, to_candidates
from codeqa.services.retriever import Retriever

SYSTEM_PROMPT = """You are an expert code assistant helping developers understand a codebase.

Answer the question using only the code context provided by the user. Reference
file names, symbol names and line numbers where they help. If the context does
not contain the answer, say so plainly and describe what you can infer.
Never invent files, functions or behaviour that the context does not show.

Use markdown: **bold** for key terms, `code` for identifiers and paths, and
fenced blocks for multi-line code."""

NO_RESULTS_ANSWER = (
    "No relevant information found in the codebase. "
    "Try rephrasing your question or use more specific terms."
)

AUTH_ERROR_NOTICE = (
    "**API Key Error**\n\n"
    "The AI service returned an authentication error. Your API key may be invalid or expired.\n\n"
    "**To fix this:**\n"
    "1. Set a valid key in the `llm` section of config.yaml, or export `CODEQA_LLM__API_KEY`\n"
    "2. Try your question again\n\n"
    "---\n\n"
    "*Meanwhile, here's what I found using basic search:*\n\n"
)

UNAVAILABLE_NOTICE = (
    "**AI Service Unavailable**\n\n"
    "Could not generate an AI-powered answer. Using basic search results instead.\n\n"
    "---\n\n"
)

NOT_CONFIGURED_NOTICE = (
    "*AI answers are not configured (set `CODEQA_LLM__API_KEY`). "
    "Here's what I found using basic search:*\n\n"
)

CONTEXT_RESULTS = 5
CONTEXT_CHARS = 800
SUMMARY_CHARS = 200

HIGH_CONFIDENCE = 0.7
MEDIUM_CONFIDENCE = 0.4

_AUTH_PATTERN = re.compile(r"401|unauthorized|api key|invalid_api_key", re.IGNORECASE)
_LIST_PATTERN = re.compile(r"\b(list|all)\b|\bshow me\b")
_WHERE_PATTERN = re.compile(r"^where\b|\bwhere (is|are|does|do)\b")
_HOW_PATTERN = re.compile(r"^how\b|\bhow (to|does|do|is|are)\b")


def confidence_for(score: float) -> Confidence:
    """Maps a relevance score, clamped to [0, 1], onto a confidence bucket."""
    score = min(max(score, 0.0), 1.0)
    if score >= HIGH_CONFIDENCE:
        return "high"
    if score >= MEDIUM_CONFIDENCE:
        return "medium"
    return "low"


def is_auth_failure(error: Exception) -> bool:
    return isinstance(error, AuthenticationError) or bool(_AUTH_PATTERN.search(str(error)))


def _summary(item: ScoredChunk, limit: int) -> str:
    return item.chunk.metadata.docstring or item.chunk.content[:limit]


class AnswerSynthesizer:
    """
    Turns a question into an answer: retrieve, rerank, then either ask the
    language model with the top chunks as context or render a template.
    Never raises for service failures; the template answer is always available.
    """

    def __init__(
        self,
        retriever: Retriever,
        reranker: Reranker,
        llm: ICompletionClient | None = None,
        candidates: int = 8,
        top_k: int = 5,
    ) -> None:
        self.retriever = retriever
        self.reranker = reranker
        self.llm = llm
        self.candidates = candidates
        self.top_k = top_k

    def answer(self, question: str) -> AnswerResult:
        outcome = self.retriever.search_with_path(question, self.candidates)
        ranked = self.reranker.rerank(question, to_candidates(outcome.results), self.top_k)

        if not ranked:
            return AnswerResult(
                answer=NO_RESULTS_ANSWER, confidence="low", ai_generated=False, path=outcome.path
            )

        relevant_nodes = [
            RelevantNode(
                name=item.chunk.metadata.name,
                type=item.chunk.metadata.type,
                summary=_summary(item, SUMMARY_CHARS),
                file_path=item.chunk.metadata.file_path,
                score=item.score,
            )
            for item in ranked
        ]

        ai_generated = False
        if self.llm is None:
            text = NOT_CONFIGURED_NOTICE + self.rule_based_answer(question, ranked)
        else:
            try:
                text = self.llm.complete(SYSTEM_PROMPT, self._user_prompt(question, ranked))
                ai_generated = True
            except Exception as e:
                logger.warning("Answer generation failed, using rule-based answer: {}", e)
                notice = AUTH_ERROR_NOTICE if is_auth_failure(e) else UNAVAILABLE_NOTICE
                text = notice + self.rule_based_answer(question, ranked)

        return AnswerResult(
            answer=text,
            relevant_nodes=relevant_nodes,
            sources=self.reranker.to_sources(ranked),
            confidence=confidence_for(ranked[0].score),
            ai_generated=ai_generated,
            path=outcome.path,
        )

    def _user_prompt(self, question: str, ranked: list[ScoredChunk]) -> str:
        parts = []
        for i, item in enumerate(ranked[:CONTEXT_RESULTS], start=1):
            meta = item.chunk.metadata
            parts.append(
                f"### {i}. {meta.name} ({meta.type})\n"
                f"**File**: {meta.file_path}:{meta.start_line}\n"
                f"**Summary**: {meta.docstring or ''}\n\n"
                f"```\n{item.chunk.content[:CONTEXT_CHARS]}\n```"
            )
        context = "\n\n---\n\n".join(parts)
        return f"## Question\n{question}\n\n---\n\n## Relevant Code Context\n\n{context}"

    def rule_based_answer(self, question: str, ranked: list[ScoredChunk]) -> str:
        """Renders a template answer chosen by the question's shape."""
        q = question.lower().strip()
        top = ranked[:CONTEXT_RESULTS]

        if _LIST_PATTERN.search(q):
            items = [
                f"- **{r.chunk.metadata.name}** ({r.chunk.metadata.type}): {_summary(r, 100)}"
                for r in top
            ]
            return f"Found {len(ranked)} relevant items:\n\n" + "\n\n".join(items)

        if _WHERE_PATTERN.search(q):
            locations = [
                f"- **{r.chunk.metadata.name}** is in `{r.chunk.metadata.file_path}`"
                f" (lines {r.chunk.metadata.start_line}-{r.chunk.metadata.end_line})"
                for r in top
            ]
            return "Here's where you can find relevant code:\n\n" + "\n".join(locations)

        first = top[0]
        meta = first.chunk.metadata

        if _HOW_PATTERN.search(q):
            text = f"Based on the codebase analysis:\n\n**{meta.name}** ({meta.type})\n\n"
            text += _summary(first, 300)
            if len(top) > 1:
                text += "\n\n**Related components:**\n"
                for r in top[1:4]:
                    text += f"- {r.chunk.metadata.name}: {_summary(r, 100)}\n"
            return text

        text = f"**{meta.name}** ({meta.type})\n\n{_summary(first, 400)}"
        text += f"\n\nLocation: `{meta.file_path}`"
        if len(top) > 1:
            text += "\n\n**See also:**\n"
            for r in top[1:4]:
                text += f"- {r.chunk.metadata.name} (`{r.chunk.metadata.file_path}`)\n"
        return text

    def close(self) -> None:
        if self.llm is not None:
            self.llm.close()
