"""Query orchestration: embed → retrieve → fit context → answer.

When retrieval is sufficient the model answers straight from the selected
documentation. Otherwise the question goes through the tool loop so the
model can fall back to web search. Failures never raise out of `answer`;
they come back as `QueryResult(success=False, failure_reason=...)`.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Optional

from chat.prompts import build_chat_system_prompt
from chat.retriever import Retriever
from chat.tool_loop import LoopState, ToolLoop
from common.errors import (
    EmbeddingProviderError,
    IterationBudgetExceededError,
    LLMProviderError,
    NoValidInputError,
    VectorStoreError,
)
from schemas.conversation import Message, TokenUsage
from schemas.retrieval import ContextStats, RetrievedMatch

logger = logging.getLogger(__name__)

# failure_reason codes
EMPTY_QUESTION = "empty_question"
EMBEDDING_FAILED = "embedding_failed"
RETRIEVAL_FAILED = "retrieval_failed"
LLM_ERROR = "llm_error"
ITERATION_BUDGET_EXCEEDED = "iteration_budget_exceeded"
CANCELLED = "cancelled"


@dataclass
class QueryResult:
    """Complete result of a repository question."""
    success: bool
    answer: str = ""
    sources: list[RetrievedMatch] = field(default_factory=list)
    used_rag_context: bool = False
    used_fallback: bool = False
    truncated: bool = False
    model: str = ""
    usage: TokenUsage = field(default_factory=TokenUsage)
    tool_calls_used: int = 0
    context_stats: ContextStats = field(default_factory=ContextStats)
    failure_reason: Optional[str] = None
    message: Optional[str] = None
    elapsed_s: float = 0.0


class QueryEngine:
    """Orchestrates retrieval, the sufficiency policy and answer generation."""

    def __init__(self, retriever: Retriever, llm, tool_loop: Optional[ToolLoop] = None):
        self.retriever = retriever
        self.llm = llm
        self.tool_loop = tool_loop

    def _fail(self, reason: str, message: str, t0: float, **kwargs) -> QueryResult:
        logger.error("Query failed (%s): %s", reason, message)
        return QueryResult(
            success=False,
            failure_reason=reason,
            message=message,
            elapsed_s=round(time.perf_counter() - t0, 2),
            **kwargs,
        )

    def answer(
        self,
        question: str,
        scope: str,
        summary: Optional[dict] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> QueryResult:
        t0 = time.perf_counter()
        if not question or not question.strip():
            return self._fail(EMPTY_QUESTION, "Question is empty", t0)

        # 1. Embed the question
        try:
            vector = self.retriever.embedder.embed_single(question)
        except (EmbeddingProviderError, NoValidInputError) as e:
            return self._fail(EMBEDDING_FAILED, str(e), t0)

        # 2. Retrieve and fit the context window
        try:
            matches = self.retriever.retrieve(vector, scope)
        except VectorStoreError as e:
            return self._fail(RETRIEVAL_FAILED, str(e), t0)
        context = self.retriever.prepare_context(matches)
        sufficient = self.retriever.is_sufficient(context.matches)
        stats = self.retriever.context_stats(context.matches)

        tools = self.tool_loop.registry.specs() if self.tool_loop is not None else []
        use_tools = not sufficient and bool(tools)
        logger.info(
            "[%s] %d matches, %d in context, sufficient=%s, web search=%s",
            scope, len(matches), len(context.matches), sufficient, use_tools,
        )

        messages = [
            Message.system(build_chat_system_prompt(
                scope, context.matches, summary=summary, web_search_available=use_tools,
            )),
            Message.user(question),
        ]
        common = dict(
            sources=context.matches,
            used_rag_context=bool(context.matches),
            used_fallback=not sufficient,
            truncated=context.truncated,
            context_stats=stats,
        )

        # 3. Answer, directly or through the tool loop
        try:
            if not use_tools:
                response = self.llm.complete(messages, use_case="chat")
                answer_text = response.content or ""
                usage, model, tool_calls_used = response.usage, response.model, 0
            else:
                loop = self.tool_loop.complete_with_tools(messages, tools=tools, cancel_event=cancel_event)
                if loop.state == LoopState.CANCELLED:
                    return self._fail(CANCELLED, "Query cancelled", t0, usage=loop.usage,
                                      tool_calls_used=len(loop.invocations), **common)
                answer_text = loop.final_message.content or ""
                usage, model, tool_calls_used = loop.usage, loop.model, len(loop.invocations)
        except IterationBudgetExceededError as e:
            return self._fail(ITERATION_BUDGET_EXCEEDED, str(e), t0, usage=e.usage or TokenUsage(), **common)
        except LLMProviderError as e:
            return self._fail(LLM_ERROR, str(e), t0, usage=e.usage or TokenUsage(), **common)

        elapsed = round(time.perf_counter() - t0, 2)
        logger.info("[%s] Answered in %.1fs (%d tokens, %d tool calls)",
                    scope, elapsed, usage.total_tokens, tool_calls_used)
        return QueryResult(
            success=True,
            answer=answer_text,
            model=model,
            usage=usage,
            tool_calls_used=tool_calls_used,
            elapsed_s=elapsed,
            **common,
        )
