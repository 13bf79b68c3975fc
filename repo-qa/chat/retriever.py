"""Similarity retrieval and the context sufficiency policy.

Two thresholds are in play:
- `match_threshold` filters what the vector store returns
- `fallback_threshold` decides whether the best surviving match is good
  enough to answer from documentation alone

A query whose best match clears the first but not the second still returns
its matches, and the caller also reaches for the web-search fallback.
"""

import logging
from typing import Optional

from config.settings import RetrievalConfig
from schemas.retrieval import ContextStats, ContextWindow, RetrievalResult, RetrievedMatch

logger = logging.getLogger(__name__)

TRUNCATION_MARKER = "..."


class Retriever:
    """Retrieval engine wrapping VectorStore + EmbeddingPipeline."""

    def __init__(self, store, embedder=None, config: Optional[RetrievalConfig] = None):
        self.store = store
        self.embedder = embedder
        self.config = config or RetrievalConfig()

    def retrieve(
        self,
        query_vector: list[float],
        filter_scope: str,
        match_threshold: Optional[float] = None,
        match_count: Optional[int] = None,
    ) -> list[RetrievedMatch]:
        """Matches within `filter_scope` scoring strictly above `match_threshold`, best first."""
        threshold = self.config.match_threshold if match_threshold is None else match_threshold
        count = min(match_count or self.config.match_count, self.config.max_match_count)

        logger.debug("Searching %s: threshold=%.2f, count=%d", filter_scope, threshold, count)
        candidates = self.store.query(query_vector, filter_scope, n_results=count)
        matches = [m for m in candidates if m.similarity_score > threshold]
        matches.sort(key=lambda m: m.similarity_score, reverse=True)
        matches = matches[:count]

        logger.info(
            "Found %d relevant chunks in %s (%d candidates)",
            len(matches), filter_scope, len(candidates),
        )
        return matches

    def prepare_context(
        self,
        matches: list[RetrievedMatch],
        max_context_length: Optional[int] = None,
    ) -> ContextWindow:
        """Select matches in score order until the character budget runs out.

        The first match that does not fit is cut down and marked with `...`
        when more than `min_snippet_chars` of budget remain, and dropped
        otherwise. Nothing after it is considered.
        """
        max_length = self.config.max_context_length if max_context_length is None else max_context_length
        if not matches:
            return ContextWindow(matches=[], truncated=False)

        total = 0
        selected: list[RetrievedMatch] = []
        truncated = False
        for match in sorted(matches, key=lambda m: m.similarity_score, reverse=True):
            size = len(match.text)
            if total + size <= max_length:
                selected.append(match)
                total += size
                continue

            truncated = True
            remaining = max_length - total
            if remaining > self.config.min_snippet_chars:
                cut = match.text[:remaining - len(TRUNCATION_MARKER)] + TRUNCATION_MARKER
                selected.append(match.model_copy(update={"text": cut}))
            break

        if truncated:
            logger.info("Context truncated: using %d/%d sources", len(selected), len(matches))
        return ContextWindow(matches=selected, truncated=truncated)

    def is_sufficient(
        self,
        matches: list[RetrievedMatch],
        min_count: Optional[int] = None,
        fallback_threshold: Optional[float] = None,
    ) -> bool:
        """Whether the matches are enough to answer without the fallback."""
        min_count = self.config.min_chunks_for_context if min_count is None else min_count
        threshold = self.config.fallback_threshold if fallback_threshold is None else fallback_threshold

        if not matches or len(matches) < min_count:
            return False
        best = max(m.similarity_score for m in matches)
        if best < threshold:
            logger.info("Best similarity %.3f below fallback threshold %.3f", best, threshold)
            return False
        return True

    @staticmethod
    def context_stats(matches: list[RetrievedMatch]) -> ContextStats:
        if not matches:
            return ContextStats()
        scores = [m.similarity_score for m in matches]
        return ContextStats(
            count=len(matches),
            total_length=sum(len(m.text) for m in matches),
            avg_similarity=sum(scores) / len(scores),
            min_similarity=min(scores),
            max_similarity=max(scores),
        )

    def search(self, query: str, filter_scope: str) -> RetrievalResult:
        """Embed `query`, retrieve, fit the context window and judge sufficiency.

        Embedding and vector store errors propagate to the caller.
        """
        if self.embedder is None:
            raise RuntimeError("Retriever.search needs an embedder")

        logger.info("Retrieving context for query: %.100s", query)
        vector = self.embedder.embed_single(query)
        matches = self.retrieve(vector, filter_scope)
        context = self.prepare_context(matches)
        sufficient = self.is_sufficient(context.matches)

        if sufficient:
            logger.info("Using %d sources for context", len(context.matches))
        else:
            logger.info("Insufficient context - will use fallback mode")
        return RetrievalResult(matches=matches, context=context, sufficient=sufficient)
