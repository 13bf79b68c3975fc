"""Structure-aware recursive chunking for documentation text.

Text is cut at the most meaningful boundary that keeps every piece within
budget, in priority order:
- Markdown section starts (## to #####)
- Paragraph breaks
- Line breaks
- Sentence ends
- Word boundaries
- Single characters (opt-in, for unbroken runs longer than the budget)

Pieces are then packed greedily into chunks. Each chunk after the first is
prefixed with the last `overlap` characters of the text that precedes it, so
dropping every chunk's `overlap_length` prefix and concatenating the rest
gives back the original text exactly. Sizes are measured in characters.
"""

import hashlib
import logging
import re
import time
from typing import Optional

from common.errors import EmptyInputError
from config.settings import ChunkerConfig
from schemas.document import Chunk, Document

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_OVERLAP = 200

# Separators in priority order. Each cut lands right after the match, so the
# separator stays with the preceding piece and a heading opens the next one.
SEPARATORS = [
    re.compile(r"\n(?=#{2,5} )"),
    re.compile(r"\n{2,}"),
    re.compile(r"\n"),
    re.compile(r"(?<=[.!?])\s+"),
    re.compile(r"\s+"),
]


def _cut_after(text: str, pattern: re.Pattern) -> list[str]:
    """Split `text` after every match of `pattern`, keeping all characters."""
    parts = []
    start = 0
    for match in pattern.finditer(text):
        end = match.end()
        if end <= start or end >= len(text):
            continue
        parts.append(text[start:end])
        start = end
    parts.append(text[start:])
    return parts


def make_chunk_id(document_id: str, index: int, text: str) -> str:
    hash_input = f"{document_id}:{index}:{text[:100]}"
    return "chunk-" + hashlib.sha256(hash_input.encode()).hexdigest()[:12]


class Chunker:
    """Recursive separator-priority chunker with character overlap."""

    def __init__(
        self,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        chunk_overlap: int = DEFAULT_OVERLAP,
        split_oversized_tokens: bool = False,
    ):
        self._validate(chunk_size, chunk_overlap)
        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self.split_oversized_tokens = split_oversized_tokens

    @classmethod
    def from_config(cls, config: ChunkerConfig) -> "Chunker":
        return cls(
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
            split_oversized_tokens=config.split_oversized_tokens,
        )

    @staticmethod
    def _validate(target_size: int, overlap: int) -> None:
        if target_size <= 0:
            raise ValueError(f"target_size must be positive, got {target_size}")
        if overlap < 0 or overlap >= target_size:
            raise ValueError(
                f"overlap must satisfy 0 <= overlap < target_size, got {overlap} (target {target_size})"
            )

    # -------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------

    def chunk(
        self,
        text: str,
        target_size: Optional[int] = None,
        overlap: Optional[int] = None,
        document_id: str = "inline",
        metadata: Optional[dict] = None,
    ) -> list[Chunk]:
        """Split `text` into overlapping chunks of at most `target_size` characters.

        Raises EmptyInputError for blank text and ValueError for an invalid
        size/overlap pair.
        """
        target_size = self.chunk_size if target_size is None else target_size
        overlap = self.chunk_overlap if overlap is None else overlap
        self._validate(target_size, overlap)
        if not text or not text.strip():
            raise EmptyInputError("Cannot chunk empty text")

        pieces = self._split(text, target_size - overlap, 0)
        spans = self._merge(pieces, target_size, overlap)

        total = len(spans)
        chunks = []
        for index, (start, end, overlap_length) in enumerate(spans):
            chunk_text = text[start:end]
            chunk_meta = dict(metadata or {})
            chunk_meta.update(
                chunk_index=index,
                total_chunks=total,
                chunk_length=len(chunk_text),
            )
            chunks.append(Chunk(
                id=make_chunk_id(document_id, index, chunk_text),
                document_id=document_id,
                text=chunk_text,
                sequence_index=index,
                overlap_length=overlap_length,
                metadata=chunk_meta,
            ))
        return chunks

    def chunk_document(self, document: Document) -> list[Chunk]:
        """Chunk a Document, carrying its source fields into chunk metadata."""
        metadata = {"source_type": document.source_type.value}
        if document.url:
            metadata["url"] = document.url
        if document.anchor_text:
            metadata["anchor_text"] = document.anchor_text
        t0 = time.perf_counter()
        chunks = self.chunk(document.raw_text, document_id=document.source_id, metadata=metadata)
        logger.debug(
            "Chunked %s (%d chars) into %d chunks in %.3fs",
            document.source_id, len(document.raw_text), len(chunks), time.perf_counter() - t0,
        )
        return chunks

    # -------------------------------------------------------------------
    # Splitting
    # -------------------------------------------------------------------

    def _split(self, text: str, limit: int, level: int) -> list[str]:
        """Cut `text` into pieces of at most `limit` chars using separators from `level` down."""
        if len(text) <= limit:
            return [text]

        for depth in range(level, len(SEPARATORS)):
            parts = _cut_after(text, SEPARATORS[depth])
            if len(parts) <= 1:
                continue
            pieces = []
            for part in parts:
                if len(part) <= limit:
                    pieces.append(part)
                else:
                    pieces.extend(self._split(part, limit, depth + 1))
            return pieces

        # No separator left: an unbroken run longer than the limit
        if self.split_oversized_tokens:
            return [text[i:i + limit] for i in range(0, len(text), limit)]
        pieces = []
        for run in re.findall(r"\S+|\s+", text):
            if run.isspace() and len(run) > limit:
                pieces.extend(run[i:i + limit] for i in range(0, len(run), limit))
            else:
                if len(run) > limit:
                    logger.debug("Keeping oversized token of %d chars whole", len(run))
                pieces.append(run)
        return pieces

    # -------------------------------------------------------------------
    # Merging
    # -------------------------------------------------------------------

    @staticmethod
    def _merge(pieces: list[str], target_size: int, overlap: int) -> list[tuple[int, int, int]]:
        """Pack consecutive pieces greedily into (start, end, overlap_length) spans."""
        spans: list[tuple[int, int, int]] = []
        start = 0  # start of the current chunk's new content
        end = 0
        ov = 0
        budget = target_size

        for piece in pieces:
            size = len(piece)
            if end > start and (end - start) + size > budget:
                spans.append((start - ov, end, ov))
                prev_len = end - (start - ov)
                ov = min(overlap, prev_len, max(0, target_size - size))
                start = end
                budget = target_size - ov
            end += size

        if end > start:
            spans.append((start - ov, end, ov))
        return spans
