"""Pydantic models for query-time retrieval results."""

from pydantic import BaseModel, Field
from typing import List, Optional


class RetrievedMatch(BaseModel):
    chunk_id: str
    text: str
    source_url: Optional[str] = None
    similarity_score: float = Field(ge=-1.0, le=1.0)
    metadata: dict = Field(default_factory=dict)


class ContextWindow(BaseModel):
    """Matches selected for the prompt, possibly with the last one cut short."""

    matches: List[RetrievedMatch] = Field(default_factory=list)
    truncated: bool = False

    @property
    def text_length(self) -> int:
        return sum(len(m.text) for m in self.matches)


class ContextStats(BaseModel):
    count: int = 0
    total_length: int = 0
    avg_similarity: float = 0.0
    min_similarity: float = 0.0
    max_similarity: float = 0.0


class RetrievalResult(BaseModel):
    matches: List[RetrievedMatch] = Field(
        default_factory=list, description="All matches above the threshold"
    )
    context: ContextWindow = Field(default_factory=ContextWindow)
    sufficient: bool = False

    @property
    def use_fallback(self) -> bool:
        return not self.sufficient
