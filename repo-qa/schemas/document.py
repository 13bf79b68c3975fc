"""Pydantic models for documents, chunks and embeddings (ingestion side)."""

from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from enum import Enum


class SourceType(str, Enum):
    PRIMARY = "primary"  # the repository README
    SECONDARY = "secondary"  # linked documentation pages


class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    source_id: str = Field(description="Stable identifier, e.g. '{owner}/{repo}:readme'")
    raw_text: str
    source_type: SourceType = SourceType.SECONDARY
    url: Optional[str] = None
    anchor_text: Optional[str] = Field(
        None, description="Link text the page was discovered under"
    )


class Chunk(BaseModel):
    id: str = Field(description="Deterministic hash of document id, index and text")
    document_id: str
    text: str = Field(description="The chunk text for embedding and retrieval")
    sequence_index: int = Field(ge=0)
    overlap_length: int = Field(
        0, ge=0, description="Characters carried over from the previous chunk"
    )
    metadata: dict = Field(default_factory=dict)

    @property
    def byte_length(self) -> int:
        return len(self.text.encode("utf-8"))

    @property
    def char_length(self) -> int:
        return len(self.text)


class Embedding(BaseModel):
    chunk_id: str
    vector: List[float]
    model_id: str
