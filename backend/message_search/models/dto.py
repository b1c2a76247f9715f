"""Pydantic DTOs exposed via API."""

from __future__ import annotations

from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field, model_validator


class SyncStateResponse(BaseModel):
    source: str
    status: Literal["idle", "running", "error"]
    cursor: str | None = None
    error: str | None = None
    last_synced_at: datetime | None = None
    updated_at: datetime | None = None


class SyncCancelResponse(BaseModel):
    source: str
    cancelled: bool


class SearchRequest(BaseModel):
    query: str | None = Field(default=None, description="Free-text query, embedded server side")
    query_vector: list[float] | None = Field(default=None, description="Pre-computed query embedding")
    k: int | None = Field(default=None, ge=1, le=200)
    threshold: float | None = Field(default=None, ge=-1.0, le=1.0)

    @model_validator(mode="after")
    def _one_query(self) -> "SearchRequest":
        if (self.query is None) == (self.query_vector is None):
            raise ValueError("provide exactly one of query or query_vector")
        return self


class SearchResultItem(BaseModel):
    chunk_id: str
    message_id: str
    conversation_id: str | None
    chunk_index: int
    content: str
    similarity: float
    sender_id: str | None = None
    sent_at: datetime | None = None


class SearchResponse(BaseModel):
    results: list[SearchResultItem]


class DeleteResponse(BaseModel):
    status: Literal["ok"] = "ok"
    deleted_chunks: int


__all__ = [
    "SyncStateResponse",
    "SyncCancelResponse",
    "SearchRequest",
    "SearchResultItem",
    "SearchResponse",
    "DeleteResponse",
]
