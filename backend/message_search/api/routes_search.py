"""Search API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from message_search.api.dependencies import get_principal, get_search_service
from message_search.models.dto import SearchRequest, SearchResponse, SearchResultItem
from message_search.retrieval.search import SearchService
from message_search.security.identity import Principal

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Semantic search over the caller's messages")
async def run_search(
    request: SearchRequest,
    owner: Principal = Depends(get_principal),
    service: SearchService = Depends(get_search_service),
) -> SearchResponse:
    query = request.query if request.query is not None else request.query_vector
    hits = service.search(owner, query, k=request.k, threshold=request.threshold)
    return SearchResponse(results=[SearchResultItem(**hit.to_dict()) for hit in hits])


__all__ = ["router"]
