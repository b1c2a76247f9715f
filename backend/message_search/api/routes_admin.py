"""Administrative routes for Message Search."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from message_search.api.dependencies import get_ingest_pipeline, get_principal
from message_search.core.metrics import metrics_response
from message_search.ingest.pipeline import IngestPipeline
from message_search.models.dto import DeleteResponse
from message_search.security.identity import Principal
from message_search.utils.ids import has_prefix

router = APIRouter()


@router.delete(
    "/conversations/{conversation_id}",
    response_model=DeleteResponse,
    summary="Delete a conversation with its messages and chunks",
)
async def delete_conversation(
    conversation_id: str,
    owner: Principal = Depends(get_principal),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> DeleteResponse:
    if not has_prefix(conversation_id, "cnv"):
        raise HTTPException(status_code=404, detail="Conversation not found")
    return DeleteResponse(deleted_chunks=pipeline.delete_conversation(owner, conversation_id))


@router.delete("/messages/{message_id}", response_model=DeleteResponse, summary="Delete a message and its chunks")
async def delete_message(
    message_id: str,
    owner: Principal = Depends(get_principal),
    pipeline: IngestPipeline = Depends(get_ingest_pipeline),
) -> DeleteResponse:
    if not has_prefix(message_id, "msg"):
        raise HTTPException(status_code=404, detail="Message not found")
    return DeleteResponse(deleted_chunks=pipeline.delete_message(owner, message_id))


@router.get("/metrics", summary="Prometheus metrics")
async def get_metrics():
    return metrics_response()


__all__ = ["router"]
