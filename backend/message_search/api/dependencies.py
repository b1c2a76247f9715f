"""Shared FastAPI dependencies."""

from __future__ import annotations

from functools import lru_cache

from fastapi import Depends, Header

from message_search.core.config import Settings, get_settings
from message_search.db.sqlite import SQLiteDatabase
from message_search.db.store import MessageStore
from message_search.ingest.embeddings import EmbeddingGateway
from message_search.ingest.fetchers import FetcherRegistry, LinkedInExportFetcher
from message_search.ingest.pipeline import IngestPipeline
from message_search.ingest.resilience import TimeoutRunner
from message_search.retrieval import SearchService, VectorIndex
from message_search.security.identity import IdentityResolver, Principal, StaticTokenResolver
from message_search.sync.scheduler import SyncScheduler
from message_search.sync.state import SyncStateTracker

_DB: SQLiteDatabase | None = None
_STORE: MessageStore | None = None
_TRACKER: SyncStateTracker | None = None
_GATEWAY: EmbeddingGateway | None = None
_VECTOR_INDEX: VectorIndex | None = None
_FETCHERS: FetcherRegistry | None = None
_PIPELINE: IngestPipeline | None = None
_SEARCH_SERVICE: SearchService | None = None
_SCHEDULER: SyncScheduler | None = None
_RESOLVER: IdentityResolver | None = None


@lru_cache(maxsize=1)
def get_app_settings() -> Settings:
    return get_settings()


def get_database() -> SQLiteDatabase:
    global _DB
    if _DB is None:
        settings = get_app_settings()
        db = SQLiteDatabase(settings.db_path)
        db.ensure_schema()
        _DB = db
    return _DB


def get_store() -> MessageStore:
    global _STORE
    if _STORE is None:
        _STORE = MessageStore(get_database())
    return _STORE


def get_tracker() -> SyncStateTracker:
    global _TRACKER
    if _TRACKER is None:
        _TRACKER = SyncStateTracker(get_database())
    return _TRACKER


def get_gateway() -> EmbeddingGateway:
    global _GATEWAY
    if _GATEWAY is None:
        _GATEWAY = EmbeddingGateway.from_settings(get_app_settings())
    return _GATEWAY


def get_vector_index() -> VectorIndex:
    global _VECTOR_INDEX
    if _VECTOR_INDEX is None:
        settings = get_app_settings()
        _VECTOR_INDEX = VectorIndex(
            dim=settings.embedding_dim,
            exact_search_limit=settings.exact_search_limit,
            lists=settings.ivf_lists,
            probes=settings.ivf_probes,
            loader=get_store().iter_embeddings,
        )
    return _VECTOR_INDEX


def get_fetchers() -> FetcherRegistry:
    global _FETCHERS
    if _FETCHERS is None:
        settings = get_app_settings()
        registry = FetcherRegistry()
        registry.register("linkedin", LinkedInExportFetcher(settings.export_dir, page_size=settings.fetch_page_size))
        _FETCHERS = registry
    return _FETCHERS


def get_ingest_pipeline() -> IngestPipeline:
    global _PIPELINE
    if _PIPELINE is None:
        _PIPELINE = IngestPipeline(
            store=get_store(),
            tracker=get_tracker(),
            gateway=get_gateway(),
            vector_index=get_vector_index(),
            fetchers=get_fetchers(),
            settings=get_app_settings(),
            fetch_runner=TimeoutRunner(name="fetch"),
        )
    return _PIPELINE


def get_search_service() -> SearchService:
    global _SEARCH_SERVICE
    if _SEARCH_SERVICE is None:
        _SEARCH_SERVICE = SearchService(
            store=get_store(),
            vector_index=get_vector_index(),
            gateway=get_gateway(),
            settings=get_app_settings(),
        )
    return _SEARCH_SERVICE


def get_scheduler() -> SyncScheduler:
    global _SCHEDULER
    if _SCHEDULER is None:
        _SCHEDULER = SyncScheduler(get_ingest_pipeline(), workers=get_app_settings().sync_workers)
    return _SCHEDULER


def get_identity_resolver() -> IdentityResolver:
    global _RESOLVER
    if _RESOLVER is None:
        _RESOLVER = StaticTokenResolver(get_app_settings().api_tokens)
    return _RESOLVER


def get_principal(
    authorization: str | None = Header(default=None),
    resolver: IdentityResolver = Depends(get_identity_resolver),
) -> Principal:
    return resolver.resolve(authorization)


def reset_dependencies() -> None:
    """Drop cached singletons; the scheduler is shut down first."""
    global _DB, _STORE, _TRACKER, _GATEWAY, _VECTOR_INDEX, _FETCHERS
    global _PIPELINE, _SEARCH_SERVICE, _SCHEDULER, _RESOLVER
    if _SCHEDULER is not None:
        _SCHEDULER.shutdown(wait=True)
    if _PIPELINE is not None and _PIPELINE.fetch_runner is not None:
        _PIPELINE.fetch_runner.shutdown()
    if _GATEWAY is not None and _GATEWAY.runner is not None:
        _GATEWAY.runner.shutdown()
    if _DB is not None:
        _DB.close()
    get_app_settings.cache_clear()
    _DB = _STORE = _TRACKER = _GATEWAY = _VECTOR_INDEX = _FETCHERS = None
    _PIPELINE = _SEARCH_SERVICE = _SCHEDULER = _RESOLVER = None


__all__ = [
    "get_app_settings",
    "get_database",
    "get_store",
    "get_tracker",
    "get_gateway",
    "get_vector_index",
    "get_fetchers",
    "get_ingest_pipeline",
    "get_search_service",
    "get_scheduler",
    "get_identity_resolver",
    "get_principal",
    "reset_dependencies",
]
