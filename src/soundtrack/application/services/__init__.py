"""Application services."""

from soundtrack.application.services.aggregation_service import AggregationService
from soundtrack.application.services.catalog_resolver import (
    CatalogBatch,
    CatalogResolver,
    ResolveResult,
)
from soundtrack.application.services.catalog_service import CatalogService, EntityKind
from soundtrack.application.services.history_sync_service import (
    HistorySyncService,
    SyncResult,
)
from soundtrack.application.services.token_manager import TokenManager
from soundtrack.application.services.user_service import UserService

__all__ = [
    "AggregationService",
    "CatalogBatch",
    "CatalogResolver",
    "CatalogService",
    "EntityKind",
    "HistorySyncService",
    "ResolveResult",
    "SyncResult",
    "TokenManager",
    "UserService",
]
