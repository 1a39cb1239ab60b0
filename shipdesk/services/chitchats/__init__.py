"""Chit Chats shipment services.

This package provides:
- Rate-limited API client
- Client payload adapter
- Time-boxed shipment search
- Shipment create/refresh/replace/buy operations
"""

from shipdesk.services.chitchats.adapter import (
    AdapterPolicy,
    adapt_create,
    adapt_refresh,
)
from shipdesk.services.chitchats.client import (
    ChitChatsAPIError,
    ChitChatsClient,
    ChitChatsConfigError,
)
from shipdesk.services.chitchats.search import (
    OpenBatchCache,
    SearchQuery,
    ShipmentSearch,
)
from shipdesk.services.chitchats.shipments import (
    ShipmentConflictError,
    ShipmentError,
    ShipmentNotFoundError,
    ShipmentService,
    ShipmentValidationError,
    is_postage_purchased,
)

__all__ = [
    # Adapter
    "AdapterPolicy",
    "adapt_create",
    "adapt_refresh",
    # Client
    "ChitChatsAPIError",
    "ChitChatsClient",
    "ChitChatsConfigError",
    # Search
    "OpenBatchCache",
    "SearchQuery",
    "ShipmentSearch",
    # Shipments
    "ShipmentConflictError",
    "ShipmentError",
    "ShipmentNotFoundError",
    "ShipmentService",
    "ShipmentValidationError",
    "is_postage_purchased",
]
