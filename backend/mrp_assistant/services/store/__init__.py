from mrp_assistant.services.store.base import (
    ConflictError,
    DocumentStore,
    OrderBy,
    StoreError,
    StoreFilter,
    StoreQuery,
)

__all__ = [
    "ConflictError",
    "DocumentStore",
    "OrderBy",
    "StoreError",
    "StoreFilter",
    "StoreQuery",
]
