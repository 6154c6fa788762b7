"""
Collection registry: logical collection names used by tools, their store
names, record models, declared composite indexes and heavy nested fields.
"""
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Mapping, Optional, Tuple, Type

from mrp_assistant.services.store.base import OrderBy
from mrp_assistant.services.store.records import (
    CmrDocumentRecord,
    CustomerOrderRecord,
    InventoryBatchRecord,
    InventoryItemRecord,
    InventoryTransactionRecord,
    InvoiceRecord,
    PartyRecord,
    ProductionSessionRecord,
    ProductionTaskRecord,
    PurchaseOrderRecord,
    RecipeRecord,
    StoreRecord,
    UserRecord,
)


@dataclass(frozen=True)
class CollectionConfig:
    """
    Static description of one collection.

    Attributes:
        name: logical name used in tool arguments ("production_tasks")
        store_name: collection/table name in the document store
        record: record model used to decode documents
        composite_indexes: (equality field, range/order field) pairs the store
            has an index for; any other multi-field combination is demoted to
            client-side evaluation
        enum_fields: enumerated fields whose filter values go through the
            synonym table
        heavy_fields: nested arrays stripped from results unless details are requested
        name_fields: foreign-key field -> directory kind for display-name resolution
        default_order: ordering applied when the caller gives none
    """
    name: str
    store_name: str
    record: Type[StoreRecord]
    composite_indexes: FrozenSet[Tuple[str, str]] = frozenset()
    enum_fields: Tuple[str, ...] = ()
    heavy_fields: Tuple[str, ...] = ()
    name_fields: Mapping[str, str] = field(default_factory=dict)
    default_order: Optional[OrderBy] = None

    @property
    def timestamp_fields(self) -> Tuple[str, ...]:
        return self.record.timestamp_fields

    def has_index(self, equality_field: str, second_field: str) -> bool:
        return (equality_field, second_field) in self.composite_indexes


COLLECTIONS: Dict[str, CollectionConfig] = {
    config.name: config
    for config in (
        CollectionConfig(
            name="production_tasks",
            store_name="productionTasks",
            record=ProductionTaskRecord,
            enum_fields=("status",),
            composite_indexes=frozenset({
                ("status", "createdAt"),
                ("status", "scheduledDate"),
                ("assignedTo", "createdAt"),
            }),
            heavy_fields=("materials", "consumedMaterials", "formResponses"),
            name_fields={"assignedTo": "users", "createdBy": "users"},
            default_order=OrderBy("createdAt", descending=True),
        ),
        CollectionConfig(
            name="orders",
            store_name="orders",
            record=CustomerOrderRecord,
            enum_fields=("status",),
            composite_indexes=frozenset({("status", "orderDate"), ("customerId", "orderDate")}),
            heavy_fields=("items",),
            default_order=OrderBy("orderDate", descending=True),
        ),
        CollectionConfig(
            name="purchase_orders",
            store_name="purchaseOrders",
            record=PurchaseOrderRecord,
            enum_fields=("status",),
            composite_indexes=frozenset({("status", "orderDate"), ("supplierId", "orderDate")}),
            heavy_fields=("items", "appliedDocuments"),
            default_order=OrderBy("orderDate", descending=True),
        ),
        CollectionConfig(
            name="inventory",
            store_name="inventory",
            record=InventoryItemRecord,
        ),
        CollectionConfig(
            name="inventory_batches",
            store_name="inventoryBatches",
            record=InventoryBatchRecord,
            composite_indexes=frozenset({("itemId", "expirationDate"), ("materialId", "expirationDate")}),
            name_fields={"materialId": "materials"},
            default_order=OrderBy("expirationDate"),
        ),
        CollectionConfig(
            name="inventory_transactions",
            store_name="inventoryTransactions",
            record=InventoryTransactionRecord,
            enum_fields=("type",),
            composite_indexes=frozenset({
                ("type", "createdAt"),
                ("itemId", "createdAt"),
                ("taskId", "createdAt"),
            }),
            name_fields={"createdBy": "users", "itemId": "materials"},
            default_order=OrderBy("createdAt", descending=True),
        ),
        CollectionConfig(
            name="recipes",
            store_name="recipes",
            record=RecipeRecord,
            heavy_fields=("ingredients",),
        ),
        CollectionConfig(
            name="invoices",
            store_name="invoices",
            record=InvoiceRecord,
            enum_fields=("status",),
            composite_indexes=frozenset({("status", "issueDate"), ("customerId", "issueDate")}),
            heavy_fields=("items",),
            default_order=OrderBy("issueDate", descending=True),
        ),
        CollectionConfig(
            name="cmr_documents",
            store_name="cmrDocuments",
            record=CmrDocumentRecord,
            enum_fields=("status",),
            composite_indexes=frozenset({("status", "createdAt")}),
            heavy_fields=("vehicleInfo",),
            default_order=OrderBy("createdAt", descending=True),
        ),
        CollectionConfig(
            name="production_history",
            store_name="productionHistory",
            record=ProductionSessionRecord,
            composite_indexes=frozenset({("taskId", "startTime"), ("userId", "startTime")}),
            name_fields={"userId": "users"},
            default_order=OrderBy("startTime", descending=True),
        ),
        CollectionConfig(name="customers", store_name="customers", record=PartyRecord),
        CollectionConfig(name="suppliers", store_name="suppliers", record=PartyRecord),
        CollectionConfig(name="users", store_name="users", record=UserRecord),
    )
}

COLLECTION_ALIASES = {
    "customer_orders": "orders",
    "materials": "inventory",
    "production": "production_tasks",
    "batches": "inventory_batches",
    "transactions": "inventory_transactions",
    "cmr": "cmr_documents",
    "production_sessions": "production_history",
}


def get_collection(name: str) -> CollectionConfig:
    """
    Resolve a logical or aliased collection name.

    Raises:
        KeyError: for names outside the registry
    """
    key = COLLECTION_ALIASES.get(name, name)
    if key not in COLLECTIONS:
        raise KeyError(f"Unknown collection '{name}'. Available: {', '.join(sorted(COLLECTIONS))}")
    return COLLECTIONS[key]


def store_table_names() -> Dict[str, str]:
    """Store name -> table name, for store adapters that address tables in snake_case."""
    return {config.store_name: config.name for config in COLLECTIONS.values()}
