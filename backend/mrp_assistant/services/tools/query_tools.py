"""
Query tool handlers.

Every handler follows the same path: build a QueryIntent from its typed
parameters (identifying filters declared in a per-tool table, so the
partitioning tie-break is the table order), translate, execute, resolve
display names, shape. Tool-specific extras are computed on the full records
before heavy fields are stripped.
"""
from datetime import timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from mrp_assistant.services.query.collections import CollectionConfig, get_collection
from mrp_assistant.services.query.executor import ExecutedQuery, execute_query
from mrp_assistant.services.query.translator import ClientPredicate, FieldPredicate, FilterPriority, QueryIntent
from mrp_assistant.services.results.aggregation import to_number
from mrp_assistant.services.results.shaper import build_query_result, empty_warning
from mrp_assistant.services.store.base import OrderBy
from mrp_assistant.services.store.timestamps import to_datetime
from mrp_assistant.services.tools.context import ToolContext
from mrp_assistant.services.tools.params import (
    CmrDocumentQuery,
    CustomerOrderQuery,
    InventoryBatchQuery,
    InventoryQuery,
    InventoryTransactionQuery,
    InvoiceQuery,
    OrderParam,
    PartyQuery,
    ProductionHistoryQuery,
    ProductionTaskQuery,
    PurchaseOrderQuery,
    RecipeQuery,
    UserQuery,
)

PRIMARY = FilterPriority.PRIMARY_CODE
SECONDARY = FilterPriority.SECONDARY_CODE
FOREIGN_KEY = FilterPriority.FOREIGN_KEY

EXPIRING_WITHIN_DAYS = 30
UNKNOWN_GROUP = "Unknown"

# (parameter, stored field, priority); order breaks priority ties.
FilterTable = Sequence[Tuple[str, str, FilterPriority]]

PRODUCTION_TASK_FILTERS: FilterTable = (
    ("moNumber", "moNumber", PRIMARY),
    ("lotNumber", "lotNumber", SECONDARY),
    ("orderId", "orderId", FOREIGN_KEY),
    ("productId", "productId", FOREIGN_KEY),
    ("assignedTo", "assignedTo", FOREIGN_KEY),
)
CUSTOMER_ORDER_FILTERS: FilterTable = (
    ("orderNumber", "orderNumber", PRIMARY),
    ("customerId", "customerId", FOREIGN_KEY),
)
PURCHASE_ORDER_FILTERS: FilterTable = (
    ("poNumber", "number", PRIMARY),
    ("supplierId", "supplierId", FOREIGN_KEY),
)
INVENTORY_FILTERS: FilterTable = (
    ("materialId", "id", PRIMARY),
    ("categoryId", "categoryId", FOREIGN_KEY),
)
BATCH_FILTERS: FilterTable = (
    ("batchNumber", "batchNumber", PRIMARY),
    ("lotNumber", "lotNumber", SECONDARY),
    ("purchaseOrderId", "purchaseOrderId", FOREIGN_KEY),
    ("materialId", "materialId", FOREIGN_KEY),
    ("supplierId", "supplierId", FOREIGN_KEY),
)
TRANSACTION_FILTERS: FilterTable = (
    ("itemId", "itemId", FOREIGN_KEY),
    ("taskId", "taskId", FOREIGN_KEY),
    ("batchId", "batchId", FOREIGN_KEY),
    ("createdBy", "createdBy", FOREIGN_KEY),
)
RECIPE_FILTERS: FilterTable = (
    ("recipeId", "id", PRIMARY),
    ("customerId", "customerId", FOREIGN_KEY),
)
INVOICE_FILTERS: FilterTable = (
    ("invoiceNumber", "number", PRIMARY),
    ("customerId", "customerId", FOREIGN_KEY),
)
CMR_FILTERS: FilterTable = (("cmrNumber", "cmrNumber", PRIMARY),)
PRODUCTION_HISTORY_FILTERS: FilterTable = (
    ("taskId", "taskId", FOREIGN_KEY),
    ("userId", "userId", FOREIGN_KEY),
)
PARTY_FILTERS: FilterTable = (("id", "id", PRIMARY),)
USER_FILTERS: FilterTable = (("role", "role", FOREIGN_KEY),)


class LowStockPredicate(ClientPredicate):
    """quantity < minQuantity; a cross-field comparison the store cannot do."""

    def matches(self, record: dict) -> bool:
        return (to_number(record.get("quantity")) or 0.0) < (to_number(record.get("minQuantity")) or 0.0)

    def describe(self) -> str:
        return "quantity < minQuantity"


def is_low_stock(record: Dict[str, Any]) -> bool:
    return LowStockPredicate().matches(record)


def new_intent(collection: str, params: Any = None, table: FilterTable = ()) -> QueryIntent:
    """Start an intent and apply the tool's identifying-filter table."""
    intent = QueryIntent(get_collection(collection))
    for param_name, field_name, priority in table:
        intent.identify(field_name, getattr(params, param_name, None), priority)
    if params is not None:
        intent.limit = getattr(params, "limit", None)
        intent.order_by = to_order(getattr(params, "orderBy", None))
    return intent


def to_order(order: Optional[OrderParam]) -> Optional[OrderBy]:
    if order is None:
        return None
    return OrderBy(order.field, descending=order.direction == "desc")


async def fetch(ctx: ToolContext, intent: QueryIntent) -> ExecutedQuery:
    """Translate, execute and annotate display names in place."""
    request = ctx.translator.translate(intent)
    executed = await execute_query(ctx.store, request, ctx.log)
    await ctx.names.annotate(executed.items, intent.collection.name_fields)
    return executed


def shape(
    executed: ExecutedQuery,
    collection: CollectionConfig,
    include_details: bool = False,
    **extras: Any,
) -> Dict[str, Any]:
    result = build_query_result(
        executed.items,
        collection.name,
        executed.limit,
        collection.heavy_fields,
        include_details,
    )
    payload = result.model_dump(exclude_none=True)
    if executed.truncated:
        payload["hasMore"] = True
    payload.update({k: v for k, v in extras.items() if v is not None})
    return payload


async def run_simple(ctx: ToolContext, intent: QueryIntent, include_details: bool = False) -> Dict[str, Any]:
    executed = await fetch(ctx, intent)
    return shape(executed, intent.collection, include_details)


# ============================================================================
# PRODUCTION / SALES / PURCHASING
# ============================================================================


async def query_production_tasks(params: ProductionTaskQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = (
        new_intent("production_tasks", params, PRODUCTION_TASK_FILTERS)
        .search(params.productName, "productName", "moNumber")
        .enum("status", params.status)
        .within("createdAt", params.dateFrom, params.dateTo)
    )
    return await run_simple(ctx, intent, params.includeDetails)


async def query_orders(params: CustomerOrderQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = (
        new_intent("orders", params, CUSTOMER_ORDER_FILTERS)
        .search(params.customerName, "customerName")
        .enum("status", params.status)
        .within("orderDate", params.dateFrom, params.dateTo)
    )
    return await run_simple(ctx, intent, params.includeItems)


async def query_purchase_orders(params: PurchaseOrderQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = (
        new_intent("purchase_orders", params, PURCHASE_ORDER_FILTERS)
        .search(params.supplierName, "supplierName")
        .enum("status", params.status)
        .within("orderDate", params.dateFrom, params.dateTo)
    )
    return await run_simple(ctx, intent, params.includeItems)


async def query_invoices(params: InvoiceQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = (
        new_intent("invoices", params, INVOICE_FILTERS)
        .search(params.customerName, "customerName")
        .enum("status", params.status)
        .within("issueDate", params.dateFrom, params.dateTo)
    )
    return await run_simple(ctx, intent, params.includeItems)


# ============================================================================
# INVENTORY
# ============================================================================


def inventory_totals(items: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    items = list(items)
    return {
        "totalItems": len(items),
        "totalQuantity": round(sum(to_number(i.get("quantity")) or 0.0 for i in items), 2),
        "totalValue": round(
            sum((to_number(i.get("quantity")) or 0.0) * (to_number(i.get("unitPrice")) or 0.0) for i in items), 2
        ),
        "lowStockCount": sum(1 for i in items if is_low_stock(i)),
    }


async def query_inventory(params: InventoryQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = (
        new_intent("inventory", params, INVENTORY_FILTERS)
        .search(params.searchText, "name", "description", "id")
        .add_filters(params.filters)
    )
    if params.checkLowStock:
        intent.extra.append(LowStockPredicate())
    if params.checkExpiring:
        now = ctx.now()
        intent.within("expirationDate", now, now + timedelta(days=EXPIRING_WITHIN_DAYS))

    executed = await fetch(ctx, intent)
    totals = inventory_totals(executed.items) if params.calculateTotals else None
    return shape(executed, intent.collection, totals=totals)


async def query_inventory_batches(params: InventoryBatchQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = (
        new_intent("inventory_batches", params, BATCH_FILTERS)
        .search(params.materialName, "materialName")
        .within("expirationDate", params.expiresFrom, params.expiresTo)
    )
    return await run_simple(ctx, intent)


def transaction_totals(items: Iterable[Dict[str, Any]]) -> Dict[str, Any]:
    by_type: Dict[str, Dict[str, Any]] = {}
    count = 0
    for item in items:
        count += 1
        bucket = by_type.setdefault(item.get("type") or "unknown", {"count": 0, "totalQuantity": 0.0})
        bucket["count"] += 1
        bucket["totalQuantity"] = round(bucket["totalQuantity"] + (to_number(item.get("quantity")) or 0.0), 2)
    return {"totalTransactions": count, "byType": by_type}


async def query_inventory_transactions(params: InventoryTransactionQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = (
        new_intent("inventory_transactions", params, TRANSACTION_FILTERS)
        .search(params.itemName, "itemName")
        .enum("type", params.type)
        .within("createdAt", params.dateFrom, params.dateTo)
    )
    executed = await fetch(ctx, intent)
    totals = transaction_totals(executed.items) if params.calculateTotals else None
    return shape(executed, intent.collection, totals=totals)


# ============================================================================
# TRANSPORT / PRODUCTION HISTORY
# ============================================================================


async def query_cmr_documents(params: CmrDocumentQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = (
        new_intent("cmr_documents", params, CMR_FILTERS)
        .search(params.partyName, "sender", "recipient", "carrier")
        .enum("status", params.status)
        .within("createdAt", params.dateFrom, params.dateTo)
    )
    if params.orderId:
        intent.extra.append(FieldPredicate("linkedOrderIds", "array-contains", params.orderId))
    return await run_simple(ctx, intent, params.includeDetails)


def session_productivity(sessions: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Quantity and time totals over work sessions; timeSpent is in minutes."""
    if not sessions:
        return None
    total_quantity = sum(to_number(s.get("quantity")) or 0.0 for s in sessions)
    total_minutes = sum(to_number(s.get("timeSpent")) or 0.0 for s in sessions)
    count = len(sessions)
    return {
        "totalSessions": count,
        "totalQuantity": round(total_quantity, 2),
        "totalTimeMinutes": round(total_minutes, 2),
        "avgQuantityPerSession": round(total_quantity / count, 2),
        "avgTimePerSession": round(total_minutes / count, 2),
        "quantityPerHour": round(total_quantity / (total_minutes / 60), 2) if total_minutes > 0 else 0,
    }


def session_group_key(session: Dict[str, Any], group_by: str) -> str:
    if group_by == "user":
        return session.get("userName") or session.get("userIdName") or session.get("userId") or UNKNOWN_GROUP
    if group_by == "task":
        return session.get("moNumber") or session.get("taskId") or UNKNOWN_GROUP
    started = to_datetime(session.get("startTime"))
    if started is None:
        return UNKNOWN_GROUP
    if group_by == "day":
        return started.date().isoformat()
    if group_by == "week":
        year, week, _ = started.isocalendar()
        return f"{year}-W{week:02d}"
    return f"{started.year}-{started.month:02d}"


def group_sessions(sessions: Iterable[Dict[str, Any]], group_by: str) -> Dict[str, Dict[str, Any]]:
    groups: Dict[str, Dict[str, Any]] = {}
    for session in sessions:
        group = groups.setdefault(
            session_group_key(session, group_by),
            {"sessionCount": 0, "totalQuantity": 0.0, "totalTimeMinutes": 0.0},
        )
        group["sessionCount"] += 1
        group["totalQuantity"] = round(group["totalQuantity"] + (to_number(session.get("quantity")) or 0.0), 2)
        group["totalTimeMinutes"] = round(
            group["totalTimeMinutes"] + (to_number(session.get("timeSpent")) or 0.0), 2
        )
    return groups


async def query_production_history(params: ProductionHistoryQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = new_intent("production_history", params, PRODUCTION_HISTORY_FILTERS).within(
        "startTime", params.dateFrom, params.dateTo
    )
    if params.minQuantity is not None:
        intent.extra.append(FieldPredicate("quantity", ">=", params.minQuantity))

    executed = await fetch(ctx, intent)
    productivity = session_productivity(executed.items) if params.calculateProductivity else None
    if not params.groupBy:
        return shape(executed, intent.collection, productivity=productivity)

    groups = group_sessions(executed.items, params.groupBy)
    count = len(executed.items)
    payload: Dict[str, Any] = {
        "groups": groups,
        "totalGroups": len(groups),
        "groupedBy": params.groupBy,
        "count": count,
        "isEmpty": count == 0,
        "limitApplied": executed.limit,
    }
    if count == 0:
        payload["warning"] = empty_warning(intent.collection.name)
    if productivity is not None:
        payload["productivity"] = productivity
    if executed.truncated:
        payload["hasMore"] = True
    return payload


# ============================================================================
# RECIPES
# ============================================================================


def ingredient_weight_grams(ingredients: Any) -> float:
    """Total ingredient weight; kg is converted, ml counts as grams, other units as-is."""
    if not isinstance(ingredients, list):
        return 0.0
    total = 0.0
    for ingredient in ingredients:
        if not isinstance(ingredient, dict):
            continue
        quantity = to_number(ingredient.get("quantity")) or 0.0
        unit = str(ingredient.get("unit") or "g").strip().lower()
        total += quantity * 1000 if unit == "kg" else quantity
    return round(total, 2)


async def query_recipes(params: RecipeQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = new_intent("recipes", params, RECIPE_FILTERS).search(params.searchText, "name")
    executed = await fetch(ctx, intent)
    if params.calculateWeight:
        for recipe in executed.items:
            recipe["totalWeight"] = ingredient_weight_grams(recipe.get("ingredients"))
    return shape(executed, intent.collection, params.includeIngredients)


# ============================================================================
# PARTIES / USERS
# ============================================================================


async def get_customers(params: PartyQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = new_intent("customers", params, PARTY_FILTERS).search(params.searchText, "name", "company", "email")
    return await run_simple(ctx, intent)


async def get_suppliers(params: PartyQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = new_intent("suppliers", params, PARTY_FILTERS).search(params.searchText, "name", "company", "email")
    return await run_simple(ctx, intent)


async def get_users(params: UserQuery, ctx: ToolContext) -> Dict[str, Any]:
    intent = new_intent("users", params, USER_FILTERS).search(params.searchText, "displayName", "email")
    return await run_simple(ctx, intent)

