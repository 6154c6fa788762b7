"""
JSON schemas advertised to the reasoning engine, one ToolSpec per tool.

These stay plain data: only the keywords both engines accept (type,
description, enum, items, properties, required). Validation happens against
the pydantic models in ``params``, not against these schemas.
"""
from typing import Any, Dict, List, Optional

from mrp_assistant.services.ai.schema import ToolSpec

LIMIT = {"type": "integer", "description": "Maximum number of records to return (1-500, default 100)"}
DATE_FROM = {"type": "string", "description": "Start date (inclusive), ISO format YYYY-MM-DD"}
DATE_TO = {"type": "string", "description": "End date (inclusive, whole day), ISO format YYYY-MM-DD"}
ORDER_BY = {
    "type": "object",
    "description": "Sort order",
    "properties": {
        "field": {"type": "string", "description": "Field to sort by"},
        "direction": {"type": "string", "enum": ["asc", "desc"]},
    },
    "required": ["field"],
}
FILTERS = {
    "type": "array",
    "description": "Additional field filters, all of which must hold",
    "items": {
        "type": "object",
        "properties": {
            "field": {"type": "string"},
            "operator": {
                "type": "string",
                "enum": ["==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains"],
            },
            "value": {"type": "string", "description": "Value to compare with (numbers and dates as strings)"},
        },
        "required": ["field", "operator", "value"],
    },
}
COLLECTION_NAMES = [
    "production_tasks",
    "orders",
    "purchase_orders",
    "inventory",
    "inventory_batches",
    "inventory_transactions",
    "recipes",
    "invoices",
    "cmr_documents",
    "production_history",
    "customers",
    "suppliers",
    "users",
]


def _string(description: str) -> Dict[str, Any]:
    return {"type": "string", "description": description}


def _boolean(description: str) -> Dict[str, Any]:
    return {"type": "boolean", "description": description}


def _string_list(description: str) -> Dict[str, Any]:
    return {"type": "array", "items": {"type": "string"}, "description": description}


def _object(properties: Dict[str, Any], required: Optional[List[str]] = None) -> Dict[str, Any]:
    schema: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        schema["required"] = required
    return schema


TOOL_SPECS: List[ToolSpec] = [
    ToolSpec(
        name="query_production_tasks",
        description=(
            "Search production tasks (manufacturing orders, MO). Filter by MO number, LOT number, "
            "customer order, product, assignee, status or creation date."
        ),
        parameters=_object({
            "moNumber": _string("Manufacturing order number, e.g. MO00123"),
            "lotNumber": _string("LOT number of the produced batch"),
            "orderId": _string("Customer order id the task belongs to"),
            "productId": _string("Product (recipe) id"),
            "assignedTo": _string("User id of the assignee"),
            "productName": _string("Product name or part of it"),
            "status": _string_list("Task statuses, e.g. planned, in progress, completed"),
            "dateFrom": DATE_FROM,
            "dateTo": DATE_TO,
            "orderBy": ORDER_BY,
            "includeDetails": _boolean("Include materials, consumption and form responses"),
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_orders",
        description="Search customer orders (CO) by number, customer, status or order date.",
        parameters=_object({
            "orderNumber": _string("Customer order number, e.g. CO00042"),
            "customerId": _string("Customer id"),
            "customerName": _string("Customer name or part of it"),
            "status": _string_list("Order statuses, e.g. new, in progress, completed"),
            "dateFrom": DATE_FROM,
            "dateTo": DATE_TO,
            "orderBy": ORDER_BY,
            "includeItems": _boolean("Include order line items"),
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_purchase_orders",
        description="Search purchase orders (PO) by number, supplier, status or order date.",
        parameters=_object({
            "poNumber": _string("Purchase order number, e.g. PO00017"),
            "supplierId": _string("Supplier id"),
            "supplierName": _string("Supplier name or part of it"),
            "status": _string_list("PO statuses, e.g. pending, confirmed, delivered"),
            "dateFrom": DATE_FROM,
            "dateTo": DATE_TO,
            "orderBy": ORDER_BY,
            "includeItems": _boolean("Include PO line items and applied documents"),
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_inventory",
        description=(
            "Search inventory items (materials and products) with stock levels. "
            "Can flag low stock and items expiring within 30 days and compute totals."
        ),
        parameters=_object({
            "materialId": _string("Inventory item id"),
            "categoryId": _string("Category id"),
            "searchText": _string("Name, description or id fragment, e.g. 'cukier 25 kg'"),
            "filters": FILTERS,
            "checkLowStock": _boolean("Only items whose quantity is below minQuantity"),
            "checkExpiring": _boolean("Only items expiring within 30 days"),
            "calculateTotals": _boolean("Add total quantity, value and low-stock count"),
            "orderBy": ORDER_BY,
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_inventory_batches",
        description="Search inventory batches (LOTs) by batch number, purchase order, material, supplier or expiry.",
        parameters=_object({
            "batchNumber": _string("Batch number"),
            "lotNumber": _string("LOT number"),
            "purchaseOrderId": _string("Purchase order id the batch was received on"),
            "materialId": _string("Inventory item id"),
            "supplierId": _string("Supplier id"),
            "materialName": _string("Material name or part of it"),
            "expiresFrom": _string("Earliest expiration date, YYYY-MM-DD"),
            "expiresTo": _string("Latest expiration date, YYYY-MM-DD"),
            "orderBy": ORDER_BY,
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_inventory_transactions",
        description="Search stock movements (issues, receipts, reservations, adjustments, transfers).",
        parameters=_object({
            "itemId": _string("Inventory item id"),
            "taskId": _string("Production task id"),
            "batchId": _string("Batch id"),
            "createdBy": _string("User id who recorded the movement"),
            "itemName": _string("Item name or part of it"),
            "type": _string_list("Movement types, e.g. issue, receive, reservation"),
            "dateFrom": DATE_FROM,
            "dateTo": DATE_TO,
            "calculateTotals": _boolean("Add counts and quantities per movement type"),
            "orderBy": ORDER_BY,
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_recipes",
        description="Search recipes (product formulas) by name or customer; can compute total ingredient weight.",
        parameters=_object({
            "recipeId": _string("Recipe id"),
            "customerId": _string("Customer id the recipe is made for"),
            "searchText": _string("Recipe name or part of it"),
            "includeIngredients": _boolean("Include the full ingredient list"),
            "calculateWeight": _boolean("Add total ingredient weight in grams"),
            "orderBy": ORDER_BY,
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_invoices",
        description="Search invoices by number, customer, status or issue date.",
        parameters=_object({
            "invoiceNumber": _string("Invoice number"),
            "customerId": _string("Customer id"),
            "customerName": _string("Customer name or part of it"),
            "status": _string_list("Invoice statuses, e.g. issued, paid, overdue"),
            "dateFrom": DATE_FROM,
            "dateTo": DATE_TO,
            "includeItems": _boolean("Include invoice line items"),
            "orderBy": ORDER_BY,
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_cmr_documents",
        description="Search CMR consignment notes (road transport documents) by number, status, party or date.",
        parameters=_object({
            "cmrNumber": _string("CMR document number"),
            "orderId": _string("Customer order id linked to the shipment"),
            "partyName": _string("Sender, recipient or carrier name or part of it"),
            "status": _string_list("CMR statuses, e.g. draft, issued, in transit, delivered"),
            "dateFrom": DATE_FROM,
            "dateTo": DATE_TO,
            "includeDetails": _boolean("Include vehicle details"),
            "orderBy": ORDER_BY,
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="query_production_history",
        description=(
            "Search logged production work sessions with productivity figures (quantity per hour). "
            "Can group by user, task, day, week or month."
        ),
        parameters=_object({
            "taskId": _string("Production task id"),
            "userId": _string("User id of the worker"),
            "dateFrom": _string("Earliest session start date (inclusive), YYYY-MM-DD"),
            "dateTo": _string("Latest session start date (inclusive, whole day), YYYY-MM-DD"),
            "minQuantity": {"type": "number", "description": "Only sessions that produced at least this quantity"},
            "calculateProductivity": _boolean("Add totals and quantity per hour (default true)"),
            "groupBy": {"type": "string", "enum": ["user", "task", "day", "week", "month"]},
            "orderBy": ORDER_BY,
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="get_customers",
        description="List or search customers.",
        parameters=_object({
            "id": _string("Customer id"),
            "searchText": _string("Name, company or e-mail fragment"),
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="get_suppliers",
        description="List or search suppliers.",
        parameters=_object({
            "id": _string("Supplier id"),
            "searchText": _string("Name, company or e-mail fragment"),
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="get_users",
        description="List or search system users (employees).",
        parameters=_object({
            "role": _string("Role, e.g. admin or worker"),
            "searchText": _string("Display name or e-mail fragment"),
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="aggregate_data",
        description="Compute count, sum, average, min, max or a grouping over one collection.",
        parameters=_object(
            {
                "collection": {"type": "string", "enum": COLLECTION_NAMES},
                "operation": {"type": "string", "enum": ["count", "sum", "average", "min", "max", "group_by"]},
                "field": _string("Numeric field for sum/average/min/max"),
                "groupBy": _string("Field to group by (group_by operation)"),
                "filters": FILTERS,
                "includeGroupItems": _boolean("Include the records of each group"),
            },
            required=["collection", "operation"],
        ),
    ),
    ToolSpec(
        name="get_count",
        description="Count records in a collection, optionally filtered.",
        parameters=_object(
            {
                "collection": {"type": "string", "enum": COLLECTION_NAMES},
                "filters": FILTERS,
            },
            required=["collection"],
        ),
    ),
    ToolSpec(
        name="get_system_alerts",
        description=(
            "Current operational alerts: low stock, batches expiring within 30 days, delayed production "
            "tasks, customer orders due within 7 days and overdue invoices. Sorted by severity."
        ),
        parameters=_object({
            "alertTypes": {
                "type": "array",
                "items": {
                    "type": "string",
                    "enum": ["low_stock", "expiring_batches", "delayed_mo", "pending_orders", "overdue_invoices"],
                },
                "description": "Alert kinds to include (default: all)",
            },
            "severity": {"type": "string", "enum": ["all", "critical", "warning", "info"]},
            "limit": {"type": "integer", "description": "Maximum number of alerts (default 50)"},
        }),
    ),
    ToolSpec(
        name="calculate_production_costs",
        description="Material cost of production tasks from consumed materials, optionally per product.",
        parameters=_object({
            "taskId": _string("Single production task id"),
            "productName": _string("Product name or part of it"),
            "dateFrom": DATE_FROM,
            "dateTo": DATE_TO,
            "includeBreakdown": _boolean("Include per-material cost lines"),
            "groupByProduct": _boolean("Group costs by product name"),
            "compareWithPrice": _boolean("Compare cost with the task's selling price"),
            "limit": LIMIT,
        }),
    ),
    ToolSpec(
        name="apply_document_to_purchase_order",
        description=(
            "Apply a supplier invoice or delivery note to a purchase order. ALWAYS call with dryRun=true "
            "first, show the planned changes to the user, and only after they confirm call again with "
            "dryRun=false and the returned confirmationToken."
        ),
        parameters=_object(
            {
                "purchaseOrderId": _string("Purchase order id"),
                "documentType": {"type": "string", "enum": ["invoice", "delivery_note"]},
                "documentNumber": _string("Invoice or delivery note number"),
                "items": {
                    "type": "array",
                    "description": "Document lines",
                    "items": _object({
                        "itemId": _string("PO line item id, if known"),
                        "name": _string("Product name as printed on the document"),
                        "quantity": {"type": "number"},
                        "unitPrice": {"type": "number", "description": "Net unit price (invoices)"},
                        "vatRate": {"type": "number", "description": "VAT rate in percent (invoices)"},
                        "unit": _string("Unit of measure"),
                        "lotNumber": _string("LOT number (delivery notes)"),
                        "expiryDate": _string("Expiry date, YYYY-MM-DD (delivery notes)"),
                    }),
                },
                "dryRun": _boolean("Preview only (default true)"),
                "confirmationToken": _string("Token returned by the dry run; required to commit"),
            },
            required=["purchaseOrderId", "documentType", "documentNumber", "items"],
        ),
    ),
]
