"""
Analytical tools: aggregations, counts, system alerts and production costs.

Scans are bounded by the over-fetch cap; results computed from a capped
scan say so (``scanLimitReached``) instead of silently under-reporting.
"""
import math
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from mrp_assistant.services.ai.schema import ToolArgumentError, ToolExecutionError
from mrp_assistant.services.query.collections import get_collection
from mrp_assistant.services.query.executor import execute_query
from mrp_assistant.services.query.translator import MAX_LIMIT, QueryIntent
from mrp_assistant.services.results.aggregation import aggregate, to_number
from mrp_assistant.services.results.shaper import empty_warning
from mrp_assistant.services.store.records import ProductionTaskRecord
from mrp_assistant.services.store.timestamps import to_datetime
from mrp_assistant.services.tools.context import ToolContext
from mrp_assistant.services.tools.params import (
    AggregateParams,
    CountParams,
    ProductionCostParams,
    SystemAlertsParams,
)
from mrp_assistant.services.tools.query_tools import LowStockPredicate, fetch, new_intent

SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}

EXPIRING_WITHIN_DAYS = 30
PENDING_ORDER_WITHIN_DAYS = 7
ACTIVE_TASK_STATUSES = ["planned", "in progress"]
# Invoices that can no longer be overdue.
SETTLED_INVOICE_STATUSES = ["paid", "cancelled", "draft"]
SECONDS_PER_DAY = 86400.0


def _collection_or_error(name: str):
    try:
        return get_collection(name)
    except KeyError as e:
        raise ToolArgumentError(str(e.args[0]), details={"collection": name}) from e


def _days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


# ============================================================================
# AGGREGATION / COUNT
# ============================================================================


async def aggregate_data(params: AggregateParams, ctx: ToolContext) -> Dict[str, Any]:
    collection = _collection_or_error(params.collection)
    intent = QueryIntent(collection, limit=MAX_LIMIT).add_filters(params.filters)
    executed = await fetch(ctx, intent)

    try:
        value = aggregate(executed.items, params.operation, params.field, params.groupBy)
    except ValueError as e:
        raise ToolArgumentError(str(e)) from e

    if params.operation == "group_by" and not params.includeGroupItems:
        value = {key: {"count": group["count"]} for key, group in value.items()}

    count = len(executed.items)
    payload: Dict[str, Any] = {
        "collection": collection.name,
        "operation": params.operation,
        "field": params.field,
        "groupBy": params.groupBy,
        "result": value,
        "count": count,
        "isEmpty": count == 0,
    }
    if count == 0:
        payload["warning"] = empty_warning(collection.name)
    if executed.fetched >= MAX_LIMIT:
        payload["scanLimitReached"] = True
    return {k: v for k, v in payload.items() if v is not None}


async def get_count(params: CountParams, ctx: ToolContext) -> Dict[str, Any]:
    """
    Exact store count when every filter is store-evaluable; otherwise count a
    capped scan and report the count as a lower bound.
    """
    collection = _collection_or_error(params.collection)
    intent = QueryIntent(collection, limit=MAX_LIMIT).add_filters(params.filters)
    request = ctx.translator.translate(intent)

    if not request.client_filters:
        count = await ctx.store.count(collection.store_name, request.server_filters)
        exact = True
    else:
        executed = await execute_query(ctx.store, request, ctx.log)
        count = executed.matched
        exact = executed.fetched < request.fetch_limit

    payload: Dict[str, Any] = {
        "collection": collection.name,
        "count": count,
        "isEmpty": count == 0,
        "exact": exact,
    }
    if count == 0:
        payload["warning"] = empty_warning(collection.name)
    return payload


# ============================================================================
# SYSTEM ALERTS
# ============================================================================


def _low_stock_alert(item: Dict[str, Any], now: datetime) -> Optional[Dict[str, Any]]:
    quantity = to_number(item.get("quantity")) or 0.0
    minimum = to_number(item.get("minQuantity")) or 0.0
    return {
        "type": "low_stock",
        "severity": "critical" if quantity == 0 else "warning",
        "title": f"Low stock: {item.get('name')}",
        "itemId": item.get("id"),
        "itemName": item.get("name"),
        "currentQuantity": quantity,
        "minQuantity": minimum,
        "deficit": round(minimum - quantity, 2),
    }


def _expiring_batch_alert(batch: Dict[str, Any], now: datetime) -> Optional[Dict[str, Any]]:
    expires = to_datetime(batch.get("expirationDate"))
    if expires is None:
        return None
    days_left = _days(expires - now)
    severity = "critical" if days_left <= 7 else "warning" if days_left <= 14 else "info"
    return {
        "type": "expiring_batches",
        "severity": severity,
        "title": f"Batch expiring: {batch.get('batchNumber')}",
        "batchId": batch.get("id"),
        "batchNumber": batch.get("batchNumber"),
        "materialName": batch.get("materialName") or batch.get("materialIdName"),
        "expirationDate": batch.get("expirationDate"),
        "daysLeft": days_left,
    }


def _delayed_task_alert(task: Dict[str, Any], now: datetime) -> Optional[Dict[str, Any]]:
    planned_end = to_datetime(task.get("plannedEndDate"))
    if planned_end is None or planned_end >= now:
        return None
    days_overdue = _days(now - planned_end)
    return {
        "type": "delayed_mo",
        "severity": "critical" if days_overdue > 7 else "warning",
        "title": f"Delayed MO: {task.get('moNumber')}",
        "taskId": task.get("id"),
        "moNumber": task.get("moNumber"),
        "productName": task.get("productName"),
        "plannedEndDate": task.get("plannedEndDate"),
        "daysOverdue": days_overdue,
        "status": task.get("status"),
    }


def _pending_order_alert(order: Dict[str, Any], now: datetime) -> Optional[Dict[str, Any]]:
    delivery = to_datetime(order.get("deliveryDate"))
    if delivery is None:
        return None
    days_until = _days(delivery - now)
    return {
        "type": "pending_orders",
        "severity": "critical" if days_until <= 2 else "warning",
        "title": f"Pending CO: {order.get('orderNumber')}",
        "orderId": order.get("id"),
        "orderNumber": order.get("orderNumber"),
        "customerName": order.get("customerName"),
        "deliveryDate": order.get("deliveryDate"),
        "daysUntilDelivery": days_until,
    }


def _overdue_invoice_alert(invoice: Dict[str, Any], now: datetime) -> Optional[Dict[str, Any]]:
    due = to_datetime(invoice.get("dueDate"))
    if due is None or due >= now:
        return None
    days_overdue = _days(now - due)
    return {
        "type": "overdue_invoices",
        "severity": "critical" if days_overdue > 30 else "warning",
        "title": f"Overdue invoice: {invoice.get('number')}",
        "invoiceId": invoice.get("id"),
        "invoiceNumber": invoice.get("number"),
        "customerName": invoice.get("customerName"),
        "dueDate": invoice.get("dueDate"),
        "daysOverdue": days_overdue,
        "amount": invoice.get("totalAmount"),
    }


def _alert_sources(now: datetime) -> Dict[str, tuple]:
    """alert type -> (intent, record -> alert or None)."""
    low_stock = new_intent("inventory")
    low_stock.extra.append(LowStockPredicate())

    expiring = new_intent("inventory_batches").within(
        "expirationDate", now, now + timedelta(days=EXPIRING_WITHIN_DAYS)
    )
    delayed = new_intent("production_tasks").enum("status", ACTIVE_TASK_STATUSES).within(
        "plannedEndDate", None, now
    )
    pending = new_intent("orders").enum("status", ["pending"]).within(
        "deliveryDate", None, now + timedelta(days=PENDING_ORDER_WITHIN_DAYS)
    )
    overdue = new_intent("invoices").within("dueDate", None, now).exclude("status", SETTLED_INVOICE_STATUSES)

    return {
        "low_stock": (low_stock, _low_stock_alert),
        "expiring_batches": (expiring, _expiring_batch_alert),
        "delayed_mo": (delayed, _delayed_task_alert),
        "pending_orders": (pending, _pending_order_alert),
        "overdue_invoices": (overdue, _overdue_invoice_alert),
    }


async def get_system_alerts(params: SystemAlertsParams, ctx: ToolContext) -> Dict[str, Any]:
    now = ctx.now()
    sources = _alert_sources(now)
    alerts: List[Dict[str, Any]] = []

    for alert_type in dict.fromkeys(params.alertTypes):
        intent, build = sources[alert_type]
        intent.limit = MAX_LIMIT
        intent.order_by = None
        executed = await fetch(ctx, intent)
        for record in executed.items:
            alert = build(record, now)
            if alert is None:
                continue
            if params.severity == "all" or alert["severity"] == params.severity:
                alerts.append(alert)

    alerts.sort(key=lambda a: SEVERITY_ORDER[a["severity"]])
    limited = alerts[:params.limit]
    stats = {
        "total": len(alerts),
        "bySeverity": {level: sum(1 for a in alerts if a["severity"] == level) for level in SEVERITY_ORDER},
        "byType": {t: sum(1 for a in alerts if a["type"] == t) for t in dict.fromkeys(params.alertTypes)},
    }
    payload = {
        "alerts": limited,
        "count": len(limited),
        "isEmpty": not limited,
        "totalAlerts": len(alerts),
        "stats": stats,
        "limitApplied": params.limit,
    }
    if not limited:
        payload["warning"] = empty_warning("alerts")
    return payload


# ============================================================================
# PRODUCTION COSTS
# ============================================================================


def analyze_task_costs(task: Dict[str, Any], include_breakdown: bool, compare_with_price: bool) -> Dict[str, Any]:
    """Material cost of one task: sum of quantity * unitPrice over consumed materials."""
    consumed = task.get("consumedMaterials")
    consumed = [m for m in consumed if isinstance(m, dict)] if isinstance(consumed, list) else []
    total = 0.0
    breakdown = []
    for material in consumed:
        quantity = to_number(material.get("quantity")) or 0.0
        unit_price = to_number(material.get("unitPrice")) or 0.0
        cost = quantity * unit_price
        total += cost
        if include_breakdown:
            breakdown.append({
                "materialName": material.get("materialName") or material.get("name"),
                "quantity": quantity,
                "unitPrice": unit_price,
                "totalCost": round(cost, 2),
            })

    result: Dict[str, Any] = {"totalCost": round(total, 2), "materialCount": len(consumed)}
    if include_breakdown:
        result["breakdown"] = breakdown

    unit_price = to_number(task.get("unitPrice"))
    if compare_with_price and unit_price:
        final_quantity = to_number(task.get("finalQuantity")) or 0.0
        revenue = final_quantity * unit_price
        profit = revenue - total
        result["priceAnalysis"] = {
            "unitPrice": unit_price,
            "totalRevenue": round(revenue, 2),
            "totalProfit": round(profit, 2),
            "marginPercent": round(profit / revenue * 100, 2) if revenue > 0 else 0,
            "costPerUnit": round(total / final_quantity, 2) if final_quantity > 0 else 0,
        }
    return result


def _task_summary(task: Dict[str, Any], params: ProductionCostParams) -> Dict[str, Any]:
    return {
        "id": task.get("id"),
        "moNumber": task.get("moNumber"),
        "productName": task.get("productName"),
        "status": task.get("status"),
        "finalQuantity": task.get("finalQuantity"),
        **analyze_task_costs(task, params.includeBreakdown, params.compareWithPrice),
    }


def group_costs_by_product(tasks: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    groups: Dict[str, Dict[str, Any]] = {}
    for task in tasks:
        group = groups.setdefault(
            task.get("productName") or "Unknown",
            {"taskCount": 0, "totalCost": 0.0, "totalQuantity": 0.0},
        )
        group["taskCount"] += 1
        group["totalCost"] += task.get("totalCost") or 0.0
        group["totalQuantity"] += to_number(task.get("finalQuantity")) or 0.0
    for group in groups.values():
        group["totalCost"] = round(group["totalCost"], 2)
        group["avgCostPerUnit"] = (
            round(group["totalCost"] / group["totalQuantity"], 2) if group["totalQuantity"] > 0 else 0
        )
    return groups


async def calculate_production_costs(params: ProductionCostParams, ctx: ToolContext) -> Dict[str, Any]:
    collection = get_collection("production_tasks")

    if params.taskId:
        document = await ctx.store.get(collection.store_name, params.taskId)
        if document is None:
            raise ToolExecutionError(f"Production task '{params.taskId}' not found", details={"taskId": params.taskId})
        task = ProductionTaskRecord.from_document(document)
        return {"tasks": [_task_summary(task, params)], "count": 1, "isEmpty": False}

    intent = (
        QueryIntent(collection, limit=params.limit)
        .search(params.productName, "productName")
        .within("createdAt", params.dateFrom, params.dateTo)
    )
    executed = await fetch(ctx, intent)
    tasks = [_task_summary(task, params) for task in executed.items]

    payload: Dict[str, Any] = {"count": len(tasks), "isEmpty": not tasks, "limitApplied": executed.limit}
    if not tasks:
        payload["warning"] = empty_warning(collection.name)
    if params.groupByProduct:
        groups = group_costs_by_product(tasks)
        payload.update({"groups": groups, "totalGroups": len(groups)})
    else:
        payload["tasks"] = tasks
    return payload

