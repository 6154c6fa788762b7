"""
apply_document_to_purchase_order: the only tool that writes to the store.

A supplier document is applied to a purchase order in two steps:
1. dry run (the default) matches document lines to PO items and returns the
   planned per-line changes plus a confirmation token;
2. commit (dryRun=false) requires that token and re-plans against the
   current PO before writing.

The token is a hash of (PO id, document type, document number, lines), so it
also serves as the idempotency key: the PO's ``appliedDocuments`` ledger
records it and a replay returns ``alreadyApplied`` without touching the PO.
The write is conditional on the PO's ``updatedAt`` being unchanged.

Line effects:
- delivery_note: ``received`` is incremented by the delivered quantity;
  unit, lotNumber and expiryDate are copied when present
- invoice: quantity, unitPrice and vatRate are set; totalPrice recomputed
"""
import copy
import hashlib
import json
from typing import Any, Dict, List, Optional, Tuple

from mrp_assistant.services.ai.schema import ToolArgumentError, ToolExecutionError
from mrp_assistant.services.query.collections import get_collection
from mrp_assistant.services.query.text_match import normalize_text
from mrp_assistant.services.results.aggregation import to_number
from mrp_assistant.services.store.base import ConflictError
from mrp_assistant.services.tools.context import ToolContext
from mrp_assistant.services.tools.params import ApplyDocumentParams, DocumentLine

DELIVERY_FIELDS = ("unit", "lotNumber", "expiryDate")
INVOICE_FIELDS = ("quantity", "unitPrice", "vatRate")


def confirmation_token(params: ApplyDocumentParams) -> str:
    canonical = json.dumps(
        {
            "purchaseOrderId": params.purchaseOrderId,
            "documentType": params.documentType,
            "documentNumber": params.documentNumber.strip(),
            "items": [line.model_dump(exclude_none=True) for line in params.items],
        },
        sort_keys=True,
        ensure_ascii=False,
    )
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:32]


def _item_name(item: Dict[str, Any]) -> str:
    return normalize_text(item.get("name") or item.get("productName") or "")


def match_item(line: DocumentLine, items: List[Dict[str, Any]]) -> Tuple[Optional[int], Optional[str]]:
    """
    Find the PO item a document line refers to.

    Returns:
        (index into items, how it matched: "id" | "name" | "partial"), or (None, None)
    """
    if line.itemId:
        for index, item in enumerate(items):
            if str(item.get("id")) == line.itemId:
                return index, "id"
    if not line.name:
        return None, None
    wanted = normalize_text(line.name)
    if not wanted:
        return None, None
    for index, item in enumerate(items):
        if _item_name(item) == wanted:
            return index, "name"
    for index, item in enumerate(items):
        name = _item_name(item)
        if name and (wanted in name or name in wanted):
            return index, "partial"
    return None, None


def _line_changes(line: DocumentLine, item: Dict[str, Any], document_type: str) -> Dict[str, Dict[str, Any]]:
    changes: Dict[str, Dict[str, Any]] = {}
    if document_type == "delivery_note":
        if line.quantity is not None:
            received = to_number(item.get("received")) or 0.0
            changes["received"] = {"from": item.get("received"), "to": round(received + line.quantity, 4)}
        fields = DELIVERY_FIELDS
    else:
        fields = INVOICE_FIELDS
    for name in fields:
        value = getattr(line, name)
        if value is not None and value != item.get(name):
            changes[name] = {"from": item.get(name), "to": value}

    if document_type == "invoice":
        quantity = changes.get("quantity", {}).get("to", to_number(item.get("quantity")))
        unit_price = changes.get("unitPrice", {}).get("to", to_number(item.get("unitPrice")))
        if ("quantity" in changes or "unitPrice" in changes) and quantity is not None and unit_price is not None:
            changes["totalPrice"] = {"from": item.get("totalPrice"), "to": round(quantity * unit_price, 2)}
    return changes


def plan_changes(params: ApplyDocumentParams, items: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    plan = []
    for position, line in enumerate(params.items):
        index, matched_by = match_item(line, items)
        entry: Dict[str, Any] = {
            "line": position + 1,
            "documentName": line.name,
            "matchedItemId": None,
            "matchedBy": matched_by,
            "changes": {},
        }
        if index is not None:
            item = items[index]
            entry["itemIndex"] = index
            entry["matchedItemId"] = item.get("id")
            entry["matchedItemName"] = item.get("name") or item.get("productName")
            entry["changes"] = _line_changes(line, item, params.documentType)
        plan.append(entry)
    return plan


def apply_plan(items: List[Dict[str, Any]], plan: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Return a copy of ``items`` with the planned changes applied, in line order."""
    updated = copy.deepcopy(items)
    for entry in plan:
        index = entry.get("itemIndex")
        if index is None:
            continue
        for name, change in entry["changes"].items():
            if name == "received":
                # Two lines may deliver the same item; increments accumulate.
                current = to_number(updated[index].get("received")) or 0.0
                previous = to_number(change["from"]) or 0.0
                updated[index]["received"] = round(current + (change["to"] - previous), 4)
            else:
                updated[index][name] = change["to"]
    return updated


def _public_plan(plan: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [{k: v for k, v in entry.items() if k != "itemIndex"} for entry in plan]


async def apply_document_to_purchase_order(params: ApplyDocumentParams, ctx: ToolContext) -> Dict[str, Any]:
    collection = get_collection("purchase_orders")
    document = await ctx.store.get(collection.store_name, params.purchaseOrderId)
    if document is None:
        raise ToolExecutionError(
            f"Purchase order '{params.purchaseOrderId}' not found",
            details={"purchaseOrderId": params.purchaseOrderId},
        )

    token = confirmation_token(params)
    summary = {
        "purchaseOrderId": params.purchaseOrderId,
        "poNumber": document.get("number"),
        "documentType": params.documentType,
        "documentNumber": params.documentNumber,
    }
    ledger = list(document.get("appliedDocuments") or [])
    if any(entry.get("token") == token for entry in ledger):
        return {**summary, "applied": False, "alreadyApplied": True}

    items = list(document.get("items") or [])
    plan = plan_changes(params, items)
    unmatched = [entry["line"] for entry in plan if entry["matchedItemId"] is None]

    if params.dryRun:
        return {
            **summary,
            "dryRun": True,
            "plannedChanges": _public_plan(plan),
            "unmatchedLines": unmatched,
            "confirmationToken": token,
            "message": "Nothing was changed. Show the planned changes to the user and, after confirmation, "
                       "call again with dryRun=false and this confirmationToken.",
        }

    if params.confirmationToken != token:
        raise ToolArgumentError(
            "confirmationToken is missing or does not match this document; run a dry run first",
            details={"dryRun": False},
        )
    if len(unmatched) == len(plan):
        raise ToolExecutionError("No document line matched an item of this purchase order", details={"lines": unmatched})

    now = ctx.now().isoformat()
    ledger.append({
        "token": token,
        "documentType": params.documentType,
        "documentNumber": params.documentNumber,
        "appliedAt": now,
        "lines": len(plan) - len(unmatched),
    })
    changes = {"items": apply_plan(items, plan), "appliedDocuments": ledger, "updatedAt": now}

    try:
        await ctx.store.update(
            collection.store_name,
            params.purchaseOrderId,
            changes,
            expected={"updatedAt": document.get("updatedAt")},
        )
    except ConflictError as e:
        raise ToolExecutionError(
            "The purchase order was modified while the document was being applied; run the dry run again",
            details={"purchaseOrderId": params.purchaseOrderId},
        ) from e

    ctx.log.info(
        "purchase_order_document_applied",
        purchase_order_id=params.purchaseOrderId,
        document_type=params.documentType,
        matched_lines=len(plan) - len(unmatched),
        unmatched_lines=len(unmatched),
    )
    return {
        **summary,
        "applied": True,
        "alreadyApplied": False,
        "appliedChanges": _public_plan(plan),
        "unmatchedLines": unmatched,
    }
