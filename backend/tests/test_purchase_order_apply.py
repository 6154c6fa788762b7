"""
Tests for apply_document_to_purchase_order: dry run, confirmation, idempotent
replay and the conditional write.
"""
import pytest

from fakes import NOW
from mrp_assistant.services.ai.schema import ToolArgumentError, ToolExecutionError
from mrp_assistant.services.tools.params import ApplyDocumentParams, DocumentLine
from mrp_assistant.services.tools.purchase_orders import (
    apply_document_to_purchase_order,
    confirmation_token,
    match_item,
)

PO_ITEMS = [
    {"id": "i1", "name": "Pomidory", "quantity": 100},
    {"id": "i2", "name": "Sól kamienna", "quantity": 10},
]


def _delivery(**overrides):
    values = {
        "purchaseOrderId": "po1",
        "documentType": "delivery_note",
        "documentNumber": "WZ/2024/17",
        "items": [{"name": "pomidory", "quantity": 40, "lotNumber": "L-A"}],
    }
    values.update(overrides)
    return ApplyDocumentParams(**values)


def _stored_po(store):
    return store.documents["purchaseOrders"]["po1"]


# ============================================================================
# MATCHING / TOKEN
# ============================================================================


def test_match_item_prefers_id_then_exact_then_partial_name():
    """Lines match by item id, then normalized name, then name containment."""
    assert match_item(DocumentLine(itemId="i2", name="whatever"), PO_ITEMS) == (1, "id")
    assert match_item(DocumentLine(name="POMIDORY"), PO_ITEMS) == (0, "name")
    assert match_item(DocumentLine(name="sól"), PO_ITEMS) == (1, "partial")
    assert match_item(DocumentLine(name="Ogórki"), PO_ITEMS) == (None, None)
    assert match_item(DocumentLine(name="   "), PO_ITEMS) == (None, None)


def test_confirmation_token_identifies_document_content():
    """The token ignores dryRun/token fields and whitespace, but not line content."""
    token = confirmation_token(_delivery())

    assert len(token) == 32
    assert confirmation_token(_delivery(dryRun=False, confirmationToken="x")) == token
    assert confirmation_token(_delivery(documentNumber="  WZ/2024/17 ")) == token
    assert confirmation_token(_delivery(items=[{"name": "pomidory", "quantity": 41, "lotNumber": "L-A"}])) != token
    assert confirmation_token(_delivery(documentType="invoice")) != token


# ============================================================================
# DRY RUN
# ============================================================================


@pytest.mark.asyncio
async def test_dry_run_plans_without_writing(ctx, store):
    """The default dry run returns planned changes and a token, and writes nothing."""
    result = await apply_document_to_purchase_order(_delivery(), ctx)

    assert result["dryRun"] is True
    assert result["poNumber"] == "PO-100"
    assert result["unmatchedLines"] == []
    assert result["confirmationToken"] == confirmation_token(_delivery())
    planned = result["plannedChanges"][0]
    assert planned["matchedItemId"] == "i1"
    assert planned["matchedBy"] == "name"
    assert planned["changes"] == {
        "received": {"from": 0, "to": 40.0},
        "lotNumber": {"from": None, "to": "L-A"},
    }
    assert "itemIndex" not in planned
    assert store.updates == []


@pytest.mark.asyncio
async def test_dry_run_reports_unmatched_lines(ctx):
    """Lines that match no PO item are listed by position."""
    params = _delivery(items=[{"name": "Pomidory", "quantity": 5}, {"name": "Ogórki", "quantity": 3}])

    result = await apply_document_to_purchase_order(params, ctx)

    assert result["unmatchedLines"] == [2]
    assert result["plannedChanges"][1]["matchedItemId"] is None


@pytest.mark.asyncio
async def test_invoice_sets_prices_and_recomputes_total(ctx):
    """Invoice lines set quantity, price and VAT; totalPrice follows."""
    params = _delivery(
        documentType="invoice",
        documentNumber="FV/77",
        items=[{"name": "sól", "quantity": 12, "unitPrice": 1.8, "vatRate": 8}],
    )

    result = await apply_document_to_purchase_order(params, ctx)

    changes = result["plannedChanges"][0]["changes"]
    assert result["plannedChanges"][0]["matchedBy"] == "partial"
    assert changes["quantity"] == {"from": 10, "to": 12.0}
    assert changes["unitPrice"] == {"from": 1.5, "to": 1.8}
    assert changes["vatRate"] == {"from": None, "to": 8.0}
    assert changes["totalPrice"] == {"from": 15.0, "to": 21.6}
    assert "received" not in changes


# ============================================================================
# COMMIT
# ============================================================================


@pytest.mark.asyncio
async def test_commit_with_token_applies_and_records_ledger(ctx, store):
    """A confirmed commit updates items, the ledger and updatedAt."""
    token = (await apply_document_to_purchase_order(_delivery(), ctx))["confirmationToken"]

    result = await apply_document_to_purchase_order(_delivery(dryRun=False, confirmationToken=token), ctx)

    assert result["applied"] is True
    assert result["alreadyApplied"] is False
    po = _stored_po(store)
    assert po["items"][0]["received"] == 40.0
    assert po["items"][0]["lotNumber"] == "L-A"
    assert po["items"][1] == {
        "id": "i2",
        "name": "Sól kamienna",
        "quantity": 10,
        "unitPrice": 1.5,
        "totalPrice": 15.0,
        "unit": "kg",
    }
    assert po["appliedDocuments"][0]["token"] == token
    assert po["appliedDocuments"][0]["documentNumber"] == "WZ/2024/17"
    assert po["updatedAt"] == NOW.isoformat()
    assert len(store.updates) == 1


@pytest.mark.asyncio
async def test_replay_is_idempotent(ctx, store):
    """Applying the same document twice changes the PO once."""
    params = _delivery(dryRun=False, confirmationToken=confirmation_token(_delivery()))

    await apply_document_to_purchase_order(params, ctx)
    replay = await apply_document_to_purchase_order(params, ctx)
    dry_replay = await apply_document_to_purchase_order(_delivery(), ctx)

    assert replay["alreadyApplied"] is True
    assert replay["applied"] is False
    assert dry_replay["alreadyApplied"] is True
    assert len(store.updates) == 1
    assert _stored_po(store)["items"][0]["received"] == 40.0


@pytest.mark.asyncio
async def test_two_lines_for_one_item_accumulate(ctx, store):
    """Deliveries of the same item on two lines add up."""
    lines = [{"itemId": "i1", "quantity": 10}, {"name": "Pomidory", "quantity": 5}]
    token = confirmation_token(_delivery(items=lines))

    await apply_document_to_purchase_order(_delivery(items=lines, dryRun=False, confirmationToken=token), ctx)

    assert _stored_po(store)["items"][0]["received"] == 15.0


@pytest.mark.asyncio
@pytest.mark.parametrize("token", [None, "0" * 32])
async def test_commit_requires_matching_token(ctx, store, token):
    """Without the dry-run token nothing is written."""
    with pytest.raises(ToolArgumentError):
        await apply_document_to_purchase_order(_delivery(dryRun=False, confirmationToken=token), ctx)

    assert store.updates == []


@pytest.mark.asyncio
async def test_commit_with_no_matching_line_fails(ctx, store):
    """A document that matches nothing is not recorded as applied."""
    params = _delivery(items=[{"name": "Ogórki", "quantity": 3}])
    params = params.model_copy(update={"dryRun": False, "confirmationToken": confirmation_token(params)})

    with pytest.raises(ToolExecutionError):
        await apply_document_to_purchase_order(params, ctx)

    assert "appliedDocuments" not in _stored_po(store)


@pytest.mark.asyncio
async def test_concurrent_modification_is_rejected(ctx, store, monkeypatch):
    """If the PO changes between read and write, the conditional update fails."""
    original_get = store.get

    async def racing_get(collection, document_id):
        document = await original_get(collection, document_id)
        store.documents[collection][document_id]["updatedAt"] = "2024-06-15T11:59:00Z"
        return document

    monkeypatch.setattr(store, "get", racing_get)
    params = _delivery(dryRun=False, confirmationToken=confirmation_token(_delivery()))

    with pytest.raises(ToolExecutionError) as excinfo:
        await apply_document_to_purchase_order(params, ctx)

    assert "modified" in str(excinfo.value)
    assert _stored_po(store)["items"][0]["received"] == 0


@pytest.mark.asyncio
async def test_unknown_purchase_order(ctx):
    """A missing PO is an execution error."""
    with pytest.raises(ToolExecutionError):
        await apply_document_to_purchase_order(_delivery(purchaseOrderId="po404"), ctx)
