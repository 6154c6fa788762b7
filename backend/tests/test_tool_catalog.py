"""
Tests for the tool catalog, the advertised schemas and the system prompt.
"""
from datetime import datetime, timezone

import pytest

from mrp_assistant.services.ai.prompts import build_system_prompt
from mrp_assistant.services.tools.catalog import ToolCatalog, build_default_catalog
from mrp_assistant.services.tools.specs import TOOL_SPECS

EXPECTED_TOOLS = [
    "query_production_tasks",
    "query_orders",
    "query_purchase_orders",
    "query_inventory",
    "query_inventory_batches",
    "query_inventory_transactions",
    "query_recipes",
    "query_invoices",
    "query_cmr_documents",
    "query_production_history",
    "get_customers",
    "get_suppliers",
    "get_users",
    "aggregate_data",
    "get_count",
    "get_system_alerts",
    "calculate_production_costs",
    "apply_document_to_purchase_order",
]


def _walk_objects(schema):
    if isinstance(schema, dict):
        if schema.get("type") == "object":
            yield schema
        for value in schema.values():
            yield from _walk_objects(value)
    elif isinstance(schema, list):
        for item in schema:
            yield from _walk_objects(item)


def test_default_catalog_matches_specs():
    """Every advertised spec is bound to a handler, in advertisement order."""
    catalog = build_default_catalog()

    assert catalog.names == EXPECTED_TOOLS
    assert [spec.name for spec in catalog.specs()] == [spec.name for spec in TOOL_SPECS]
    assert len(catalog) == 18


def test_only_the_document_tool_mutates():
    """All tools but apply_document_to_purchase_order are read-only."""
    catalog = build_default_catalog()

    mutating = [name for name in catalog.names if catalog.get(name).mutating]
    assert mutating == ["apply_document_to_purchase_order"]


def test_duplicate_registration_is_rejected():
    """Tool names are unique within a catalog."""
    catalog = build_default_catalog()
    definition = catalog.get("get_count")

    with pytest.raises(ValueError):
        catalog.register(definition)
    with pytest.raises(ValueError):
        ToolCatalog([definition, definition])


@pytest.mark.parametrize("spec", TOOL_SPECS, ids=lambda spec: spec.name)
def test_schemas_use_portable_keywords(spec):
    """Schemas avoid keywords one of the engines rejects."""
    assert spec.parameters["type"] == "object"
    for obj in _walk_objects(spec.parameters):
        assert "additionalProperties" not in obj
        assert set(obj.get("required", [])) <= set(obj.get("properties", {}))
    assert spec.description


def test_system_prompt_includes_date_and_stored_values(normalizer):
    """The prompt carries today's date and the canonical enum values."""
    prompt = build_system_prompt(now=datetime(2024, 6, 15, tzinfo=timezone.utc), normalizer=normalizer)

    assert "Today is 2024-06-15." in prompt
    assert "production_tasks.status: " in prompt
    assert "W trakcie" in prompt
    assert "dryRun=true" in prompt
