"""
Tool catalog: a flat name -> definition map.

Each definition pairs the schema advertised to the engine with the pydantic
model its arguments are validated against and the async handler that runs
it.
"""
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Type

from pydantic import BaseModel

from mrp_assistant.services.ai.schema import ToolSpec
from mrp_assistant.services.tools import analytics, params, purchase_orders, query_tools
from mrp_assistant.services.tools.context import ToolContext
from mrp_assistant.services.tools.specs import TOOL_SPECS

Handler = Callable[[Any, ToolContext], Awaitable[Dict[str, Any]]]


@dataclass(frozen=True)
class ToolDefinition:
    spec: ToolSpec
    params_model: Type[BaseModel]
    handler: Handler
    mutating: bool = False

    @property
    def name(self) -> str:
        return self.spec.name


class ToolCatalog:
    """Registered tools, in advertisement order."""

    def __init__(self, definitions: Iterable[ToolDefinition] = ()):
        self._tools: Dict[str, ToolDefinition] = {}
        for definition in definitions:
            self.register(definition)

    def register(self, definition: ToolDefinition) -> None:
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered")
        self._tools[definition.name] = definition

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> List[str]:
        return list(self._tools)

    def specs(self) -> List[ToolSpec]:
        return [definition.spec for definition in self._tools.values()]


# name -> (params model, handler, mutating)
_BINDINGS: Dict[str, tuple] = {
    "query_production_tasks": (params.ProductionTaskQuery, query_tools.query_production_tasks, False),
    "query_orders": (params.CustomerOrderQuery, query_tools.query_orders, False),
    "query_purchase_orders": (params.PurchaseOrderQuery, query_tools.query_purchase_orders, False),
    "query_inventory": (params.InventoryQuery, query_tools.query_inventory, False),
    "query_inventory_batches": (params.InventoryBatchQuery, query_tools.query_inventory_batches, False),
    "query_inventory_transactions": (
        params.InventoryTransactionQuery,
        query_tools.query_inventory_transactions,
        False,
    ),
    "query_recipes": (params.RecipeQuery, query_tools.query_recipes, False),
    "query_invoices": (params.InvoiceQuery, query_tools.query_invoices, False),
    "query_cmr_documents": (params.CmrDocumentQuery, query_tools.query_cmr_documents, False),
    "query_production_history": (
        params.ProductionHistoryQuery,
        query_tools.query_production_history,
        False,
    ),
    "get_customers": (params.PartyQuery, query_tools.get_customers, False),
    "get_suppliers": (params.PartyQuery, query_tools.get_suppliers, False),
    "get_users": (params.UserQuery, query_tools.get_users, False),
    "aggregate_data": (params.AggregateParams, analytics.aggregate_data, False),
    "get_count": (params.CountParams, analytics.get_count, False),
    "get_system_alerts": (params.SystemAlertsParams, analytics.get_system_alerts, False),
    "calculate_production_costs": (params.ProductionCostParams, analytics.calculate_production_costs, False),
    "apply_document_to_purchase_order": (
        params.ApplyDocumentParams,
        purchase_orders.apply_document_to_purchase_order,
        True,
    ),
}


def build_default_catalog() -> ToolCatalog:
    definitions = []
    for spec in TOOL_SPECS:
        params_model, handler, mutating = _BINDINGS[spec.name]
        definitions.append(ToolDefinition(spec=spec, params_model=params_model, handler=handler, mutating=mutating))
    return ToolCatalog(definitions)
