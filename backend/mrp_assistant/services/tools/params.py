"""
Typed parameter models, one per tool.

The engine's JSON arguments are validated against these at the dispatch
boundary. Unknown keys are ignored; the engine often adds harmless extras.
"""
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

FilterOperator = Literal["==", "!=", "<", "<=", ">", ">=", "in", "not-in", "array-contains"]


class ToolParams(BaseModel):
    model_config = ConfigDict(extra="ignore")


def _as_list(value: Any) -> Any:
    if value is None or value == "":
        return None
    if isinstance(value, str):
        return [value]
    return value


class FilterParam(ToolParams):
    field: str = Field(..., min_length=1)
    operator: FilterOperator = "=="
    value: Any = None

    @field_validator("value")
    @classmethod
    def _in_requires_list(cls, value: Any, info: ValidationInfo) -> Any:
        if info.data.get("operator") in ("in", "not-in") and not isinstance(value, list):
            return [value]
        return value


class OrderParam(ToolParams):
    field: str
    direction: Literal["asc", "desc"] = "desc"


class QueryParams(ToolParams):
    limit: Optional[int] = Field(None, description="Maximum records to return (1-500, default 100)")
    orderBy: Optional[OrderParam] = None


class ProductionTaskQuery(QueryParams):
    moNumber: Optional[str] = None
    lotNumber: Optional[str] = None
    orderId: Optional[str] = None
    productId: Optional[str] = None
    assignedTo: Optional[str] = None
    productName: Optional[str] = None
    status: Optional[List[str]] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    includeDetails: bool = False

    _status_list = field_validator("status", mode="before")(_as_list)


class CustomerOrderQuery(QueryParams):
    orderNumber: Optional[str] = None
    customerId: Optional[str] = None
    customerName: Optional[str] = None
    status: Optional[List[str]] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    includeItems: bool = False

    _status_list = field_validator("status", mode="before")(_as_list)


class PurchaseOrderQuery(QueryParams):
    poNumber: Optional[str] = None
    supplierId: Optional[str] = None
    supplierName: Optional[str] = None
    status: Optional[List[str]] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    includeItems: bool = False

    _status_list = field_validator("status", mode="before")(_as_list)


class InventoryQuery(QueryParams):
    materialId: Optional[str] = None
    categoryId: Optional[str] = None
    searchText: Optional[str] = None
    filters: List[FilterParam] = Field(default_factory=list)
    checkLowStock: bool = False
    checkExpiring: bool = False
    calculateTotals: bool = True


class InventoryBatchQuery(QueryParams):
    batchNumber: Optional[str] = None
    lotNumber: Optional[str] = None
    purchaseOrderId: Optional[str] = None
    materialId: Optional[str] = None
    supplierId: Optional[str] = None
    materialName: Optional[str] = None
    expiresFrom: Optional[str] = None
    expiresTo: Optional[str] = None


class InventoryTransactionQuery(QueryParams):
    itemId: Optional[str] = None
    taskId: Optional[str] = None
    batchId: Optional[str] = None
    createdBy: Optional[str] = None
    itemName: Optional[str] = None
    type: Optional[List[str]] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    calculateTotals: bool = True

    _type_list = field_validator("type", mode="before")(_as_list)


class RecipeQuery(QueryParams):
    recipeId: Optional[str] = None
    customerId: Optional[str] = None
    searchText: Optional[str] = None
    includeIngredients: bool = False
    calculateWeight: bool = False


class InvoiceQuery(QueryParams):
    invoiceNumber: Optional[str] = None
    customerId: Optional[str] = None
    customerName: Optional[str] = None
    status: Optional[List[str]] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    includeItems: bool = False

    _status_list = field_validator("status", mode="before")(_as_list)


class CmrDocumentQuery(QueryParams):
    cmrNumber: Optional[str] = None
    orderId: Optional[str] = None
    partyName: Optional[str] = None
    status: Optional[List[str]] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    includeDetails: bool = False

    _status_list = field_validator("status", mode="before")(_as_list)


class ProductionHistoryQuery(QueryParams):
    taskId: Optional[str] = None
    userId: Optional[str] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    minQuantity: Optional[float] = Field(None, ge=0)
    calculateProductivity: bool = True
    groupBy: Optional[Literal["user", "task", "day", "week", "month"]] = None


class PartyQuery(QueryParams):
    id: Optional[str] = None
    searchText: Optional[str] = None


class UserQuery(QueryParams):
    role: Optional[str] = None
    searchText: Optional[str] = None


class AggregateParams(ToolParams):
    collection: str
    operation: Literal["count", "sum", "average", "min", "max", "group_by"]
    field: Optional[str] = None
    groupBy: Optional[str] = None
    filters: List[FilterParam] = Field(default_factory=list)
    includeGroupItems: bool = False


class CountParams(ToolParams):
    collection: str
    filters: List[FilterParam] = Field(default_factory=list)


AlertType = Literal["low_stock", "expiring_batches", "delayed_mo", "pending_orders", "overdue_invoices"]


class SystemAlertsParams(ToolParams):
    alertTypes: List[AlertType] = Field(
        default_factory=lambda: ["low_stock", "expiring_batches", "delayed_mo", "pending_orders", "overdue_invoices"]
    )
    severity: Literal["all", "critical", "warning", "info"] = "all"
    limit: int = Field(50, ge=1, le=500)

    _types_list = field_validator("alertTypes", mode="before")(_as_list)


class ProductionCostParams(ToolParams):
    taskId: Optional[str] = None
    productName: Optional[str] = None
    dateFrom: Optional[str] = None
    dateTo: Optional[str] = None
    includeBreakdown: bool = False
    groupByProduct: bool = False
    compareWithPrice: bool = False
    limit: Optional[int] = None


class DocumentLine(ToolParams):
    itemId: Optional[str] = None
    name: Optional[str] = None
    quantity: Optional[float] = Field(None, ge=0)
    unitPrice: Optional[float] = Field(None, ge=0)
    vatRate: Optional[float] = Field(None, ge=0)
    unit: Optional[str] = None
    lotNumber: Optional[str] = None
    expiryDate: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if isinstance(value, str) and value.strip() else None


class ApplyDocumentParams(ToolParams):
    purchaseOrderId: str = Field(..., min_length=1)
    documentType: Literal["invoice", "delivery_note"]
    documentNumber: str = Field(..., min_length=1)
    items: List[DocumentLine] = Field(..., min_length=1)
    dryRun: bool = True
    confirmationToken: Optional[str] = None
