"""
Per-collection record models.

Stored documents are schemaless; these models pin down the fields the
assistant reasons about, keep every other field (``extra="allow"``), and
decode timestamp fields to ISO strings on the way in.

Numeric and nested fields are lax: a value that does not parse is kept as
stored, so one malformed document never fails a whole query.
"""
from typing import Annotated, Any, ClassVar, Dict, Optional, Tuple

from pydantic import BaseModel, BeforeValidator, ConfigDict, model_validator

from mrp_assistant.services.store.timestamps import to_iso


def _number_or_raw(value: Any) -> Any:
    """Numbers and numeric strings ("12,5" included) become floats; anything else is kept."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.replace(",", ".").strip())
        except ValueError:
            return value
    return value


Number = Annotated[Any, BeforeValidator(_number_or_raw)]
# Nested arrays/maps are passed through as stored.
Nested = Any


class StoreRecord(BaseModel):
    model_config = ConfigDict(extra="allow", coerce_numbers_to_str=True)

    timestamp_fields: ClassVar[Tuple[str, ...]] = ("createdAt", "updatedAt")
    # Fields that must never leave the store layer.
    private_fields: ClassVar[Tuple[str, ...]] = ()

    id: str
    createdAt: Optional[str] = None
    updatedAt: Optional[str] = None

    @model_validator(mode="before")
    @classmethod
    def _decode_timestamps(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        decoded = {k: v for k, v in data.items() if k not in cls.private_fields}
        for name in cls.timestamp_fields:
            if decoded.get(name) is not None:
                decoded[name] = to_iso(decoded[name])
        if "id" in decoded and decoded["id"] is not None:
            decoded["id"] = str(decoded["id"])
        return decoded

    @classmethod
    def from_document(cls, document: Dict[str, Any]) -> Dict[str, Any]:
        """Validate a raw store document and return it as a plain dict."""
        return cls.model_validate(document).model_dump(exclude_unset=True)


class ProductionTaskRecord(StoreRecord):
    timestamp_fields = ("createdAt", "updatedAt", "scheduledDate", "startDate", "endDate", "plannedEndDate")

    moNumber: Optional[str] = None
    lotNumber: Optional[str] = None
    productName: Optional[str] = None
    productId: Optional[str] = None
    orderId: Optional[str] = None
    status: Optional[str] = None
    quantity: Number = None
    finalQuantity: Number = None
    unit: Optional[str] = None
    unitPrice: Number = None
    assignedTo: Optional[str] = None
    createdBy: Optional[str] = None
    scheduledDate: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    plannedEndDate: Optional[str] = None
    materials: Nested = None
    consumedMaterials: Nested = None
    formResponses: Nested = None


class CustomerOrderRecord(StoreRecord):
    timestamp_fields = ("createdAt", "updatedAt", "orderDate", "deliveryDate")

    orderNumber: Optional[str] = None
    customerId: Optional[str] = None
    customerName: Optional[str] = None
    status: Optional[str] = None
    totalValue: Number = None
    orderDate: Optional[str] = None
    deliveryDate: Optional[str] = None
    items: Nested = None


class PurchaseOrderRecord(StoreRecord):
    timestamp_fields = ("createdAt", "updatedAt", "orderDate", "expectedDeliveryDate")

    number: Optional[str] = None
    supplierId: Optional[str] = None
    supplierName: Optional[str] = None
    status: Optional[str] = None
    currency: Optional[str] = None
    totalValue: Number = None
    totalGross: Number = None
    orderDate: Optional[str] = None
    expectedDeliveryDate: Optional[str] = None
    items: Nested = None
    appliedDocuments: Nested = None


class InventoryItemRecord(StoreRecord):
    timestamp_fields = ("createdAt", "updatedAt", "expirationDate")

    name: Optional[str] = None
    description: Optional[str] = None
    category: Optional[str] = None
    categoryId: Optional[str] = None
    quantity: Number = None
    minQuantity: Number = None
    unit: Optional[str] = None
    unitPrice: Number = None
    expirationDate: Optional[str] = None


class InventoryBatchRecord(StoreRecord):
    timestamp_fields = ("createdAt", "updatedAt", "expirationDate", "receivedDate")

    batchNumber: Optional[str] = None
    lotNumber: Optional[str] = None
    itemId: Optional[str] = None
    materialId: Optional[str] = None
    materialName: Optional[str] = None
    purchaseOrderId: Optional[str] = None
    supplierId: Optional[str] = None
    quantity: Number = None
    initialQuantity: Number = None
    unitPrice: Number = None
    expirationDate: Optional[str] = None
    receivedDate: Optional[str] = None


class InventoryTransactionRecord(StoreRecord):
    type: Optional[str] = None
    itemId: Optional[str] = None
    itemName: Optional[str] = None
    taskId: Optional[str] = None
    batchId: Optional[str] = None
    quantity: Number = None
    reason: Optional[str] = None
    createdBy: Optional[str] = None


class RecipeRecord(StoreRecord):
    name: Optional[str] = None
    description: Optional[str] = None
    customerId: Optional[str] = None
    yieldQuantity: Number = None
    ingredients: Nested = None


class InvoiceRecord(StoreRecord):
    timestamp_fields = ("createdAt", "updatedAt", "issueDate", "dueDate")

    number: Optional[str] = None
    customerId: Optional[str] = None
    customerName: Optional[str] = None
    status: Optional[str] = None
    totalAmount: Number = None
    currency: Optional[str] = None
    issueDate: Optional[str] = None
    dueDate: Optional[str] = None
    items: Nested = None


class PartyRecord(StoreRecord):
    """Customers and suppliers share a shape."""

    name: Optional[str] = None
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address: Nested = None


class UserRecord(StoreRecord):
    private_fields = ("password", "passwordHash", "resetToken", "apiKeys")

    displayName: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None


class CmrDocumentRecord(StoreRecord):
    timestamp_fields = ("createdAt", "updatedAt", "issueDate", "loadingDate", "deliveryDate")

    cmrNumber: Optional[str] = None
    status: Optional[str] = None
    sender: Optional[str] = None
    recipient: Optional[str] = None
    carrier: Optional[str] = None
    loadingPlace: Optional[str] = None
    deliveryPlace: Optional[str] = None
    issueDate: Optional[str] = None
    loadingDate: Optional[str] = None
    deliveryDate: Optional[str] = None
    linkedOrderIds: Nested = None
    vehicleInfo: Nested = None


class ProductionSessionRecord(StoreRecord):
    """One work session logged against a production task; timeSpent is in minutes."""

    timestamp_fields = ("createdAt", "updatedAt", "startTime", "endTime")

    taskId: Optional[str] = None
    moNumber: Optional[str] = None
    userId: Optional[str] = None
    userName: Optional[str] = None
    startTime: Optional[str] = None
    endTime: Optional[str] = None
    quantity: Number = None
    timeSpent: Number = None
