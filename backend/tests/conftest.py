"""
Shared fixtures: a small MRP dataset frozen at NOW, an in-memory store
seeded with it, and the tool environment/context built on top.
"""
import pytest

from fakes import NOW, InMemoryDocumentStore
from mrp_assistant.services.query.enums import EnumNormalizer
from mrp_assistant.services.query.translator import QueryTranslator
from mrp_assistant.services.tools.context import ToolEnvironment


def seed_documents():
    """Documents keyed by store collection name."""
    return {
        "productionTasks": [
            {
                "id": "t1",
                "moNumber": "MO-00001",
                "lotNumber": "LOT-1",
                "productName": "Pasta pomidorowa 300 g",
                "productId": "p1",
                "orderId": "o1",
                "status": "W trakcie",
                "assignedTo": "u1",
                "quantity": 100,
                "finalQuantity": 100,
                "unitPrice": 5,
                "createdAt": "2024-06-01T08:00:00Z",
                "plannedEndDate": "2024-06-05T00:00:00Z",
                "materials": [{"name": "Pomidory"}, {"name": "Sól"}],
                "consumedMaterials": [
                    {"materialName": "Pomidory", "quantity": 50, "unitPrice": 2},
                    {"materialName": "Sól", "quantity": 1, "unitPrice": 1.5},
                ],
            },
            {
                "id": "t2",
                "moNumber": "MO-00002",
                "lotNumber": "LOT-2",
                "productName": "Sos czosnkowy 0,5 kg",
                "productId": "p2",
                "orderId": "o1",
                "status": "Zaplanowane",
                "assignedTo": "u2",
                "quantity": 20,
                "finalQuantity": 0,
                "createdAt": {"seconds": 1717977600, "nanoseconds": 0},
                "plannedEndDate": "2024-06-20T00:00:00Z",
                "consumedMaterials": [],
            },
            {
                "id": "t3",
                "moNumber": "MO-00003",
                "lotNumber": "LOT-3",
                "productName": "Pasta pomidorowa 300 g",
                "productId": "p1",
                "status": "Zakończone",
                "assignedTo": "u1",
                "quantity": 50,
                "finalQuantity": 50,
                "unitPrice": 5,
                "createdAt": "2024-05-20T10:00:00Z",
                "plannedEndDate": "2024-05-25T00:00:00Z",
                "consumedMaterials": [
                    {"materialName": "Pomidory", "quantity": 20, "unitPrice": 2},
                ],
            },
        ],
        "orders": [
            {
                "id": "o1",
                "orderNumber": "CO-001",
                "customerId": "c1",
                "customerName": "Bistro Smak",
                "status": "Nowe",
                "totalValue": 1500,
                "orderDate": "2024-06-01",
                "deliveryDate": "2024-06-16T12:00:00Z",
                "items": [{"name": "Pasta pomidorowa 300 g"}, {"name": "Sos czosnkowy 0,5 kg"}],
            },
            {
                "id": "o2",
                "orderNumber": "CO-002",
                "customerId": "c2",
                "customerName": "Hotel Łąka",
                "status": "W realizacji",
                "totalValue": 800,
                "orderDate": "2024-06-12",
                "deliveryDate": "2024-06-30T12:00:00Z",
                "items": [{"name": "Pasta pomidorowa 300 g"}],
            },
            {
                "id": "o3",
                "orderNumber": "CO-003",
                "customerId": "c1",
                "customerName": "Bistro Smak",
                "status": "Nowe",
                "totalValue": 300,
                "orderDate": "2024-05-01",
                "deliveryDate": "2024-06-20T12:00:00Z",
                "items": [],
            },
        ],
        "purchaseOrders": [
            {
                "id": "po1",
                "number": "PO-100",
                "supplierId": "s1",
                "supplierName": "Agro Farm",
                "status": "confirmed",
                "orderDate": "2024-06-02",
                "updatedAt": "2024-06-02T10:00:00Z",
                "items": [
                    {
                        "id": "i1",
                        "name": "Pomidory",
                        "quantity": 100,
                        "unitPrice": 2.0,
                        "totalPrice": 200.0,
                        "received": 0,
                        "unit": "kg",
                    },
                    {
                        "id": "i2",
                        "name": "Sól kamienna",
                        "quantity": 10,
                        "unitPrice": 1.5,
                        "totalPrice": 15.0,
                        "unit": "kg",
                    },
                ],
            },
        ],
        "inventory": [
            {"id": "m1", "name": "Pomidory", "categoryId": "cat-veg", "quantity": 0, "minQuantity": 10,
             "unitPrice": 2, "unit": "kg"},
            {"id": "m2", "name": "Sól kamienna", "categoryId": "cat-spice", "quantity": 5, "minQuantity": 20,
             "unitPrice": 1.5, "unit": "kg"},
            {"id": "m3", "name": "Czosnek", "categoryId": "cat-veg", "quantity": 50, "minQuantity": 10,
             "unitPrice": 8, "unit": "kg", "expirationDate": "2024-06-25T00:00:00Z"},
        ],
        "inventoryBatches": [
            {"id": "b1", "batchNumber": "B-1", "lotNumber": "L-A", "materialId": "m1", "materialName": "Pomidory",
             "purchaseOrderId": "po1", "quantity": 40, "expirationDate": "2024-06-20T12:00:00Z"},
            {"id": "b2", "batchNumber": "B-2", "lotNumber": "L-B", "materialId": "m3", "materialName": "Czosnek",
             "quantity": 10, "expirationDate": "2024-07-01T12:00:00Z"},
            {"id": "b3", "batchNumber": "B-3", "lotNumber": "L-C", "materialId": "m1", "materialName": "Pomidory",
             "quantity": 60, "expirationDate": "2024-09-01"},
        ],
        "inventoryTransactions": [
            {"id": "tx1", "type": "ISSUE", "itemId": "m1", "itemName": "Pomidory", "taskId": "t1", "quantity": 50,
             "createdBy": "u1", "createdAt": "2024-06-03T09:00:00Z"},
            {"id": "tx2", "type": "RECEIVE", "itemId": "m1", "itemName": "Pomidory", "quantity": 100,
             "createdBy": "u2", "createdAt": "2024-06-02T09:00:00Z"},
            {"id": "tx3", "type": "ISSUE", "itemId": "m2", "itemName": "Sól kamienna", "taskId": "t1", "quantity": 1,
             "createdBy": "u1", "createdAt": "2024-06-03T10:00:00Z"},
        ],
        "recipes": [
            {
                "id": "r1",
                "name": "Pasta pomidorowa",
                "customerId": "c1",
                "ingredients": [
                    {"name": "Pomidory", "quantity": 0.25, "unit": "kg"},
                    {"name": "Sól", "quantity": 5, "unit": "g"},
                ],
            },
        ],
        "invoices": [
            {"id": "inv1", "number": "FV/2024/001", "customerId": "c1", "customerName": "Bistro Smak",
             "status": "issued", "totalAmount": 1200, "issueDate": "2024-04-01", "dueDate": "2024-04-15T00:00:00Z"},
            {"id": "inv2", "number": "FV/2024/002", "customerId": "c2", "customerName": "Hotel Łąka",
             "status": "paid", "totalAmount": 800, "issueDate": "2024-04-15", "dueDate": "2024-05-01"},
            {"id": "inv3", "number": "FV/2024/003", "customerId": "c2", "customerName": "Hotel Łąka",
             "status": "issued", "totalAmount": 450, "issueDate": "2024-05-27", "dueDate": "2024-06-10T12:00:00Z"},
            {"id": "inv4", "number": "FV/2024/004", "customerId": "c1", "customerName": "Bistro Smak",
             "status": "issued", "totalAmount": 300, "issueDate": "2024-06-10", "dueDate": "2024-07-01"},
        ],
        "customers": [
            {"id": "c1", "name": "Bistro Smak", "company": "Smak Sp. z o.o.", "email": "biuro@smak.example"},
            {"id": "c2", "name": "Hotel Łąka", "company": "Łąka SA", "email": "recepcja@laka.example"},
        ],
        "suppliers": [
            {"id": "s1", "name": "Agro Farm", "email": "sales@agro.example"},
        ],
        "users": [
            {"id": "u1", "displayName": "Anna Nowak", "email": "anna@example.com", "role": "operator",
             "passwordHash": "not-for-the-engine"},
            {"id": "u2", "email": "jan@example.com", "role": "admin"},
        ],
        "cmrDocuments": [
            {"id": "cmr1", "cmrNumber": "CMR-2024-001", "status": "W transporcie", "sender": "Zakład Produkcyjny",
             "recipient": "Bistro Smak", "carrier": "TransPol", "createdAt": "2024-06-10T08:00:00Z",
             "linkedOrderIds": ["o1"], "vehicleInfo": {"plate": "WA 12345"}},
            {"id": "cmr2", "cmrNumber": "CMR-2024-002", "status": "Dostarczony", "sender": "Zakład Produkcyjny",
             "recipient": "Hotel Łąka", "carrier": "TransPol", "createdAt": "2024-06-03T08:00:00Z",
             "linkedOrderIds": ["o2"]},
            {"id": "cmr3", "cmrNumber": "CMR-2024-003", "status": "Szkic", "sender": "Zakład Produkcyjny",
             "recipient": "Bistro Smak", "carrier": "Kurier Express", "createdAt": "2024-05-28T08:00:00Z"},
        ],
        "productionHistory": [
            {"id": "s1", "taskId": "t1", "moNumber": "MO-00001", "userId": "u1", "userName": "Anna Nowak",
             "startTime": "2024-06-03T06:00:00Z", "endTime": "2024-06-03T08:00:00Z", "quantity": 40, "timeSpent": 120},
            {"id": "s2", "taskId": "t1", "moNumber": "MO-00001", "userId": "u2", "userName": "Jan Kowalski",
             "startTime": "2024-06-04T06:00:00Z", "endTime": "2024-06-04T09:00:00Z", "quantity": 60, "timeSpent": 180},
            {"id": "s3", "taskId": "t3", "moNumber": "MO-00003", "userId": "u1", "userName": "Anna Nowak",
             "startTime": "2024-05-21T06:00:00Z", "endTime": "2024-05-21T07:30:00Z", "quantity": 50, "timeSpent": 90},
        ],
    }


@pytest.fixture
def store():
    return InMemoryDocumentStore(seed_documents())


@pytest.fixture
def normalizer():
    normalizer = EnumNormalizer()
    normalizer.initialize()
    return normalizer


@pytest.fixture
def translator(normalizer):
    return QueryTranslator(normalizer)


@pytest.fixture
def environment(store, translator):
    return ToolEnvironment(store=store, translator=translator, clock=lambda: NOW)


@pytest.fixture
def ctx(environment):
    return environment.for_call()
