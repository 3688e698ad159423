"""Shared pytest fixtures and fakes: settings, sample business data, an in-memory store and a scripted chat model."""

from typing import Any, Dict, List

import pytest
from langchain_core.messages import AIMessage

from config import Settings
from schemas import FetchResult


@pytest.fixture
def settings() -> Settings:
    return Settings(project="test-project", location="us-central1", model_name="gemini-test",
                    company_name="Rising Sun Computers", currency_symbol="₹",
                    max_tool_rounds=3, max_parallel_tools=2)


@pytest.fixture
def catalog() -> List[Dict[str, Any]]:
    return [
        {"id": "s1", "name": "Repair", "price": 0},
        {"id": "s2", "name": "Cleaning", "price": 0},
    ]


@pytest.fixture
def invoices() -> List[Dict[str, Any]]:
    return [
        {
            "id": "inv-1",
            "date": "2025-01-05T10:00:00+00:00",
            "amount": 800.0,
            "customerName": "Asha",
            "createdByUid": "u1",
            "createdByName": "Ravi",
            "selectedServices": [
                {"id": "s1", "name": "Repair", "price": 500.0},
                {"id": "s9", "name": "Data Recovery", "price": 300.0},
            ],
        },
        {
            "id": "inv-2",
            "date": "2025-01-06T10:00:00+00:00",
            "amount": 200.0,
            "createdByUid": "u2",
            "createdByName": "Meena",
            "selectedServices": [{"id": "s2", "name": "Cleaning", "price": 200.0}],
        },
    ]


class FakeStore:
    """In-memory store; datasets named in `failing` report a fetch failure."""

    def __init__(self, data: Dict[str, List[Dict[str, Any]]], failing: tuple = ()):
        self.data = data
        self.failing = set(failing)
        self.calls: List[str] = []

    def _get(self, name: str) -> FetchResult:
        self.calls.append(name)
        if name in self.failing:
            return FetchResult.failed(f"Failed to get {name}: backend unavailable")
        return FetchResult.succeeded(self.data.get(name, []))

    def fetch_services(self):
        return self._get("services")

    def fetch_personnel(self):
        return self._get("personnel")

    def fetch_inventory(self):
        return self._get("inventory")

    def fetch_tasks(self):
        return self._get("tasks")

    def fetch_attendance(self):
        return self._get("attendance")

    def fetch_customers(self):
        return self._get("customers")

    def fetch_transactions(self):
        return self._get("transactions")


@pytest.fixture
def store_data(catalog, invoices) -> Dict[str, List[Dict[str, Any]]]:
    return {
        "services": catalog,
        "personnel": [
            {"uid": "u1", "email": "ravi@example.com", "emailVerified": True, "disabled": False,
             "profile": {"fullName": "Ravi", "hourlyRate": 150.0}},
        ],
        "inventory": [
            {"id": "p1", "name": "SSD 512GB", "price": 4200.0, "purchasePrice": 3100.0,
             "itemType": "Stock", "quantity": 7},
        ],
        "tasks": [
            {"id": "t1", "title": "Call back customer", "status": "completed",
             "assignedToUid": "u1", "assignedToName": "Ravi", "assignedByUid": "u0",
             "assignedByName": "Admin", "createdAt": "2025-01-02T09:00:00+00:00"},
        ],
        "attendance": [
            {"id": "a1", "userId": "u1", "userName": "Ravi", "clockInTime": "2025-01-05T09:00:00+00:00",
             "status": "clocked-in"},
        ],
        "customers": [{"id": "c1", "fullName": "Asha", "phone": "98450"}],
        "transactions": invoices,
    }


@pytest.fixture
def fake_store(store_data) -> FakeStore:
    return FakeStore(store_data)


class ScriptedChatModel:
    """Chat model double: returns the scripted replies in order, raising any that are exceptions."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.bound_tools: List[str] | None = None
        self.calls: List[list] = []

    def bind_tools(self, tools):
        self.bound_tools = [tool.name for tool in tools]
        return self

    def invoke(self, messages):
        self.calls.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


def tool_request(*names: str) -> AIMessage:
    return AIMessage(
        content="",
        tool_calls=[{"name": name, "args": {}, "id": f"call-{i}"} for i, name in enumerate(names)],
    )
