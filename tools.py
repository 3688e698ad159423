"""Read-only data source tools for the analyst LLM (no analysis logic). LLM handles all reasoning.

- listCatalogServices: every service offered, sold or not
- listPersonnel: registered employees/salespeople with profile data
- listInventoryItems: stock and assets with selling/purchase values
- listTasks: assigned tasks and their completion state
- listAttendanceRecords: clock-in/clock-out sessions
- listCustomers: customer directory

A tool never raises to the model: a failed fetch yields [] plus a diagnostic,
and records that do not match the tool's shape are dropped individually.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List
from langchain_core.tools import StructuredTool
from pydantic import BaseModel, ValidationError

from schemas import (
    AttendanceRecord,
    CustomerRecord,
    FetchResult,
    InventoryRecord,
    PersonnelRecord,
    ServiceRecord,
    TaskRecord,
    ToolDescriptor,
    to_llm_payload,
)

logger = logging.getLogger(__name__)

Fetcher = Callable[[], FetchResult]


@dataclass(frozen=True)
class ToolDiagnostic:
    tool: str
    message: str
    record_id: str | None = None


# ===== Descriptors (routing metadata for the planner) =====
LIST_CATALOG_SERVICES = ToolDescriptor(
    name="listCatalogServices",
    description=(
        "Returns the complete master list of services the company offers (id, name, unitValue, category), "
        "including services that were never sold. Use it for questions about unsold or worst-selling services, "
        "or about services missing from the invoice data."
    ),
    output_shape=ServiceRecord,
)
LIST_PERSONNEL = ToolDescriptor(
    name="listPersonnel",
    description=(
        "Returns every registered user account (employees and salespeople) with email, account status and "
        "profile (full name, hourly rate, monthly salary, role). Use it for questions about staff, including "
        "salespeople who made no sales."
    ),
    output_shape=PersonnelRecord,
)
LIST_INVENTORY_ITEMS = ToolDescriptor(
    name="listInventoryItems",
    description=(
        "Returns all inventory items, both Stock and Asset, with selling price (unitValue), purchase price "
        "(costValue) and quantity. Use it for stock levels, assets, and product profitability."
    ),
    output_shape=InventoryRecord,
)
LIST_TASKS = ToolDescriptor(
    name="listTasks",
    description=(
        "Returns all assigned tasks with status (pending or completed), assignee, assigner and timestamps. "
        "Use it for employee productivity and outstanding work."
    ),
    output_shape=TaskRecord,
)
LIST_ATTENDANCE_RECORDS = ToolDescriptor(
    name="listAttendanceRecords",
    description=(
        "Returns all attendance sessions (clock-in and clock-out times, status, duration, location). Use it for "
        "hours worked, who is currently clocked in, and attendance patterns."
    ),
    output_shape=AttendanceRecord,
)
LIST_CUSTOMERS = ToolDescriptor(
    name="listCustomers",
    description=(
        "Returns the full customer directory (name, contact details, address, notes). Use it for customer "
        "information not present in the invoices, or to list all customers."
    ),
    output_shape=CustomerRecord,
)

TOOL_DESCRIPTORS: tuple[ToolDescriptor, ...] = (
    LIST_CATALOG_SERVICES,
    LIST_PERSONNEL,
    LIST_INVENTORY_ITEMS,
    LIST_TASKS,
    LIST_ATTENDANCE_RECORDS,
    LIST_CUSTOMERS,
)


# ===== Descriptor + handler pairs =====
@dataclass(frozen=True)
class DataSourceTool:
    descriptor: ToolDescriptor
    fetch: Fetcher

    @property
    def name(self) -> str:
        return self.descriptor.name

    def run(self, diagnostics: List[ToolDiagnostic] | None = None) -> List[BaseModel]:
        """Fetch and validate. Failures become [] plus a diagnostic; this never raises."""
        sink = diagnostics if diagnostics is not None else []
        try:
            result = self.fetch()
        except Exception as exc:  # a reader that raises is treated like one that reports failure
            logger.exception("Tool %s: fetch raised", self.name)
            sink.append(ToolDiagnostic(self.name, f"fetch raised {type(exc).__name__}: {exc}"))
            return []
        if not result.ok:
            logger.error("Tool %s failed: %s", self.name, result.message)
            sink.append(ToolDiagnostic(self.name, result.message or "fetch failed"))
            return []

        shape = self.descriptor.output_shape
        valid: List[BaseModel] = []
        for raw in result.records:
            try:
                valid.append(shape.model_validate(raw))
            except ValidationError as exc:
                record_id = str(raw.get("id") or raw.get("uid") or "") if isinstance(raw, dict) else None
                logger.warning("Tool %s: dropping invalid record %s (%d errors)",
                               self.name, record_id or "?", exc.error_count())
                sink.append(ToolDiagnostic(self.name, "record failed validation", record_id or None))
        return valid

    def as_langchain_tool(self, diagnostics: List[ToolDiagnostic] | None = None) -> StructuredTool:
        def _invoke() -> str:
            return json.dumps([to_llm_payload(r) for r in self.run(diagnostics)], ensure_ascii=False)

        return StructuredTool.from_function(
            func=_invoke,
            name=self.descriptor.name,
            description=self.descriptor.description,
        )


def build_data_source_tools(store: Any) -> List[DataSourceTool]:
    """Pair each descriptor with the store's bulk reader, in TOOL_DESCRIPTORS order."""
    readers: Dict[str, Fetcher] = {
        LIST_CATALOG_SERVICES.name: store.fetch_services,
        LIST_PERSONNEL.name: store.fetch_personnel,
        LIST_INVENTORY_ITEMS.name: store.fetch_inventory,
        LIST_TASKS.name: store.fetch_tasks,
        LIST_ATTENDANCE_RECORDS.name: store.fetch_attendance,
        LIST_CUSTOMERS.name: store.fetch_customers,
    }
    return [DataSourceTool(descriptor=d, fetch=readers[d.name]) for d in TOOL_DESCRIPTORS]
