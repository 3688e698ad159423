"""Pydantic models shared by the reconciler, the data source tools and the query workflow.

Documents in the store use camelCase field names; models here use snake_case
attributes with camelCase aliases, so records validate from either spelling and
serialise back to camelCase for the language model.
"""
from __future__ import annotations
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Literal, Type
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    computed_field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

logger = logging.getLogger(__name__)

ARCHIVED_MARKER = " (Archived)"


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ===== Catalog + transactions (reconciler inputs) =====
class CatalogItem(_Record):
    id: str
    name: str
    unit_value: float | None = Field(None, validation_alias=AliasChoices("unitValue", "price", "unit_value"))
    category_ref: str | None = Field(None, validation_alias=AliasChoices("categoryRef", "categoryId", "category_ref"))
    category_name: str | None = None
    created_at: str | None = None


class LineItem(_Record):
    catalog_id: str = Field(validation_alias=AliasChoices("catalogId", "id", "catalog_id"))
    name: str = ""
    value: float = Field(validation_alias=AliasChoices("value", "price"))


class TransactionRecord(_Record):
    id: str = ""
    line_items: List[LineItem] = Field(
        default_factory=list,
        validation_alias=AliasChoices("lineItems", "selectedServices", "line_items"),
    )
    timestamp: str | None = Field(None, validation_alias=AliasChoices("timestamp", "date"))
    amount: float | None = None
    customer_name: str | None = None
    created_by_uid: str | None = None
    created_by_name: str | None = None
    payment_status: str | None = None

    @field_validator("line_items", mode="before")
    @classmethod
    def _keep_valid_line_items(cls, value: Any) -> List[Any]:
        # Anything that is not a list of line items counts as "no line items".
        if not isinstance(value, (list, tuple)):
            return []
        kept: List[LineItem] = []
        for item in value:
            if isinstance(item, LineItem):
                kept.append(item)
                continue
            try:
                kept.append(LineItem.model_validate(item))
            except ValidationError as exc:
                logger.debug("Skipping malformed line item %r: %s", item, exc)
        return kept


# ===== Aggregates =====
class SortKey(str, Enum):
    LABEL = "label"
    TOTAL_VALUE = "total_value"
    COUNT = "count"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Aggregate(_Record):
    key: str
    label: str
    total_value: float = 0.0
    count: int = 0
    is_archived: bool = False


class ReconciliationReport(_Record):
    rows: List[Aggregate]
    sort_key: SortKey = SortKey.TOTAL_VALUE
    sort_direction: SortDirection = SortDirection.DESC

    @computed_field  # type: ignore[prop-decorator]
    @property
    def grand_total_value(self) -> float:
        return sum(row.total_value for row in self.rows)

    @computed_field  # type: ignore[prop-decorator]
    @property
    def grand_total_count(self) -> int:
        return sum(row.count for row in self.rows)


# ===== Tool output shapes =====
ServiceRecord = CatalogItem


class PersonnelProfile(_Record):
    full_name: str | None = None
    hourly_rate: float | None = None
    monthly_salary: float | None = None
    role: str | None = None


class PersonnelRecord(_Record):
    uid: str
    email: str | None = None
    email_verified: bool = False
    disabled: bool = False
    profile_status: str | None = Field(None, validation_alias=AliasChoices("profileStatus", "firestoreStatus", "profile_status"))
    created_at: str | None = Field(None, validation_alias=AliasChoices("createdAt", "creationTime", "created_at"))
    last_sign_in_at: str | None = Field(
        None, validation_alias=AliasChoices("lastSignInAt", "lastSignInTime", "last_sign_in_at")
    )
    profile: PersonnelProfile | None = Field(None, validation_alias=AliasChoices("profile", "profileData"))


class InventoryRecord(_Record):
    id: str
    name: str
    unit_value: float = Field(validation_alias=AliasChoices("unitValue", "price", "unit_value"))
    cost_value: float | None = Field(None, validation_alias=AliasChoices("costValue", "purchasePrice", "cost_value"))
    description: str | None = None
    item_type: Literal["Stock", "Asset"]
    quantity: int
    category_ref: str | None = Field(None, validation_alias=AliasChoices("categoryRef", "categoryId", "category_ref"))
    category_name: str | None = None
    created_at: str | None = None


class TaskRecord(_Record):
    id: str
    title: str
    status: Literal["pending", "completed"]
    assigned_to_uid: str
    assigned_to_name: str
    assigned_by_uid: str
    assigned_by_name: str
    created_at: str
    completed_at: str | None = None


class AttendanceRecord(_Record):
    id: str
    user_id: str
    user_name: str | None = None
    clock_in_time: str
    clock_out_time: str | None = None
    status: Literal["clocked-in", "clocked-out"]
    duration: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class CustomerRecord(_Record):
    id: str
    full_name: str
    email: str | None = None
    phone: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    notes: str | None = None
    created_at: str | None = None


def to_llm_payload(record: BaseModel) -> Dict[str, Any]:
    """camelCase, JSON-safe dict without empty optionals."""
    return record.model_dump(mode="json", by_alias=True, exclude_none=True)


# ===== Collaborator contracts =====
@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    output_shape: Type[BaseModel]


@dataclass(frozen=True)
class FetchResult:
    """Outcome of one bulk read: either records or a readable failure message."""
    ok: bool
    records: List[Dict[str, Any]] = field(default_factory=list)
    message: str | None = None

    @classmethod
    def succeeded(cls, records: List[Dict[str, Any]]) -> "FetchResult":
        return cls(ok=True, records=list(records))

    @classmethod
    def failed(cls, message: str) -> "FetchResult":
        return cls(ok=False, message=message)


# ===== Request / response envelope =====
class QueryRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    query: str
    primary_dataset_json: str = Field(alias="primaryDatasetJson")

    @field_validator("query")
    @classmethod
    def _query_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("query must not be empty")
        return value.strip()

    @field_validator("primary_dataset_json")
    @classmethod
    def _dataset_is_json_array(cls, value: str) -> str:
        try:
            parsed = json.loads(value)
        except json.JSONDecodeError as exc:
            raise ValueError(f"primaryDatasetJson is not valid JSON ({exc.msg})") from exc
        if not isinstance(parsed, list):
            raise ValueError("primaryDatasetJson must be a JSON array of transaction records")
        return value


class QueryResponse(_Record):
    model_config = ConfigDict(frozen=True)

    success: bool
    analysis_text: str | None = None
    message: str | None = None

    @model_validator(mode="after")
    def _exactly_one_payload(self) -> "QueryResponse":
        if self.success and (self.analysis_text is None or self.message is not None):
            raise ValueError("a successful response carries analysisText and no message")
        if not self.success and (self.message is None or self.analysis_text is not None):
            raise ValueError("a failed response carries a message and no analysisText")
        return self
