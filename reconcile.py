"""Deterministic catalog-vs-transactions reconciliation (no LLM, no I/O).

- reconcile: one aggregate per catalog item or transacted key, orphans marked archived
- summarize_sellers: one aggregate per seller, from transaction totals
- next_sort: the header-click sort toggle used by the report views
"""
from __future__ import annotations
import logging
from typing import Any, Dict, Iterable, List, Mapping
from pydantic import BaseModel, ValidationError

from schemas import (
    ARCHIVED_MARKER,
    Aggregate,
    CatalogItem,
    ReconciliationReport,
    SortDirection,
    SortKey,
    TransactionRecord,
)

logger = logging.getLogger(__name__)

UNKNOWN_SELLER = "Unknown User"


def _as_models(rows: Any, model: type[BaseModel]) -> List[Any]:
    """Validate rows into `model`, skipping anything malformed. None/non-iterables count as empty."""
    if rows is None or isinstance(rows, (str, bytes, Mapping)):
        return []
    try:
        iterator = iter(rows)
    except TypeError:
        return []
    out: List[Any] = []
    for row in iterator:
        if isinstance(row, model):
            out.append(row)
            continue
        try:
            out.append(model.model_validate(row))
        except ValidationError as exc:
            logger.debug("Skipping malformed %s: %s", model.__name__, exc.errors()[:1])
    return out


def _sorted_report(aggregates: Dict[str, Aggregate], sort_key: SortKey,
                   sort_direction: SortDirection) -> ReconciliationReport:
    sort_key = SortKey(sort_key)
    sort_direction = SortDirection(sort_direction)
    # sorted() is stable, also with reverse=True: ties keep insertion order.
    rows = sorted(
        aggregates.values(),
        key=lambda agg: getattr(agg, sort_key.value),
        reverse=sort_direction is SortDirection.DESC,
    )
    return ReconciliationReport(rows=rows, sort_key=sort_key, sort_direction=sort_direction)


def reconcile(catalog: Iterable[CatalogItem | Mapping[str, Any]] | None,
              transactions: Iterable[TransactionRecord | Mapping[str, Any]] | None,
              sort_key: SortKey = SortKey.TOTAL_VALUE,
              sort_direction: SortDirection = SortDirection.DESC) -> ReconciliationReport:
    """Merge the master catalog with transaction line items into sorted aggregates.

    Every catalog item appears, even with no sales. A line item whose key is not
    in the catalog gets a synthetic archived row labelled "<name> (Archived)";
    the first name seen for that key is kept.
    """
    aggregates: Dict[str, Aggregate] = {}
    for item in _as_models(catalog, CatalogItem):
        if item.id in aggregates:
            logger.debug("Duplicate catalog id %s ignored", item.id)
            continue
        aggregates[item.id] = Aggregate(key=item.id, label=item.name)

    for txn in _as_models(transactions, TransactionRecord):
        for line in txn.line_items:
            existing = aggregates.get(line.catalog_id)
            if existing is not None:
                existing.total_value += line.value
                existing.count += 1
            else:
                aggregates[line.catalog_id] = Aggregate(
                    key=line.catalog_id,
                    label=f"{line.name or line.catalog_id}{ARCHIVED_MARKER}",
                    total_value=line.value,
                    count=1,
                    is_archived=True,
                )

    report = _sorted_report(aggregates, sort_key, sort_direction)
    logger.debug("Reconciled %d rows (%d archived)", len(report.rows),
                 sum(1 for row in report.rows if row.is_archived))
    return report


def summarize_sellers(transactions: Iterable[TransactionRecord | Mapping[str, Any]] | None,
                      sort_key: SortKey = SortKey.TOTAL_VALUE,
                      sort_direction: SortDirection = SortDirection.DESC) -> ReconciliationReport:
    """Per-seller totals. Transactions without a creator uid are left out."""
    aggregates: Dict[str, Aggregate] = {}
    for txn in _as_models(transactions, TransactionRecord):
        if not txn.created_by_uid:
            continue
        amount = txn.amount if txn.amount is not None else sum(line.value for line in txn.line_items)
        existing = aggregates.get(txn.created_by_uid)
        if existing is not None:
            existing.total_value += amount
            existing.count += 1
        else:
            aggregates[txn.created_by_uid] = Aggregate(
                key=txn.created_by_uid,
                label=txn.created_by_name or UNKNOWN_SELLER,
                total_value=amount,
                count=1,
            )
    return _sorted_report(aggregates, sort_key, sort_direction)


def next_sort(current_key: SortKey, current_direction: SortDirection,
              requested_key: SortKey) -> tuple[SortKey, SortDirection]:
    """Clicking the active column while ascending flips to descending; anything else sorts ascending."""
    if SortKey(requested_key) is SortKey(current_key) and SortDirection(current_direction) is SortDirection.ASC:
        return SortKey(requested_key), SortDirection.DESC
    return SortKey(requested_key), SortDirection.ASC
