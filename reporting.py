"""Response envelope + report rendering.

Both LLM answers and reconciliation reports leave the core as a QueryResponse,
so callers never need to know where a response came from.
"""
from __future__ import annotations
import json
from pathlib import Path
from typing import Any, Dict, List
import pandas as pd

from schemas import QueryResponse, ReconciliationReport

TOTAL_LABEL = "Overall Total"


def success_response(text: str) -> QueryResponse:
    return QueryResponse(success=True, analysis_text=text)


def failure_response(message: str) -> QueryResponse:
    return QueryResponse(success=False, message=message or "An unexpected error occurred.")


def to_wire(response: QueryResponse) -> Dict[str, Any]:
    """{success, analysisText} or {success, message}."""
    return response.model_dump(by_alias=True, exclude_none=True)


def _money(value: float, currency: str) -> str:
    return f"{currency}{value:,.2f}"


def _cell(text: str) -> str:
    return text.replace("|", "\\|")


def render_markdown(report: ReconciliationReport, title: str, currency: str = "₹") -> str:
    lines = [f"### {title}", ""]
    if not report.rows:
        lines.append("No rows to report.")
        return "\n".join(lines)
    lines.append("| Name | Times Sold | Total Collection |")
    lines.append("|---|---:|---:|")
    for row in report.rows:
        lines.append(f"| {_cell(row.label)} | {row.count} | {_money(row.total_value, currency)} |")
    if report.grand_total_count > 0:
        lines.append(
            f"| **{TOTAL_LABEL}** | **{report.grand_total_count}** | "
            f"**{_money(report.grand_total_value, currency)}** |"
        )
    return "\n".join(lines)


def report_response(report: ReconciliationReport, title: str, currency: str = "₹") -> QueryResponse:
    return success_response(render_markdown(report, title, currency))


def report_frame(report: ReconciliationReport) -> pd.DataFrame:
    """Report rows as a DataFrame, with the overall total as the last row."""
    rows: List[Dict[str, Any]] = [
        {"key": r.key, "name": r.label, "times_sold": r.count,
         "total_collection": r.total_value, "archived": r.is_archived}
        for r in report.rows
    ]
    if report.grand_total_count > 0:
        rows.append({"key": "", "name": TOTAL_LABEL, "times_sold": report.grand_total_count,
                     "total_collection": report.grand_total_value, "archived": False})
    return pd.DataFrame(rows, columns=["key", "name", "times_sold", "total_collection", "archived"])


def write_report(output_path: str, report: ReconciliationReport, title: str) -> Path:
    """Persist a report: Excel workbook with one sheet + JSON sidecar with the sort and totals."""
    out = Path(output_path)
    out.parent.mkdir(parents=True, exist_ok=True)

    with pd.ExcelWriter(out, engine="openpyxl") as writer:
        sheet_name = (title or "report")[:31]  # Excel sheet name limit
        report_frame(report).to_excel(writer, sheet_name=sheet_name, index=False)

    meta_path = out.with_suffix(".meta.json")
    with open(meta_path, "w", encoding="utf-8") as f:
        json.dump({
            "title": title,
            "sort_key": report.sort_key.value,
            "sort_direction": report.sort_direction.value,
            "grand_total_value": report.grand_total_value,
            "grand_total_count": report.grand_total_count,
            "rows": len(report.rows),
        }, f, ensure_ascii=False, indent=2)
    return out
