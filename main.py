"""Entry point for asking the sales analyst or printing a reconciliation report locally."""
from __future__ import annotations
import argparse, json, logging, sys
from pathlib import Path

from config import InitError, configure_logging, init_vertex_ai, load_settings
from analyst_workflow import build_orchestrator
from reconcile import reconcile, summarize_sellers
from reporting import failure_response, report_response, to_wire, write_report
from schemas import QueryResponse, SortDirection, SortKey
from store import UnavailableStore, connect_store

logger = logging.getLogger(__name__)

REPORT_TITLES = {
    "services": "Service-wise Sales Report",
    "sellers": "User-wise Sales Report",
}


def parse_args(argv):
    p = argparse.ArgumentParser(description="Ask the sales analyst or build a sales report")
    p.add_argument("--model", default=None, help="Override Gemini model name")
    p.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    sub = p.add_subparsers(dest="command", required=True)

    ask = sub.add_parser("ask", help="Answer a natural-language question about the business")
    ask.add_argument("query", help="The question to answer")
    ask.add_argument("--invoices", default=None,
                     help="Path to a JSON array of invoices (default: read invoices from Firestore)")

    report = sub.add_parser("report", help="Reconcile the catalog with invoice history")
    report.add_argument("--kind", choices=sorted(REPORT_TITLES), default="services")
    report.add_argument("--sort", choices=[k.value for k in SortKey], default=SortKey.TOTAL_VALUE.value)
    report.add_argument("--direction", choices=[d.value for d in SortDirection], default=SortDirection.DESC.value)
    report.add_argument("--output", default=None, help="Optional path to an Excel file for the report")
    return p.parse_args(argv)


def _connect(settings):
    store = connect_store(settings)
    if isinstance(store, InitError):
        logger.warning("Store unavailable: %s", store.message)
        return UnavailableStore(store), store
    return store, None


def run_ask(args, settings) -> QueryResponse:
    vertex_error = init_vertex_ai(settings)
    if vertex_error is not None:
        return failure_response(vertex_error.message)
    store, _ = _connect(settings)

    if args.invoices:
        try:
            dataset_json = Path(args.invoices).read_text(encoding="utf-8")
        except OSError as exc:
            return failure_response(f"Could not read invoices file: {exc}")
    else:
        invoices = store.fetch_transactions()
        if not invoices.ok:
            return failure_response(f"Failed to load invoices: {invoices.message}")
        dataset_json = json.dumps(invoices.records, ensure_ascii=False)

    orchestrator = build_orchestrator(settings, store)
    return orchestrator.answer_query({"query": args.query, "primaryDatasetJson": dataset_json})


def run_report(args, settings) -> QueryResponse:
    store, init_error = _connect(settings)
    if init_error is not None:
        return failure_response(f"Failed to load report data: {init_error.message}")

    invoices = store.fetch_transactions()
    if not invoices.ok:
        return failure_response(f"Failed to load report data: {invoices.message}")
    sort_key, direction = SortKey(args.sort), SortDirection(args.direction)

    if args.kind == "services":
        services = store.fetch_services()
        if not services.ok:
            return failure_response(f"Failed to load report data: {services.message}")
        report = reconcile(services.records, invoices.records, sort_key, direction)
    else:
        report = summarize_sellers(invoices.records, sort_key, direction)

    title = REPORT_TITLES[args.kind]
    if args.output:
        write_report(args.output, report, title)
    return report_response(report, title, settings.currency_symbol)


def main(argv) -> int:
    args = parse_args(argv)
    # optional: override model for this process
    settings = load_settings(args.model)
    configure_logging(args.log_level or settings.log_level)
    handler = run_ask if args.command == "ask" else run_report
    response = handler(args, settings)
    print(json.dumps(to_wire(response), indent=2, ensure_ascii=False))
    return 0 if response.success else 1


def cli() -> None:
    sys.exit(main(sys.argv[1:]))


if __name__ == "__main__":
    cli()
