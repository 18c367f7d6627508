"""RAG Engine Runner with step-level logging.

Loads a snapshot of stores, brands and sales records exported by the storage
layer, runs the attach-rate RAG engine (organisation-wide, or scoped to an
executive's stores), logs every step, and exports the results.

Usage:
    python -m src.run_engine \
        --snapshot path/to/snapshot.json \
        --reference-date 2025-09-30 \
        --window 7days \
        --output output/rag_performance.xlsx
"""

import argparse
import sys
from datetime import date
from pathlib import Path
from typing import List, Sequence

import yaml

from src.pipeline_logger import setup_logging, StepLogger, get_logger, StoreTracer
from src.config import CRITERIA_FILE, load_config
from src.models import Brand, SalesRecord, Store
from src.classification.rag import performance_message
from src.engine import EngineResult, RAGRequest, run_for_executive, run_rag_analysis
from src.reporting.output import export_to_file, stores_to_frame

logger = get_logger(__name__)


def load_snapshot(path: str) -> dict:
    """Read a JSON or YAML snapshot into Store / Brand / SalesRecord lists."""
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Snapshot not found: {path}")
    with open(p, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}

    return {
        "stores": [Store.from_dict(s) for s in raw.get("stores", [])],
        "brands": [Brand.from_dict(b) for b in raw.get("brands", [])],
        "records": [
            SalesRecord.from_dict(r)
            for r in raw.get("salesRecords", raw.get("sales_records", []))
        ],
    }


def _trace_store(tracer: StoreTracer, result: EngineResult):
    for row in result.evaluated:
        if row.store_id != tracer.store_id:
            continue
        tracer.trace("Step 2", "attach_rate", round(row.attach_rate, 2),
                     f"previous={row.previous_attach_rate:.2f}, tier={row.tier}")
        tracer.trace("Step 2", "status", row.final_status,
                     f"base={row.base_status}, trend={row.trend}, priority={row.priority}")
        for b in row.brand_results:
            tracer.trace("Step 2", f"brand {b.brand_name}", b.final_status, performance_message(b))
        return
    for err in result.errors:
        if err.store_id == tracer.store_id:
            tracer.trace("Step 2", "error", err.error_type, err.message)
            return
    tracer.trace("Step 2", "not evaluated", detail="filtered out or absent from snapshot")


def run_engine(
    snapshot_path: str,
    reference_date: date = None,
    time_window: str = None,
    tier: str = None,
    brand: str = None,
    city: str = None,
    status: str = None,
    granularity: str = None,
    executive_store_ids: Sequence[str] = None,
    output_path: str = None,
    config_overrides: dict = None,
    criteria_path: str = None,
    trace_store_id: str = None,
) -> EngineResult:
    """Execute a full engine run.

    Args:
        snapshot_path: JSON/YAML file with stores, brands and salesRecords.
        reference_date: evaluation date; falls back to the config fixture,
            then to today.
        executive_store_ids: restrict the run to these assigned stores.
        criteria_path: criteria YAML; defaults to config/rag_criteria.yaml.
        output_path: optional CSV/XLSX destination.
        trace_store_id: optional store id to trace through the run.

    Returns:
        The EngineResult of the run.
    """
    setup_logging()
    tracer = StoreTracer(trace_store_id) if trace_store_id else None

    # ── Step 0: Configuration ─────────────────────────────────────────
    with StepLogger("0", "Configuration", "src.step_0") as step:
        config = load_config(config_overrides, criteria_path=criteria_path or CRITERIA_FILE)
        step.log_input("config_overrides", config_overrides or {})
        step.log_summary(**config.summary())

        if reference_date is None:
            reference_date = config.reference_date or date.today()
            step.log_warning(f"No reference date given, using {reference_date.isoformat()}")

    # ── Step 1: Load Snapshot ─────────────────────────────────────────
    with StepLogger("1", "Load Snapshot", "src.step_1") as step:
        snapshot = load_snapshot(snapshot_path)
        step.log_input("stores", snapshot["stores"], f"from {snapshot_path}")
        step.log_input("brands", snapshot["brands"])
        step.log_input("sales_records", snapshot["records"])

        brandless = [s.id for s in snapshot["stores"] if not s.partner_brands]
        if brandless:
            step.log_warning(f"{len(brandless)} stores list no partner brands")

    request = RAGRequest(
        reference_date=reference_date,
        time_window=time_window,
        tier=tier,
        brand=brand,
        status=status,
        city=city,
        granularity=granularity,
    )

    # ── Step 2: Classification ────────────────────────────────────────
    with StepLogger("2", "Store Classification", "src.step_2") as step:
        if executive_store_ids is not None:
            step.log_input("assigned_stores", list(executive_store_ids))
            result = run_for_executive(
                snapshot["stores"], snapshot["records"], executive_store_ids,
                brands=snapshot["brands"], request=request, config=config,
            )
        else:
            result = run_rag_analysis(
                snapshot["stores"], snapshot["records"],
                brands=snapshot["brands"], request=request, config=config,
            )

        for row in result.evaluated:
            step.log_decision(
                row.store_id,
                row.final_status,
                f"tier {row.tier}, attach {row.attach_rate:.2f}% "
                f"(prev {row.previous_attach_rate:.2f}%), trend {row.trend}",
            )
        for err in result.errors:
            scope = f"Store {err.store_id}" + (f" brand {err.brand_id}" if err.brand_id else "")
            step.log_warning(f"{scope} skipped — {err.error_type}: {err.message}")

        step.log_output("stores", stores_to_frame(result.evaluated))
        step.log_summary(
            evaluated=result.metadata["stores_evaluated"],
            returned=result.metadata["filtered_count"],
            errors=result.metadata["error_count"],
        )

    if tracer:
        _trace_store(tracer, result)

    # ── Step 3: Summary & Insights ────────────────────────────────────
    with StepLogger("3", "Portfolio Summary & Insights", "src.step_3") as step:
        s = result.summary
        step.log_summary(
            total=s.total, green=s.green, amber=s.amber, red=s.red,
            avg_attach=s.average_attach_rate, improving=s.improving_stores,
        )
        for insight in result.insights:
            step.log_calc("insight", kind=insight.kind, title=insight.title, detail=insight.message)
        logger.info(s.summary())

    # ── Step 4: Output ────────────────────────────────────────────────
    if output_path:
        with StepLogger("4", "Output Export", "src.step_4") as step:
            Path(output_path).parent.mkdir(parents=True, exist_ok=True)
            fmt = "xlsx" if output_path.endswith(".xlsx") else "csv"
            export_to_file(result, output_path, format=fmt)
            step.log_output("file", output_path, fmt)

    if tracer:
        logger.info(tracer.report())

    logger.info("Run complete")
    return result


def _split_ids(value: str) -> List[str]:
    return [v.strip() for v in value.split(",") if v.strip()]


def main():
    parser = argparse.ArgumentParser(description="Attach-Rate RAG Engine")
    parser.add_argument("--snapshot", required=True, help="JSON/YAML snapshot of stores, brands, salesRecords")
    parser.add_argument("--reference-date", type=date.fromisoformat, help="Evaluation date (YYYY-MM-DD)")
    parser.add_argument("--window", choices=["today", "7days", "30days", "month"], help="Sales window")
    parser.add_argument("--tier", help="Tier filter (A+, A, B, C, D)")
    parser.add_argument("--brand", help="Brand filter (id or name)")
    parser.add_argument("--city", help="City filter")
    parser.add_argument("--status", choices=["all", "green", "amber", "red"], help="Status filter")
    parser.add_argument("--granularity", choices=["store", "brand"])
    parser.add_argument("--executive-stores", type=_split_ids,
                        help="Comma-separated assigned store ids (executive-scoped run)")
    parser.add_argument("--criteria", help="Criteria YAML (default: config/rag_criteria.yaml)")
    parser.add_argument("--output", help="Output file path (.csv or .xlsx)")
    parser.add_argument("--trace-store", help="Store id to trace through the run")
    parser.add_argument("--log-level", default="INFO", choices=["DEBUG", "INFO", "WARNING"])

    args = parser.parse_args()
    setup_logging(console_level=args.log_level)

    try:
        run_engine(
            snapshot_path=args.snapshot,
            reference_date=args.reference_date,
            time_window=args.window,
            tier=args.tier,
            brand=args.brand,
            city=args.city,
            status=args.status,
            granularity=args.granularity,
            executive_store_ids=args.executive_stores,
            output_path=args.output,
            criteria_path=args.criteria,
            trace_store_id=args.trace_store,
        )
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Run failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
