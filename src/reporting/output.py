"""Step 10: Output Generation — tabular views and file export of a run.

Turns store rows, brand details and insights into pandas DataFrames with a
fixed column order and writes them to CSV or to a multi-sheet workbook.
"""

import logging
from datetime import datetime
from typing import Sequence

import pandas as pd

logger = logging.getLogger(__name__)

OUTPUT_VERSION = "1.0.0"

OUTPUT_COLUMNS = [
    "store_id", "store_name", "city", "tier", "brand_id",
    "attach_rate", "previous_attach_rate",
    "base_status", "final_status", "overall_status", "trend", "priority",
    "plan_sales", "device_sales", "total_revenue",
    "total_brands", "green_brands", "amber_brands", "red_brands",
    "improving_brands", "declining_brands", "stable_brands",
]

BRAND_COLUMNS = [
    "store_id", "store_name", "brand_id", "brand_name", "tier",
    "current_attach_rate", "previous_attach_rate",
    "base_status", "final_status", "trend", "downgraded",
]

INSIGHT_COLUMNS = ["kind", "title", "message", "count"]


def stores_to_frame(results: Sequence, rounded: bool = True) -> pd.DataFrame:
    """One row per store result, in OUTPUT_COLUMNS order.

    Attach rates are rounded to 2 dp unless ``rounded`` is False.
    """
    rows = []
    for r in results:
        b = r.brand_summary
        rows.append({
            "store_id": r.store_id,
            "store_name": r.store_name,
            "city": r.city,
            "tier": r.tier,
            "brand_id": r.brand_id,
            "attach_rate": r.attach_rate,
            "previous_attach_rate": r.previous_attach_rate,
            "base_status": r.base_status,
            "final_status": r.final_status,
            "overall_status": r.overall_status,
            "trend": r.trend,
            "priority": r.priority,
            "plan_sales": r.plan_sales,
            "device_sales": r.device_sales,
            "total_revenue": r.total_revenue,
            "total_brands": b.total_brands,
            "green_brands": b.green_brands,
            "amber_brands": b.amber_brands,
            "red_brands": b.red_brands,
            "improving_brands": b.improving_brands,
            "declining_brands": b.declining_brands,
            "stable_brands": b.stable_brands,
        })

    df = pd.DataFrame(rows, columns=OUTPUT_COLUMNS)
    if rounded and not df.empty:
        df["attach_rate"] = df["attach_rate"].round(2)
        df["previous_attach_rate"] = df["previous_attach_rate"].round(2)
    return df


def brands_to_frame(results: Sequence) -> pd.DataFrame:
    """Flatten every store's brand-level classifications."""
    rows = []
    for r in results:
        for b in r.brand_results:
            rows.append({
                "store_id": r.store_id,
                "store_name": r.store_name,
                "brand_id": b.brand_id,
                "brand_name": b.brand_name,
                "tier": b.tier,
                "current_attach_rate": round(b.current_attach_rate, 2),
                "previous_attach_rate": round(b.previous_attach_rate, 2),
                "base_status": b.base_status,
                "final_status": b.final_status,
                "trend": b.trend,
                "downgraded": b.downgraded,
            })
    return pd.DataFrame(rows, columns=BRAND_COLUMNS)


def insights_to_frame(insights: Sequence) -> pd.DataFrame:
    return pd.DataFrame(
        [{"kind": i.kind, "title": i.title, "message": i.message, "count": i.count}
         for i in insights],
        columns=INSIGHT_COLUMNS,
    )


def export_to_file(
    result,
    output_path: str,
    format: str = "csv",
) -> str:
    """Export an engine result to a file.

    csv writes the store table only; xlsx writes Stores, Brands, Summary
    and Insights sheets.
    """
    stores_df = stores_to_frame(result.stores)
    stores_df["version"] = OUTPUT_VERSION
    stores_df["created_at"] = datetime.now().isoformat()

    if format == "xlsx":
        with pd.ExcelWriter(output_path, engine="openpyxl") as writer:
            stores_df.to_excel(writer, sheet_name="Stores", index=False)
            brands_to_frame(result.stores).to_excel(writer, sheet_name="Brands", index=False)
            summary_df = pd.DataFrame([result.summary.to_dict()])
            summary_df.to_excel(writer, sheet_name="Summary", index=False)
            insights_to_frame(result.insights).to_excel(writer, sheet_name="Insights", index=False)
    else:
        stores_df.to_csv(output_path, index=False)

    logger.info(f"Exported to {output_path} ({format})")
    return output_path
