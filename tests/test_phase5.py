"""Phase 5 tests — Engine orchestration, executive scoping, output, runner.

Run with: pytest tests/test_phase5.py -v
"""

import json
from datetime import date

import pandas as pd
import pytest
from pandas.testing import assert_frame_equal

from src.config import load_config
from src.models import Brand, MonthlySales, SalesRecord, Store
from src.classification.errors import InvalidRequestError
from src.classification.rag import AMBER, DECLINED, GREEN, IMPROVED, RED, STABLE
from src.engine import RAGRequest, run_for_executive, run_rag_analysis, scope_stores
from src.reporting.output import (
    BRAND_COLUMNS, OUTPUT_COLUMNS, brands_to_frame, export_to_file, stores_to_frame,
)
from src.run_engine import load_snapshot, run_engine

REF = date(2025, 9, 30)


# ── Synthetic Portfolio ───────────────────────────────────────────────
#
#   S1 Alpha   Pune    B1@A         22% (was 25%)  → Green, downgraded to Amber
#   S2 Bravo   Mumbai  B1@D         no sales       → Red
#   S3 Charlie Pune    B2@C, B1@A   14% (was 10%)  → Green; B1 brand Red
#   S4 Delta   Pune    B1@Z         unknown tier   → per-store error

def make_portfolio():
    brands = [Brand(id="B1", name="Samsung"), Brand(id="B2", name="Apple")]
    stores = [
        Store.from_parallel("S1", "Alpha", "Pune", ["B1"], ["A"]),
        Store.from_parallel("S2", "Bravo", "Mumbai", ["B1"], ["D"]),
        Store.from_parallel("S3", "Charlie", "Pune", ["B2", "B1"], ["C", "A"]),
        Store.from_parallel("S4", "Delta", "Pune", ["B1"], ["Z"]),
    ]
    records = [
        SalesRecord("S1", "B1", "CAT1", 2025, [
            MonthlySales(month=9, device_sales=100, plan_sales=22, attach_pct=0.22, revenue=5000),
            MonthlySales(month=8, device_sales=100, plan_sales=25, attach_pct=0.25, revenue=5000),
        ]),
        SalesRecord("S3", "B2", "CAT1", 2025, [
            MonthlySales(month=9, device_sales=50, plan_sales=7, attach_pct=0.14, revenue=2000),
            MonthlySales(month=8, device_sales=50, plan_sales=5, attach_pct=0.10, revenue=2000),
        ]),
    ]
    return stores, records, brands


def run(request=None, **overrides):
    stores, records, brands = make_portfolio()
    request = request or RAGRequest(reference_date=REF)
    return run_rag_analysis(stores, records, brands, request, load_config(overrides or None))


def ids(results):
    return [r.store_id for r in results]


# ══════════════════════════════════════════════════════════════════════
#  Organisation-wide pass
# ══════════════════════════════════════════════════════════════════════

class TestRunRagAnalysis:

    def test_statuses_and_order(self):
        result = run()
        assert ids(result.stores) == ["S2", "S1", "S3"]
        by_id = {r.store_id: r for r in result.stores}
        assert (by_id["S1"].base_status, by_id["S1"].final_status, by_id["S1"].trend) == (GREEN, AMBER, DECLINED)
        assert (by_id["S2"].final_status, by_id["S2"].trend) == (RED, STABLE)
        assert (by_id["S3"].final_status, by_id["S3"].trend) == (GREEN, IMPROVED)
        assert by_id["S3"].overall_status == RED

    def test_bad_store_isolated(self):
        result = run()
        assert len(result.errors) == 1
        err = result.errors[0]
        assert err.store_id == "S4"
        assert err.error_type == "UnknownTierError"
        assert result.metadata["error_count"] == 1
        assert result.metadata["stores_evaluated"] == 3

    def test_summary_and_insights(self):
        result = run()
        s = result.summary
        assert (s.total, s.green, s.amber, s.red) == (3, 1, 1, 1)
        assert s.average_attach_rate == pytest.approx(12.0)
        assert s.improving_stores == 1
        assert s.declining_stores == 1
        action = next(i for i in result.insights if i.title == "Action Required")
        assert action.message == "Bravo needs immediate attention for low attach rates"

    def test_status_filter_keeps_full_summary(self):
        result = run(RAGRequest(reference_date=REF, status="red"))
        assert ids(result.stores) == ["S2"]
        assert result.summary.total == 3
        assert len(result.evaluated) == 3
        assert result.metadata["filtered_count"] == 1

    def test_city_filter(self):
        result = run(RAGRequest(reference_date=REF, city="pune"))
        assert ids(result.stores) == ["S1", "S3"]
        assert ids(result.errors) == ["S4"]

    def test_tier_filter(self):
        result = run(RAGRequest(reference_date=REF, tier="A"))
        assert ids(result.stores) == ["S1"]
        assert result.summary.total == 1

    def test_brand_filter_by_name(self):
        result = run(RAGRequest(reference_date=REF, brand="Apple"))
        assert ids(result.stores) == ["S3"]
        row = result.stores[0]
        assert (row.tier, row.final_status, row.brand_id) == ("C", GREEN, "B2")
        assert result.errors == []
        assert result.metadata["filters_applied"]["brand_id"] == "B2"

    def test_brand_filter_uses_each_stores_tier(self):
        result = run(RAGRequest(reference_date=REF, brand="B1"))
        by_id = {r.store_id: r for r in result.stores}
        assert set(by_id) == {"S1", "S2", "S3"}
        assert (by_id["S3"].tier, by_id["S3"].final_status) == ("A", RED)
        assert ids(result.errors) == ["S4"]

    def test_unknown_brand_matches_nothing(self):
        result = run(RAGRequest(reference_date=REF, brand="Nokia"))
        assert result.stores == []
        assert result.summary.total == 0

    def test_brand_granularity(self):
        result = run(RAGRequest(reference_date=REF, granularity="brand"))
        by_id = {r.store_id: r for r in result.stores}
        assert by_id["S3"].final_status == RED

    def test_short_window_volumes(self):
        result = run(RAGRequest(reference_date=REF, time_window="7days"))
        by_id = {r.store_id: r for r in result.stores}
        assert by_id["S1"].plan_sales == pytest.approx(22 * 7 / 30)
        assert by_id["S1"].attach_rate == pytest.approx(22.0)
        assert result.metadata["time_window"] == "7days"

    def test_january_compares_with_december(self):
        result = run(RAGRequest(reference_date=date(2026, 1, 15)))
        assert result.metadata["previous_month"] == 12
        assert result.metadata["previous_year"] == 2025

    def test_bad_secondary_tier_reported_per_brand(self):
        stores = [Store.from_parallel("S5", "Echo", "Pune", ["B1", "B2"], ["A", "ZZ"])]
        records = [SalesRecord("S5", "B1", "CAT1", 2025, [
            MonthlySales(month=9, device_sales=100, plan_sales=22, attach_pct=0.22),
        ])]
        result = run_rag_analysis(stores, records, [], RAGRequest(reference_date=REF), load_config())

        assert ids(result.stores) == ["S5"]
        assert (result.stores[0].tier, result.stores[0].final_status) == ("A", GREEN)
        assert len(result.errors) == 1
        err = result.errors[0]
        assert (err.store_id, err.brand_id, err.error_type) == ("S5", "B2", "UnknownTierError")
        assert result.metadata["error_count"] == 1

    def test_thread_pool_matches_inline(self):
        pooled = run(max_workers=4)
        inline = run(max_workers=1)
        assert_frame_equal(stores_to_frame(pooled.stores), stores_to_frame(inline.stores))
        assert pooled.summary == inline.summary


# ══════════════════════════════════════════════════════════════════════
#  Request validation
# ══════════════════════════════════════════════════════════════════════

class TestRequest:

    def test_reference_date_required(self):
        stores, records, brands = make_portfolio()
        with pytest.raises(InvalidRequestError):
            run_rag_analysis(stores, records, brands, RAGRequest(), load_config())

    def test_reference_date_from_config(self):
        stores, records, brands = make_portfolio()
        result = run_rag_analysis(stores, records, brands, RAGRequest(),
                                  load_config({"reference_date": "2025-09-30"}))
        assert result.metadata["reference_date"] == "2025-09-30"

    @pytest.mark.parametrize("request_kwargs", [
        {"time_window": "90days"},
        {"status": "purple"},
        {"granularity": "region"},
    ])
    def test_bad_parameters_rejected(self, request_kwargs):
        with pytest.raises(InvalidRequestError):
            run(RAGRequest(reference_date=REF, **request_kwargs))

    @pytest.mark.parametrize("bad_date", ["2025-13-40", "30/09/2025", "yesterday"])
    def test_malformed_reference_date(self, bad_date):
        with pytest.raises(InvalidRequestError, match="ISO date"):
            run(RAGRequest(reference_date=bad_date))

    def test_iso_string_reference_date(self):
        result = run(RAGRequest(reference_date="2025-09-30"))
        assert result.metadata["current_month"] == 9


# ══════════════════════════════════════════════════════════════════════
#  Executive-scoped pass
# ══════════════════════════════════════════════════════════════════════

class TestExecutiveScope:

    def test_scope_stores(self):
        stores, _, _ = make_portfolio()
        assert [s.id for s in scope_stores(stores, ["S3", "S1", "S9"])] == ["S1", "S3"]

    def test_scoped_run(self):
        stores, records, brands = make_portfolio()
        result = run_for_executive(stores, records, ["S1", "S3", "S9"], brands,
                                   RAGRequest(reference_date=REF), load_config())
        assert ids(result.stores) == ["S1", "S3"]
        assert result.summary.total == 2
        assert result.insights[-1].title == "Your Store Coverage"
        assert result.insights[-1].message == "You are managing 2 stores across different performance levels"
        assert result.metadata["assigned_store_count"] == 3
        assert result.metadata["authorized_store_count"] == 2

    def test_scoped_rows_match_org_wide(self):
        stores, records, brands = make_portfolio()
        scoped = run_for_executive(stores, records, ["S1"], brands,
                                   RAGRequest(reference_date=REF), load_config())
        org = run()
        org_row = next(r for r in org.stores if r.store_id == "S1")
        assert scoped.stores[0] == org_row


# ══════════════════════════════════════════════════════════════════════
#  Step 10: Output
# ══════════════════════════════════════════════════════════════════════

class TestOutput:

    def test_frames(self):
        result = run()
        df = stores_to_frame(result.stores)
        assert list(df.columns) == OUTPUT_COLUMNS
        assert df.loc[df["store_id"] == "S1", "attach_rate"].iloc[0] == 22.0
        brands = brands_to_frame(result.stores)
        assert list(brands.columns) == BRAND_COLUMNS
        assert len(brands) == 4

    def test_empty_frame_keeps_columns(self):
        assert list(stores_to_frame([]).columns) == OUTPUT_COLUMNS

    def test_csv_export(self, tmp_path):
        path = tmp_path / "rag.csv"
        export_to_file(run(), str(path), format="csv")
        df = pd.read_csv(path)
        assert len(df) == 3
        assert {"version", "created_at"} <= set(df.columns)

    def test_xlsx_export(self, tmp_path):
        path = tmp_path / "rag.xlsx"
        export_to_file(run(), str(path), format="xlsx")
        assert pd.ExcelFile(path).sheet_names == ["Stores", "Brands", "Summary", "Insights"]


# ══════════════════════════════════════════════════════════════════════
#  Runner
# ══════════════════════════════════════════════════════════════════════

def write_snapshot(path):
    snapshot = {
        "stores": [
            {"id": "S1", "storeName": "Alpha", "city": "Pune",
             "partnerBrandIds": ["B1"], "partnerBrandTypes": ["A_PLUS"]},
            {"id": "S2", "storeName": "Bravo", "city": "Mumbai",
             "partnerBrandIds": ["B1"], "partnerBrandTypes": ["D"]},
        ],
        "brands": [{"id": "B1", "brandName": "Samsung"}],
        "salesRecords": [
            {"storeId": "S1", "brandId": "B1", "categoryId": "CAT1", "year": 2025,
             "monthlySales": [{"month": 9, "deviceSales": 100, "planSales": 30, "attachPct": 0.3}]},
        ],
    }
    path.write_text(json.dumps(snapshot))
    return path


class TestRunner:

    def test_load_snapshot(self, tmp_path):
        snap = load_snapshot(str(write_snapshot(tmp_path / "snap.json")))
        assert [s.id for s in snap["stores"]] == ["S1", "S2"]
        assert snap["stores"][0].representative_tier == "A+"
        assert snap["brands"][0].name == "Samsung"
        assert snap["records"][0].month_entry(9).attach_pct == 0.3

    def test_missing_snapshot(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_snapshot(str(tmp_path / "nope.json"))

    def test_run_engine_end_to_end(self, tmp_path):
        snap = write_snapshot(tmp_path / "snap.json")
        out = tmp_path / "out" / "rag.csv"
        result = run_engine(str(snap), reference_date=REF, output_path=str(out), trace_store_id="S1")
        assert ids(result.stores) == ["S2", "S1"]
        assert result.stores[1].final_status == GREEN
        assert out.exists()

    def test_run_engine_reads_shipped_criteria_by_default(self, tmp_path, monkeypatch):
        criteria = tmp_path / "criteria.yaml"
        criteria.write_text("engine:\n  granularity: brand\n  default_time_window: 7days\n")
        monkeypatch.setattr("src.run_engine.CRITERIA_FILE", criteria)
        result = run_engine(str(write_snapshot(tmp_path / "snap.json")), reference_date=REF)
        assert result.metadata["granularity"] == "brand"
        assert result.metadata["time_window"] == "7days"

    def test_explicit_criteria_overrides_default(self, tmp_path, monkeypatch):
        monkeypatch.setattr("src.run_engine.CRITERIA_FILE", tmp_path / "missing.yaml")
        criteria = tmp_path / "criteria.yaml"
        criteria.write_text("engine:\n  granularity: brand\n")
        result = run_engine(str(write_snapshot(tmp_path / "snap.json")),
                            reference_date=REF, criteria_path=str(criteria))
        assert result.metadata["granularity"] == "brand"

    def test_run_engine_executive(self, tmp_path):
        snap = write_snapshot(tmp_path / "snap.json")
        result = run_engine(str(snap), reference_date=REF, executive_store_ids=["S2"])
        assert ids(result.stores) == ["S2"]
        assert result.insights[-1].title == "Your Store Coverage"
