"""RAG engine orchestration — one shared pass for every caller.

  run_rag_analysis()  organisation-wide: every store handed in
  run_for_executive() identity-scoped: stores pre-filtered to an executive's
                      assignments, then the same pass

Both callers go through the same evaluation, summary, insight and sorting
code; only the input store set differs. The engine does no I/O and does not
log. Store-level data faults are returned as StoreError entries rather than
aborting the batch.
"""

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date
from typing import Dict, List, Optional, Sequence, Tuple

from src.config import GRANULARITIES, TIME_WINDOWS, RAGConfig
from src.models import Brand, SalesRecord, Store, index_records_by_store
from src.classification.attach_rate import EvaluationPeriod
from src.classification.errors import InvalidRequestError, RAGEngineError
from src.classification.rag import normalize_status
from src.classification.store_rollup import StoreResult, evaluate_store
from src.reporting.insights import Insight, coverage_insight, generate_insights
from src.reporting.portfolio import PortfolioSummary, summarise_portfolio
from src.reporting.prioritise import (
    filter_by_status, filter_by_tier, filter_stores_by_city, is_all,
    resolve_brand_id, sort_by_priority, worst_stores,
)


@dataclass
class RAGRequest:
    """Caller-supplied parameters for one classification pass."""
    reference_date: Optional[date] = None
    time_window: Optional[str] = None
    tier: Optional[str] = None
    brand: Optional[str] = None
    status: Optional[str] = None
    city: Optional[str] = None
    granularity: Optional[str] = None

    def resolve(self, config: RAGConfig) -> "RAGRequest":
        """Fill defaults from config and reject malformed parameters."""
        reference_date = self.reference_date or config.reference_date
        if reference_date is None:
            raise InvalidRequestError(
                "reference_date is required (pass it on the request or pin it in config)"
            )
        if isinstance(reference_date, str):
            try:
                reference_date = date.fromisoformat(reference_date)
            except ValueError:
                raise InvalidRequestError(
                    f"reference_date {reference_date!r} is not an ISO date (YYYY-MM-DD)"
                ) from None

        window = (self.time_window or config.default_time_window).strip().lower()
        if window not in TIME_WINDOWS:
            raise InvalidRequestError(
                f"Unknown time window {self.time_window!r}; expected one of {sorted(TIME_WINDOWS)}"
            )

        granularity = self.granularity or config.granularity
        if granularity not in GRANULARITIES:
            raise InvalidRequestError(
                f"Unknown granularity {granularity!r}; expected one of {list(GRANULARITIES)}"
            )

        status = None if is_all(self.status) else normalize_status(self.status)

        return RAGRequest(
            reference_date=reference_date,
            time_window=window,
            tier=self.tier,
            brand=self.brand,
            status=status,
            city=self.city,
            granularity=granularity,
        )


@dataclass(frozen=True)
class StoreError:
    """A store, or one of its brand pairings, that could not be classified."""
    store_id: str
    store_name: str
    error_type: str
    message: str
    brand_id: Optional[str] = None


@dataclass
class EngineResult:
    """Everything one pass produces for the presentation layer."""
    stores: List[StoreResult] = field(default_factory=list)
    summary: PortfolioSummary = field(default_factory=PortfolioSummary)
    insights: List[Insight] = field(default_factory=list)
    errors: List[StoreError] = field(default_factory=list)
    evaluated: List[StoreResult] = field(default_factory=list)
    metadata: Dict = field(default_factory=dict)


# ══════════════════════════════════════════════════════════════════════
#  Per-store fan-out
# ══════════════════════════════════════════════════════════════════════

def _evaluate_one(
    store: Store,
    records_by_store: Dict[str, List[SalesRecord]],
    period: EvaluationPeriod,
    config: RAGConfig,
    brand_names: Dict[str, str],
    brand_id: Optional[str],
    window_days: Optional[int],
    granularity: str,
) -> Tuple[Optional[StoreResult], Optional[StoreError]]:
    try:
        result = evaluate_store(
            store,
            records_by_store.get(store.id, []),
            period,
            config,
            brand_names=brand_names,
            brand_id=brand_id,
            window_days=window_days,
            granularity=granularity,
        )
    except RAGEngineError as e:
        return None, StoreError(
            store_id=store.id,
            store_name=store.name,
            error_type=type(e).__name__,
            message=str(e),
        )
    return result, None


def evaluate_stores(
    stores: Sequence[Store],
    records: Sequence[SalesRecord],
    period: EvaluationPeriod,
    config: RAGConfig,
    brand_names: Dict[str, str] = None,
    brand_id: Optional[str] = None,
    window_days: Optional[int] = None,
    granularity: Optional[str] = None,
) -> Tuple[List[StoreResult], List[StoreError]]:
    """Classify every store, one task per store on a bounded thread pool.

    Results come back in input order; stores without the filtered brand are
    dropped. Faulty stores, then faulty brand pairings of classified stores,
    are reported in the error list.
    """
    records_by_store = index_records_by_store(records)
    brand_names = brand_names or {}
    granularity = granularity or config.granularity

    def task(store):
        return _evaluate_one(
            store, records_by_store, period, config,
            brand_names, brand_id, window_days, granularity,
        )

    workers = min(config.max_workers, len(stores))
    if workers <= 1:
        outcomes = [task(s) for s in stores]
    else:
        with ThreadPoolExecutor(max_workers=workers) as pool:
            outcomes = list(pool.map(task, stores))

    results = [r for r, _ in outcomes if r is not None]
    errors = [e for _, e in outcomes if e is not None]
    for r in results:
        errors.extend(
            StoreError(
                store_id=r.store_id,
                store_name=r.store_name,
                error_type=b.error_type,
                message=b.message,
                brand_id=b.brand_id,
            )
            for b in r.brand_errors
        )
    return results, errors


# ══════════════════════════════════════════════════════════════════════
#  Shared pass
# ══════════════════════════════════════════════════════════════════════

def run_rag_analysis(
    stores: Sequence[Store],
    records: Sequence[SalesRecord],
    brands: Sequence[Brand] = (),
    request: RAGRequest = None,
    config: RAGConfig = None,
) -> EngineResult:
    """Classify, summarise, explain and order a set of stores.

    The portfolio summary and insights cover every evaluated store that
    passed the tier, brand and city filters; the status filter only narrows
    the returned ``stores`` list.
    """
    config = config or RAGConfig()
    req = (request or RAGRequest()).resolve(config)
    period = EvaluationPeriod.from_reference_date(req.reference_date)
    window_days = TIME_WINDOWS[req.time_window]
    brand_id = resolve_brand_id(req.brand, brands)
    brand_names = {b.id: b.name for b in brands}

    candidates = filter_stores_by_city(stores, req.city)
    results, errors = evaluate_stores(
        candidates, records, period, config,
        brand_names=brand_names,
        brand_id=brand_id,
        window_days=window_days,
        granularity=req.granularity,
    )
    results = filter_by_tier(results, req.tier)

    summary = summarise_portfolio(results)
    ordered = sort_by_priority(results)
    worst = worst_stores(ordered, config.worst_store_count)
    insights = generate_insights(summary, [w.store_name for w in worst])
    visible = filter_by_status(ordered, req.status)

    metadata = {
        "reference_date": req.reference_date.isoformat(),
        "current_month": period.month,
        "current_year": period.year,
        "previous_month": period.previous_month,
        "previous_year": period.previous_year,
        "time_window": req.time_window,
        "granularity": req.granularity,
        "criteria": {t: dict(f) for t, f in config.tier_thresholds.items()},
        "filters_applied": {
            "tier": req.tier or "all",
            "brand": req.brand or "all",
            "brand_id": brand_id,
            "city": req.city or "all",
            "status": req.status or "all",
        },
        "stores_requested": len(stores),
        "stores_evaluated": len(results),
        "filtered_count": len(visible),
        "error_count": len(errors),
    }

    return EngineResult(
        stores=visible,
        summary=summary,
        insights=insights,
        errors=errors,
        evaluated=ordered,
        metadata=metadata,
    )


# ══════════════════════════════════════════════════════════════════════
#  Identity-scoped caller
# ══════════════════════════════════════════════════════════════════════

def scope_stores(stores: Sequence[Store], assigned_store_ids: Sequence[str]) -> List[Store]:
    """Keep only the stores assigned to the caller, in input order."""
    allowed = {str(sid) for sid in assigned_store_ids}
    return [s for s in stores if s.id in allowed]


def run_for_executive(
    stores: Sequence[Store],
    records: Sequence[SalesRecord],
    assigned_store_ids: Sequence[str],
    brands: Sequence[Brand] = (),
    request: RAGRequest = None,
    config: RAGConfig = None,
) -> EngineResult:
    """Run the shared pass over an executive's assigned stores only."""
    scoped = scope_stores(stores, assigned_store_ids)
    result = run_rag_analysis(scoped, records, brands, request, config)
    result.insights.append(coverage_insight(len(result.evaluated)))
    result.metadata["assigned_store_count"] = len(set(map(str, assigned_store_ids)))
    result.metadata["authorized_store_count"] = len(scoped)
    return result
