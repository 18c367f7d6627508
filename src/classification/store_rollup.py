"""Step 6: Per-Store Aggregation — roll brand classifications up to the store.

For each store:
  6a. Classify every partner brand at its own tier (brand-level RAGResults)
  6b. Tally colours and trends; overall status = worst brand status
  6c. Build the store row at the requested granularity:
        - brand filter: the filtered brand's own classification
        - "store": the representative (first listed) tier scored on the
          store's pooled attach rate
        - "brand": the worst-case brand status on the mean brand attach rate

A brand paired with an unknown tier is reported on the row and skipped;
only a bad tier that drives the row fails the whole store.
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from src.config import RAGConfig
from src.models import PartnerBrand, SalesRecord, Store
from src.classification.attach_rate import (
    AttachRates, EvaluationPeriod, resolve_attach_rates,
)
from src.classification.errors import MissingTierError, RAGEngineError
from src.classification.rag import (
    DECLINED, IMPROVED, STABLE, GREEN, AMBER, RED,
    RAGResult, evaluate_pairing, monthly_trend, priority_level, worst_status,
)

UNKNOWN_BRAND = "Unknown Brand"


@dataclass
class StoreRAGSummary:
    """Worst-case status and brand tallies for one store."""
    overall_status: str = GREEN
    total_brands: int = 0
    green_brands: int = 0
    amber_brands: int = 0
    red_brands: int = 0
    improving_brands: int = 0
    declining_brands: int = 0
    stable_brands: int = 0

    @property
    def improving(self) -> bool:
        return self.improving_brands > self.declining_brands

    @property
    def declining(self) -> bool:
        return self.declining_brands > self.improving_brands


def summarise_store(brand_results: Sequence[RAGResult]) -> StoreRAGSummary:
    """Overall status is the max severity of the brand final statuses.

    A store with no brand evaluations is Green.
    """
    finals = [r.final_status for r in brand_results]
    trends = [r.trend for r in brand_results]
    return StoreRAGSummary(
        overall_status=worst_status(finals),
        total_brands=len(brand_results),
        green_brands=finals.count(GREEN),
        amber_brands=finals.count(AMBER),
        red_brands=finals.count(RED),
        improving_brands=trends.count(IMPROVED),
        declining_brands=trends.count(DECLINED),
        stable_brands=trends.count(STABLE),
    )


@dataclass(frozen=True)
class BrandError:
    """A store/brand pairing that could not be classified."""
    brand_id: str
    brand_name: str
    error_type: str
    message: str


@dataclass
class StoreResult:
    """One output row per evaluated store."""
    store_id: str
    store_name: str
    city: str
    tier: str
    attach_rate: float
    previous_attach_rate: float
    base_status: str
    final_status: str
    trend: str
    plan_sales: float = 0.0
    device_sales: float = 0.0
    total_revenue: float = 0.0
    brand_id: Optional[str] = None
    brand_results: List[RAGResult] = field(default_factory=list)
    brand_summary: StoreRAGSummary = field(default_factory=StoreRAGSummary)
    brand_errors: List[BrandError] = field(default_factory=list)

    @property
    def overall_status(self) -> str:
        return self.brand_summary.overall_status

    @property
    def priority(self) -> str:
        return priority_level(self.final_status, self.trend)

    @property
    def improving(self) -> bool:
        return self.brand_summary.improving

    @property
    def declining(self) -> bool:
        return self.brand_summary.declining


def _resolve_tier(tier: Optional[str], store: Store, config: RAGConfig) -> str:
    """Apply the configured missing-tier default, or fail for this store."""
    if tier:
        return tier
    if config.missing_tier_default is None:
        raise MissingTierError(store.id)
    return config.missing_tier_default


def _rates(
    records: Sequence[SalesRecord],
    period: EvaluationPeriod,
    config: RAGConfig,
    brand_id: Optional[str],
    window_days: Optional[int],
) -> AttachRates:
    return resolve_attach_rates(
        records,
        period,
        brand_id=brand_id,
        window_days=window_days,
        month_days=config.month_days,
        use_window_rate=config.use_window_attach_rate,
        lookback_months=config.trend_lookback_months,
    )


def evaluate_brand(
    pair: PartnerBrand,
    store: Store,
    records: Sequence[SalesRecord],
    period: EvaluationPeriod,
    config: RAGConfig,
    brand_names: Dict[str, str],
    window_days: Optional[int] = None,
) -> RAGResult:
    """Classify one partner brand at the tier paired with it on the store."""
    rates = _rates(records, period, config, pair.brand_id, window_days)
    return evaluate_pairing(
        _resolve_tier(pair.tier, store, config),
        rates.current,
        rates.previous,
        config.tier_thresholds,
        brand_id=pair.brand_id,
        brand_name=brand_names.get(pair.brand_id, UNKNOWN_BRAND),
    )


def evaluate_store(
    store: Store,
    records: Sequence[SalesRecord],
    period: EvaluationPeriod,
    config: RAGConfig,
    brand_names: Dict[str, str] = None,
    brand_id: Optional[str] = None,
    window_days: Optional[int] = None,
    granularity: Optional[str] = None,
) -> Optional[StoreResult]:
    """Classify a store and its partner brands.

    Returns None when ``brand_id`` is given and the store does not carry
    that brand. A brand whose tier is bad is recorded in ``brand_errors``
    and left out of the roll-up. RAGEngineError is raised only when the bad
    tier drives the store row: the representative tier, the filtered
    brand, or any brand at "brand" granularity.
    """
    brand_names = brand_names or {}
    granularity = granularity or config.granularity

    if brand_id is not None:
        pair = store.tier_for(brand_id)
        if pair is None:
            return None
        pairs = [pair]
    else:
        pairs = store.partner_brands

    brand_results = []
    brand_errors = []
    for pb in pairs:
        try:
            brand_results.append(
                evaluate_brand(pb, store, records, period, config, brand_names, window_days)
            )
        except RAGEngineError as e:
            if brand_id is not None or granularity == "brand":
                raise
            brand_errors.append(BrandError(
                brand_id=pb.brand_id,
                brand_name=brand_names.get(pb.brand_id, UNKNOWN_BRAND),
                error_type=type(e).__name__,
                message=str(e),
            ))
    brand_summary = summarise_store(brand_results)

    if brand_id is not None:
        row = brand_results[0]
        rates = _rates(records, period, config, brand_id, window_days)
        base_status, final_status = row.base_status, row.final_status
        tier, trend = row.tier, row.trend
        current, previous = row.current_attach_rate, row.previous_attach_rate
    else:
        tier = _resolve_tier(store.representative_tier, store, config)
        rates = _rates(records, period, config, None, window_days)
        current, previous = rates.current, rates.previous
        if granularity == "brand":
            # row rate is the mean over partner brands, matching its status
            if brand_results:
                current = float(np.mean([r.current_attach_rate for r in brand_results]))
                previous = float(np.mean([r.previous_attach_rate for r in brand_results]))
            base_status = worst_status(r.base_status for r in brand_results)
            final_status = brand_summary.overall_status
            trend = monthly_trend(current, previous)
        else:
            row = evaluate_pairing(tier, current, previous, config.tier_thresholds)
            base_status, final_status, trend = row.base_status, row.final_status, row.trend

    return StoreResult(
        store_id=store.id,
        store_name=store.name,
        city=store.city,
        tier=tier,
        attach_rate=current,
        previous_attach_rate=previous,
        base_status=base_status,
        final_status=final_status,
        trend=trend,
        plan_sales=rates.plan_sales,
        device_sales=rates.device_sales,
        total_revenue=rates.revenue,
        brand_id=brand_id,
        brand_results=brand_results,
        brand_summary=brand_summary,
        brand_errors=brand_errors,
    )
