"""Step 9: Priority Sort & Filters.

Sort order: final status severity (Red, Amber, Green), then ascending attach
rate (weakest first), then store id, so equal inputs always give the same
order. Filters are plain value filters combined with AND; "all" (or None)
switches a filter off.
"""

from typing import Iterable, List, Optional, Sequence

from src.config import normalize_tier
from src.models import Brand, Store
from src.classification.rag import SEVERITY, RED, normalize_status
from src.classification.store_rollup import StoreResult

_ALL_VALUES = {"", "all", "all city", "all cities", "all brands", "all tiers"}


def is_all(value) -> bool:
    """True when a filter value means 'no filter'."""
    return value is None or str(value).strip().lower() in _ALL_VALUES


def priority_key(result: StoreResult):
    return (-SEVERITY[result.final_status], result.attach_rate, result.store_id)


def sort_by_priority(results: Iterable[StoreResult]) -> List[StoreResult]:
    return sorted(results, key=priority_key)


def worst_stores(results: Iterable[StoreResult], limit: int = 3) -> List[StoreResult]:
    """The ``limit`` most urgent Red stores."""
    reds = [r for r in results if r.final_status == RED]
    return sort_by_priority(reds)[:limit]


# ── Filters ──────────────────────────────────────────────────────────

def filter_stores_by_city(stores: Sequence[Store], city: Optional[str]) -> List[Store]:
    if is_all(city):
        return list(stores)
    target = city.strip().lower()
    return [s for s in stores if (s.city or "").strip().lower() == target]


def filter_by_tier(results: Iterable[StoreResult], tier: Optional[str]) -> List[StoreResult]:
    if is_all(tier):
        return list(results)
    target = normalize_tier(tier)
    return [r for r in results if r.tier == target]


def filter_by_status(results: Iterable[StoreResult], status: Optional[str]) -> List[StoreResult]:
    if is_all(status):
        return list(results)
    target = normalize_status(status)
    return [r for r in results if r.final_status == target]


def resolve_brand_id(brand: Optional[str], brands: Sequence[Brand] = ()) -> Optional[str]:
    """Resolve a brand filter given as an id or a display name.

    Ids win over names. An unknown value is returned unchanged, so no store
    matches it.
    """
    if is_all(brand):
        return None
    value = str(brand).strip()
    for b in brands:
        if b.id == value:
            return b.id
    lowered = value.lower()
    for b in brands:
        if (b.name or "").strip().lower() == lowered:
            return b.id
    return value

