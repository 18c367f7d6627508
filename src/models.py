"""Input records handed to the engine by the storage layer.

Stores, brands and sales records are read-only inputs: the engine never
mutates them. ``from_dict`` constructors accept the camelCase document shape
used by the platform's datastore (``partnerBrandIds``, ``monthlySales``, ...)
as well as snake_case keys.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence

from src.config import normalize_tier


def _pick(raw: dict, *keys, default=None):
    for key in keys:
        if key in raw and raw[key] is not None:
            return raw[key]
    return default


def _to_number(value) -> float:
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def _to_fraction(value) -> Optional[float]:
    """attachPct is optional: keep None distinct from a real 0 reading."""
    if value is None or value == "":
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _to_date(value) -> Optional[date]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if not text:
        return None
    # ISO timestamps ("2025-09-14T00:00:00.000Z") keep only the date part
    return date.fromisoformat(text[:10])


# ── Store / Brand ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class PartnerBrand:
    """A brand carried by a store together with its tier at that store."""
    brand_id: str
    tier: Optional[str]


@dataclass
class Store:
    id: str
    name: str
    city: str = ""
    partner_brands: List[PartnerBrand] = field(default_factory=list)

    @property
    def brand_ids(self) -> List[str]:
        return [pb.brand_id for pb in self.partner_brands]

    @property
    def representative_tier(self) -> Optional[str]:
        """The first listed tier stands in for the whole store.

        None when the store lists no brands or its first tier is empty.
        """
        if not self.partner_brands:
            return None
        return self.partner_brands[0].tier

    def tier_for(self, brand_id: str) -> Optional[PartnerBrand]:
        for pb in self.partner_brands:
            if pb.brand_id == brand_id:
                return pb
        return None

    @classmethod
    def from_parallel(
        cls,
        id: str,
        name: str,
        city: str,
        brand_ids: Sequence[str],
        brand_types: Sequence[str],
    ) -> "Store":
        """Build a store from index-aligned brand id / tier sequences.

        Unequal lengths are tolerated: only the overlapping prefix is kept.
        """
        pairs = [
            PartnerBrand(brand_id=str(bid), tier=normalize_tier(btype))
            for bid, btype in zip(brand_ids or [], brand_types or [])
        ]
        return cls(id=str(id), name=name or "", city=city or "", partner_brands=pairs)

    @classmethod
    def from_dict(cls, raw: dict) -> "Store":
        if "partner_brands" in raw:
            pairs = [
                PartnerBrand(
                    brand_id=str(_pick(pb, "brand_id", "brandId")),
                    tier=normalize_tier(_pick(pb, "tier", "brandType")),
                )
                for pb in raw["partner_brands"]
            ]
            return cls(
                id=str(raw["id"]),
                name=_pick(raw, "name", "storeName", default=""),
                city=_pick(raw, "city", default=""),
                partner_brands=pairs,
            )
        return cls.from_parallel(
            id=raw["id"],
            name=_pick(raw, "name", "storeName", default=""),
            city=_pick(raw, "city", default=""),
            brand_ids=_pick(raw, "partnerBrandIds", "partner_brand_ids", default=[]),
            brand_types=_pick(raw, "partnerBrandTypes", "partner_brand_types", default=[]),
        )


@dataclass(frozen=True)
class Brand:
    id: str
    name: str

    @classmethod
    def from_dict(cls, raw: dict) -> "Brand":
        return cls(id=str(raw["id"]), name=_pick(raw, "name", "brandName", default=""))


# ── Sales ─────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class MonthlySales:
    month: int
    device_sales: float = 0.0
    plan_sales: float = 0.0
    attach_pct: Optional[float] = None   # 0–1 fraction from ingestion
    revenue: float = 0.0

    @classmethod
    def from_dict(cls, raw: dict) -> "MonthlySales":
        return cls(
            month=int(raw["month"]),
            device_sales=_to_number(_pick(raw, "deviceSales", "device_sales")),
            plan_sales=_to_number(_pick(raw, "planSales", "plan_sales")),
            attach_pct=_to_fraction(_pick(raw, "attachPct", "attach_pct")),
            revenue=_to_number(_pick(raw, "revenue")),
        )


@dataclass(frozen=True)
class DailySales:
    date: date
    device_sales: float = 0.0
    plan_sales: float = 0.0
    attach_pct: Optional[float] = None
    revenue: float = 0.0

    @classmethod
    def from_dict(cls, raw: dict) -> "DailySales":
        return cls(
            date=_to_date(raw["date"]),
            device_sales=_to_number(_pick(raw, "deviceSales", "device_sales")),
            plan_sales=_to_number(_pick(raw, "planSales", "plan_sales")),
            attach_pct=_to_fraction(_pick(raw, "attachPct", "attach_pct")),
            revenue=_to_number(_pick(raw, "revenue")),
        )


@dataclass
class SalesRecord:
    """Sales for one (store, brand, category, year)."""
    store_id: str
    brand_id: str
    category_id: str
    year: int
    monthly_sales: List[MonthlySales] = field(default_factory=list)
    daily_sales: Dict[int, List[DailySales]] = field(default_factory=dict)

    def month_entry(self, month: int) -> Optional[MonthlySales]:
        for entry in self.monthly_sales:
            if entry.month == month:
                return entry
        return None

    def days_in_month(self, month: int) -> List[DailySales]:
        return self.daily_sales.get(month, [])

    @classmethod
    def from_dict(cls, raw: dict) -> "SalesRecord":
        monthly = [MonthlySales.from_dict(m) for m in _pick(raw, "monthlySales", "monthly_sales", default=[])]
        daily_raw = _pick(raw, "dailySales", "daily_sales", default={}) or {}
        daily = {
            int(month): [DailySales.from_dict(d) for d in (days or [])]
            for month, days in daily_raw.items()
        }
        return cls(
            store_id=str(_pick(raw, "storeId", "store_id")),
            brand_id=str(_pick(raw, "brandId", "brand_id")),
            category_id=str(_pick(raw, "categoryId", "category_id", default="")),
            year=int(raw["year"]),
            monthly_sales=monthly,
            daily_sales=daily,
        )


def index_records_by_store(records: Sequence[SalesRecord]) -> Dict[str, List[SalesRecord]]:
    """Group sales records by store id, preserving input order."""
    by_store: Dict[str, List[SalesRecord]] = {}
    for rec in records:
        by_store.setdefault(rec.store_id, []).append(rec)
    return by_store
