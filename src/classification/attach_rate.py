"""Step 1: Attach-Rate Resolution — current vs previous period attach rates.

Reads monthly and daily sales records for a store (optionally narrowed to a
single brand) and resolves:
  1a. The evaluation period (current month + comparison month, with the
      December → January year rollover)
  1b. Monthly attach-rate readings (stored attachPct is authoritative)
  1c. Short-window sales totals (daily entries, or a monthly approximation)
  1d. The trailing device average and window attach rate

Attach rates are percentages (0–100+). Missing data resolves to 0.
"""

from dataclasses import dataclass, field
from datetime import date, timedelta
from typing import List, Optional, Sequence, Tuple

import numpy as np

from src.models import SalesRecord


# ══════════════════════════════════════════════════════════════════════
#  Step 1a: Evaluation Period
# ══════════════════════════════════════════════════════════════════════

def previous_month(year: int, month: int) -> Tuple[int, int]:
    """Return (year, month) of the month before, rolling over January."""
    if month == 1:
        return year - 1, 12
    return year, month - 1


@dataclass(frozen=True)
class EvaluationPeriod:
    """The month being scored and the month it is compared against."""
    reference_date: date
    year: int
    month: int
    previous_year: int
    previous_month: int

    @classmethod
    def from_reference_date(cls, reference_date: date) -> "EvaluationPeriod":
        prev_year, prev_month = previous_month(reference_date.year, reference_date.month)
        return cls(
            reference_date=reference_date,
            year=reference_date.year,
            month=reference_date.month,
            previous_year=prev_year,
            previous_month=prev_month,
        )

    def lookback(self, months: int) -> List[Tuple[int, int]]:
        """The last ``months`` complete months, most recent first."""
        pairs = []
        y, m = self.previous_year, self.previous_month
        for _ in range(months):
            pairs.append((y, m))
            y, m = previous_month(y, m)
        return pairs


# ══════════════════════════════════════════════════════════════════════
#  Step 1b: Monthly Readings
# ══════════════════════════════════════════════════════════════════════

@dataclass
class MonthReading:
    """Pooled monthly figures across every matching record."""
    rate: float = 0.0
    plan_sales: float = 0.0
    device_sales: float = 0.0
    revenue: float = 0.0
    readings: List[float] = field(default_factory=list)


def attach_rate(plan_sales: float, device_sales: float) -> float:
    """Attach rate from raw counts, rounded to 2 dp. 0 when no devices sold."""
    if not device_sales:
        return 0.0
    return round(plan_sales / device_sales * 100, 2)


def select_records(
    records: Sequence[SalesRecord],
    brand_id: Optional[str] = None,
) -> List[SalesRecord]:
    """Narrow a store's records to one brand (all categories), or keep all."""
    if brand_id is None:
        return list(records)
    return [r for r in records if r.brand_id == brand_id]


def read_month(records: Sequence[SalesRecord], year: int, month: int) -> MonthReading:
    """Pool one month across records.

    Device/plan sales and revenue are summed. The attach rate is the mean of
    the stored attachPct readings actually present (×100), so records with
    no reading do not dilute it. With no reading at all the rate is 0.
    """
    reading = MonthReading()
    for rec in records:
        if rec.year != year:
            continue
        entry = rec.month_entry(month)
        if entry is None:
            continue
        reading.plan_sales += entry.plan_sales
        reading.device_sales += entry.device_sales
        reading.revenue += entry.revenue
        if entry.attach_pct is not None:
            reading.readings.append(entry.attach_pct * 100)

    if reading.readings:
        reading.rate = float(np.mean(reading.readings))
    return reading


# ══════════════════════════════════════════════════════════════════════
#  Step 1c: Short-Window Sales
# ══════════════════════════════════════════════════════════════════════

@dataclass
class WindowSales:
    """Sales totals over a short trailing window."""
    days: int
    plan_sales: float = 0.0
    device_sales: float = 0.0
    revenue: float = 0.0
    approximated: bool = False


def window_sales(
    records: Sequence[SalesRecord],
    reference_date: date,
    days: int,
    month_days: int = 30,
) -> WindowSales:
    """Sum daily entries dated within [reference_date - (days-1), reference_date].

    When no daily entry falls inside the window, the current month's monthly
    totals are scaled by ``days / month_days`` instead.
    """
    start = reference_date - timedelta(days=days - 1)
    result = WindowSales(days=days)
    found = False

    for rec in records:
        for day_entries in rec.daily_sales.values():
            for entry in day_entries:
                if entry.date is None or not (start <= entry.date <= reference_date):
                    continue
                found = True
                result.plan_sales += entry.plan_sales
                result.device_sales += entry.device_sales
                result.revenue += entry.revenue

    if found:
        return result

    monthly = read_month(records, reference_date.year, reference_date.month)
    scale = days / month_days
    result.plan_sales = monthly.plan_sales * scale
    result.device_sales = monthly.device_sales * scale
    result.revenue = monthly.revenue * scale
    result.approximated = True
    return result


# ══════════════════════════════════════════════════════════════════════
#  Step 1d: Trailing Device Average & Window Attach Rate
# ══════════════════════════════════════════════════════════════════════

def trailing_device_average(
    records: Sequence[SalesRecord],
    period: EvaluationPeriod,
    months: int = 3,
) -> float:
    """Mean monthly device sales over the last ``months`` complete months.

    Only record-months that have an entry are counted.
    """
    total = 0.0
    count = 0
    for year, month in period.lookback(months):
        for rec in records:
            if rec.year != year:
                continue
            entry = rec.month_entry(month)
            if entry is not None:
                total += entry.device_sales
                count += 1
    return total / count if count else 0.0


def window_attach_rate(
    window_plan_sales: float,
    avg_device_sales: float,
    days: int,
    month_days: int = 30,
) -> float:
    """Attach Rate = window plan sales / ((avg monthly devices / month_days) × days).

    Rounded to 2 dp; 0 when the expected device volume is 0.
    """
    expected_devices = avg_device_sales / month_days * days
    if expected_devices <= 0:
        return 0.0
    return round(window_plan_sales / expected_devices * 100, 2)


# ══════════════════════════════════════════════════════════════════════
#  Resolver
# ══════════════════════════════════════════════════════════════════════

@dataclass
class AttachRates:
    """Resolved attach rates plus the volumes behind them."""
    current: float = 0.0
    previous: float = 0.0
    monthly_current: float = 0.0
    plan_sales: float = 0.0
    device_sales: float = 0.0
    revenue: float = 0.0
    current_readings: int = 0
    previous_readings: int = 0
    window_days: Optional[int] = None
    window_approximated: bool = False


def resolve_attach_rates(
    records: Sequence[SalesRecord],
    period: EvaluationPeriod,
    brand_id: Optional[str] = None,
    window_days: Optional[int] = None,
    month_days: int = 30,
    use_window_rate: bool = False,
    lookback_months: int = 3,
) -> AttachRates:
    """Resolve {current, previous} attach rates for a store (or one brand).

    Args:
        records: the store's sales records (any brand/category/year).
        period: evaluation period built from the reference date.
        brand_id: restrict to one brand's records, pooling its categories.
        window_days: report plan/device/revenue over a trailing window
            instead of the whole current month.
        use_window_rate: score the window attach rate (plan sales over the
            trailing device average) when it is > 0.
    """
    scoped = select_records(records, brand_id)

    current = read_month(scoped, period.year, period.month)
    previous = read_month(scoped, period.previous_year, period.previous_month)

    rates = AttachRates(
        current=current.rate,
        previous=previous.rate,
        monthly_current=current.rate,
        plan_sales=current.plan_sales,
        device_sales=current.device_sales,
        revenue=current.revenue,
        current_readings=len(current.readings),
        previous_readings=len(previous.readings),
    )

    if window_days:
        window = window_sales(scoped, period.reference_date, window_days, month_days)
        rates.plan_sales = window.plan_sales
        rates.device_sales = window.device_sales
        rates.revenue = window.revenue
        rates.window_days = window_days
        rates.window_approximated = window.approximated

        if use_window_rate:
            avg_devices = trailing_device_average(scoped, period, lookback_months)
            period_rate = window_attach_rate(
                window.plan_sales, avg_devices, window_days, month_days,
            )
            if period_rate > 0:
                rates.current = period_rate

    return rates
