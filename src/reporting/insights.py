"""Step 8: Insight Generation — rule-based statements from the portfolio summary.

Deterministic: the same summary (and worst-store list) always yields the same
insights in the same order.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

from src.reporting.portfolio import PortfolioSummary

SUCCESS = "success"
WARNING = "warning"
DANGER = "danger"
INFO = "info"


@dataclass(frozen=True)
class Insight:
    kind: str
    title: str
    message: str
    count: Optional[int] = None


def _stores(n: int, singular: str, plural: str) -> str:
    """'1 store is' / '3 stores are'."""
    return f"{n} store {singular}" if n == 1 else f"{n} stores {plural}"


def _health_kind(score: int) -> str:
    if score >= 70:
        return SUCCESS
    if score >= 50:
        return WARNING
    return DANGER


def attention_message(red_count: int, worst_store_names: Sequence[str] = ()) -> str:
    """Name the worst Red store and count the others, when names are known."""
    if not worst_store_names:
        return f"{_stores(red_count, 'needs', 'need')} immediate attention for low attach rates"

    others = red_count - 1
    if others <= 0:
        return f"{worst_store_names[0]} needs immediate attention for low attach rates"
    suffix = "store" if others == 1 else "stores"
    return (
        f"{worst_store_names[0]} and {others} other {suffix} "
        f"need immediate attention for low attach rates"
    )


def generate_insights(
    summary: PortfolioSummary,
    worst_store_names: Sequence[str] = (),
) -> List[Insight]:
    """Derive insights from a portfolio summary.

    Args:
        summary: the portfolio totals.
        worst_store_names: Red store names, worst first, used to name the
            store needing the most urgent attention.
    """
    insights = []

    if summary.green > 0:
        insights.append(Insight(
            kind=SUCCESS,
            title="Top Performers",
            message=f"{_stores(summary.green, 'is', 'are')} exceeding attach rate targets",
            count=summary.green,
        ))

    if summary.red > 0:
        insights.append(Insight(
            kind=DANGER,
            title="Action Required",
            message=attention_message(summary.red, worst_store_names),
            count=summary.red,
        ))

    if summary.improving_stores > 0:
        insights.append(Insight(
            kind=INFO,
            title="Improving Trend",
            message=f"{_stores(summary.improving_stores, 'is', 'are')} showing positive growth",
            count=summary.improving_stores,
        ))

    if summary.declining_stores > 0:
        insights.append(Insight(
            kind=WARNING,
            title="Declining Performance",
            message=f"{_stores(summary.declining_stores, 'is', 'are')} showing declining trends",
            count=summary.declining_stores,
        ))

    if summary.total > 0:
        insights.append(Insight(
            kind=_health_kind(summary.health_score),
            title="Overall Health Score",
            message=(
                f"{summary.health_score}% of stores are meeting or approaching targets "
                f"(avg. {summary.average_attach_rate:g}% attach rate)"
            ),
        ))

    return insights


def coverage_insight(store_count: int) -> Insight:
    """Scope note for an executive's assigned store set."""
    noun = "store" if store_count == 1 else "stores"
    return Insight(
        kind=INFO,
        title="Your Store Coverage",
        message=f"You are managing {store_count} {noun} across different performance levels",
        count=store_count,
    )
