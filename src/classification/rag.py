"""Steps 2-5: Tier thresholds, base RAG classification, trend penalty, trend.

  2. Tier Threshold Table (from RAGConfig / config/rag_criteria.yaml)
  3. Base Classifier: (tier, attach rate) → Green / Amber / Red
  4. Trend Penalty: one-step downgrade when the rate declined
  5. Monthly Trend Indicator: Improved / Declined / Stable

Everything here is a pure function of its arguments.
"""

from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from src.config import TIER_THRESHOLDS, normalize_tier
from src.classification.errors import InvalidRequestError, UnknownTierError

GREEN = "Green"
AMBER = "Amber"
RED = "Red"
STATUSES = (GREEN, AMBER, RED)

SEVERITY = {GREEN: 1, AMBER: 2, RED: 3}
_DOWNGRADE = {GREEN: AMBER, AMBER: RED, RED: RED}

IMPROVED = "Improved"
DECLINED = "Declined"
STABLE = "Stable"

STATUS_MESSAGES = {
    GREEN: "Excellent Performance",
    AMBER: "Needs Attention",
    RED: "Immediate Action Required",
}


def normalize_status(status: str) -> str:
    """Map 'green' / 'GREEN' / ' Green ' onto the canonical status label."""
    label = str(status).strip().capitalize()
    if label not in SEVERITY:
        raise InvalidRequestError(
            f"Unknown RAG status {status!r}; expected one of {list(STATUSES)}"
        )
    return label


# ══════════════════════════════════════════════════════════════════════
#  Step 2-3: Threshold Lookup & Base Classification
# ══════════════════════════════════════════════════════════════════════

def get_thresholds(
    tier: str,
    thresholds: Dict[str, Dict[str, float]] = None,
) -> Dict[str, float]:
    """Return the {green, amber} floors for a tier.

    Raises UnknownTierError for tiers missing from the table; there is no
    silent default.
    """
    table = thresholds if thresholds is not None else TIER_THRESHOLDS
    key = normalize_tier(tier)
    if key is None or key not in table:
        raise UnknownTierError(tier, known=table.keys())
    return table[key]


def classify(
    tier: str,
    attach_rate: float,
    thresholds: Dict[str, Dict[str, float]] = None,
) -> str:
    """Green if rate >= green floor, Amber if rate >= amber floor, else Red."""
    floors = get_thresholds(tier, thresholds)
    if attach_rate >= floors["green"]:
        return GREEN
    if attach_rate >= floors["amber"]:
        return AMBER
    return RED


# ══════════════════════════════════════════════════════════════════════
#  Step 4: Trend Penalty
# ══════════════════════════════════════════════════════════════════════

def downgrade(status: str) -> str:
    """One severity step worse. Red stays Red."""
    return _DOWNGRADE[status]


def apply_trend_penalty(status: str, current: float, previous: float) -> str:
    """Downgrade one step when current < previous and a prior baseline exists.

    previous <= 0 means there is no valid baseline, so no penalty applies.
    """
    if previous > 0 and current < previous:
        return downgrade(status)
    return status


# ══════════════════════════════════════════════════════════════════════
#  Step 5: Monthly Trend Indicator
# ══════════════════════════════════════════════════════════════════════

def monthly_trend(current: float, previous: float) -> str:
    if current > previous:
        return IMPROVED
    if current < previous:
        return DECLINED
    return STABLE


def worst_status(statuses: Iterable[str]) -> str:
    """Highest severity among the statuses; Green when there are none."""
    worst = GREEN
    for status in statuses:
        if SEVERITY[status] > SEVERITY[worst]:
            worst = status
    return worst


def priority_level(status: str, trend: str) -> str:
    """Combine the final status and the trend into a remediation priority."""
    if status == RED and trend == DECLINED:
        return "Critical"
    if status == RED or trend == DECLINED:
        return "High"
    if status == AMBER and trend == STABLE:
        return "Medium"
    return "Low"


# ══════════════════════════════════════════════════════════════════════
#  Per-pairing result
# ══════════════════════════════════════════════════════════════════════

@dataclass(frozen=True)
class RAGResult:
    """Classification of one store/brand (or store/representative tier) pairing."""
    tier: str
    current_attach_rate: float
    previous_attach_rate: float
    base_status: str
    final_status: str
    trend: str
    brand_id: Optional[str] = None
    brand_name: Optional[str] = None

    @property
    def downgraded(self) -> bool:
        return self.base_status != self.final_status

    @property
    def priority(self) -> str:
        return priority_level(self.final_status, self.trend)


def evaluate_pairing(
    tier: str,
    current: float,
    previous: float,
    thresholds: Dict[str, Dict[str, float]] = None,
    brand_id: str = None,
    brand_name: str = None,
) -> RAGResult:
    """Run the base classifier, trend penalty and trend indicator together."""
    base = classify(tier, current, thresholds)
    return RAGResult(
        tier=normalize_tier(tier),
        current_attach_rate=current,
        previous_attach_rate=previous,
        base_status=base,
        final_status=apply_trend_penalty(base, current, previous),
        trend=monthly_trend(current, previous),
        brand_id=brand_id,
        brand_name=brand_name,
    )


def performance_message(result: RAGResult) -> str:
    """Status message, noting the month-on-month drop when it caused a downgrade."""
    message = STATUS_MESSAGES[result.final_status]
    if result.downgraded:
        decline = result.previous_attach_rate - result.current_attach_rate
        message += f" (Downgraded: -{decline:.1f}% from last month)"
    return message
