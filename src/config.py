"""Step 0: Configuration — validated config object for a RAG classification run.

All engine parameters (tier thresholds, missing-tier policy, time windows,
reference date fixture, worker pool size) are loaded, validated, and frozen
before any store is evaluated. Threshold tables can be supplied from
config/rag_criteria.yaml.
"""

from dataclasses import dataclass, field, fields
from datetime import date
from pathlib import Path
from typing import Dict, Optional

import yaml

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
CRITERIA_FILE = _PROJECT_ROOT / "config" / "rag_criteria.yaml"


# Attach-rate floors (percent) per partner brand tier
TIER_THRESHOLDS = {
    "A+": {"green": 25.0, "amber": 12.0},
    "A": {"green": 20.0, "amber": 12.0},
    "B": {"green": 16.0, "amber": 12.0},
    "C": {"green": 14.0, "amber": 10.0},
    "D": {"green": 10.0, "amber": 3.0},
}

TIER_ALIASES = {
    "A_PLUS": "A+",
    "APLUS": "A+",
    "A PLUS": "A+",
}

# Window name → number of days ("month" means the whole current month)
TIME_WINDOWS = {
    "today": 1,
    "7days": 7,
    "30days": 30,
    "month": None,
}

GRANULARITIES = ("store", "brand")


def normalize_tier(tier) -> Optional[str]:
    """Map a raw tier label (A_PLUS, 'a', ' B ') onto its canonical form.

    Returns None for empty values. Unknown labels are returned upper-cased
    so the classifier can reject them.
    """
    if tier is None:
        return None
    label = str(tier).strip().upper()
    if not label:
        return None
    return TIER_ALIASES.get(label, label)


# ── Config Dataclass ─────────────────────────────────────────────────

@dataclass
class RAGConfig:
    """Validated configuration for a single classification run."""

    tier_thresholds: Dict[str, Dict[str, float]] = field(
        default_factory=lambda: {k: v.copy() for k, v in TIER_THRESHOLDS.items()}
    )

    # Tier used as a store's representative type when it lists none.
    # None turns the fallback off: such stores fail with MissingTierError.
    missing_tier_default: Optional[str] = "D"

    # Pinned evaluation date (demo fixture). The engine never reads the clock;
    # callers fall back to this when no reference date is given.
    reference_date: Optional[date] = None

    # Window approximation divisor and trailing device average span
    month_days: int = 30
    trend_lookback_months: int = 3

    # Prefer the short-window attach rate over the monthly reading
    use_window_attach_rate: bool = False
    default_time_window: str = "month"

    # "store": one row per store at its representative tier
    # "brand": store row carries the worst-case brand status
    granularity: str = "store"

    max_workers: int = 8
    worst_store_count: int = 3

    def __post_init__(self):
        self.tier_thresholds = {
            normalize_tier(tier): {k: float(v) for k, v in floors.items()}
            for tier, floors in self.tier_thresholds.items()
        }
        self.missing_tier_default = normalize_tier(self.missing_tier_default)
        if isinstance(self.reference_date, str):
            self.reference_date = date.fromisoformat(self.reference_date)
        self.validate()

    def validate(self):
        """Validate configuration constraints, reporting every failure at once."""
        errors = []

        if not self.tier_thresholds:
            errors.append("tier_thresholds must define at least one tier")

        for tier, floors in self.tier_thresholds.items():
            missing = {"green", "amber"} - set(floors)
            if missing:
                errors.append(f"tier {tier} is missing floors: {sorted(missing)}")
                continue
            if floors["amber"] < 0:
                errors.append(f"tier {tier} amber floor ({floors['amber']}) must be >= 0")
            if floors["green"] < floors["amber"]:
                errors.append(
                    f"tier {tier} green floor ({floors['green']}) "
                    f"must be >= amber floor ({floors['amber']})"
                )

        if (
            self.missing_tier_default is not None
            and self.missing_tier_default not in self.tier_thresholds
        ):
            errors.append(
                f"missing_tier_default ({self.missing_tier_default}) is not a configured tier"
            )

        if self.month_days <= 0:
            errors.append(f"month_days ({self.month_days}) must be > 0")

        if self.trend_lookback_months < 1:
            errors.append(
                f"trend_lookback_months ({self.trend_lookback_months}) must be >= 1"
            )

        if self.default_time_window not in TIME_WINDOWS:
            errors.append(
                f"default_time_window ({self.default_time_window}) must be one of "
                f"{sorted(TIME_WINDOWS)}"
            )

        if self.granularity not in GRANULARITIES:
            errors.append(
                f"granularity ({self.granularity}) must be one of {list(GRANULARITIES)}"
            )

        if self.max_workers < 1:
            errors.append(f"max_workers ({self.max_workers}) must be >= 1")

        if self.worst_store_count < 1:
            errors.append(f"worst_store_count ({self.worst_store_count}) must be >= 1")

        if errors:
            raise ValueError("Config validation failed:\n  " + "\n  ".join(errors))

    def summary(self) -> dict:
        """Return a dict summary of all config values for logging/audit."""
        return {
            "tiers": ", ".join(
                f"{t}={f['green']:g}/{f['amber']:g}" for t, f in self.tier_thresholds.items()
            ),
            "missing_tier_default": self.missing_tier_default,
            "reference_date": self.reference_date.isoformat() if self.reference_date else None,
            "month_days": self.month_days,
            "trend_lookback_months": self.trend_lookback_months,
            "use_window_attach_rate": self.use_window_attach_rate,
            "default_time_window": self.default_time_window,
            "granularity": self.granularity,
            "max_workers": self.max_workers,
        }


def load_criteria_yaml(path: Path = None) -> dict:
    """Load tier thresholds and engine options from the criteria YAML file.

    The file holds a ``tiers`` mapping (tier → green/amber floors) and an
    optional ``engine`` mapping of RAGConfig field overrides.
    """
    p = Path(path) if path else CRITERIA_FILE
    if not p.exists():
        raise FileNotFoundError(f"RAG criteria file not found: {p}")
    with open(p, "r") as f:
        raw = yaml.safe_load(f) or {}

    overrides = dict(raw.get("engine") or {})
    if raw.get("tiers"):
        overrides["tier_thresholds"] = raw["tiers"]
    return overrides


def load_config(overrides: dict = None, criteria_path: Path = None) -> RAGConfig:
    """Create a config with defaults, applying any overrides.

    Args:
        overrides: dict of parameter names → values to override defaults.
        criteria_path: optional YAML criteria file applied before overrides.
    """
    merged = {}
    if criteria_path:
        merged.update(load_criteria_yaml(criteria_path))
    if overrides:
        merged.update(overrides)

    kwargs = {}
    valid_fields = {f.name for f in fields(RAGConfig)}
    for key, value in merged.items():
        if key in valid_fields:
            kwargs[key] = value
    return RAGConfig(**kwargs)
