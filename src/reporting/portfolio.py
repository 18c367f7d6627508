"""Step 7: Portfolio Summary — totals across every evaluated store."""

from dataclasses import dataclass
from typing import Sequence

from src.classification.rag import AMBER, GREEN, RED
from src.classification.store_rollup import StoreResult
from src.reporting.output import stores_to_frame


@dataclass
class PortfolioSummary:
    """Portfolio-level counts and averages for one classification pass."""
    total: int = 0
    green: int = 0
    amber: int = 0
    red: int = 0
    average_attach_rate: float = 0.0
    improving_stores: int = 0
    declining_stores: int = 0
    stable_stores: int = 0
    health_score: int = 0

    def to_dict(self) -> dict:
        return {k: v for k, v in self.__dict__.items()}

    def summary(self) -> str:
        lines = [
            "=" * 60,
            "  ATTACH-RATE RAG — PORTFOLIO SUMMARY",
            "=" * 60,
            f"  Stores evaluated:          {self.total}",
            f"  Green:                     {self.green}",
            f"  Amber:                     {self.amber}",
            f"  Red:                       {self.red}",
            f"  Average attach rate:       {self.average_attach_rate:.2f}%",
            "",
            f"  Improving stores:          {self.improving_stores}",
            f"  Declining stores:          {self.declining_stores}",
            f"  Stable stores:             {self.stable_stores}",
            f"  Health score:              {self.health_score}%",
            "=" * 60,
        ]
        return "\n".join(lines)


def health_score(green: int, amber: int, total: int) -> int:
    """Share of stores meeting (Green) or approaching (half-weight Amber) target."""
    if total == 0:
        return 0
    return int((green + amber * 0.5) / total * 100 + 0.5)


def summarise_portfolio(results: Sequence[StoreResult]) -> PortfolioSummary:
    """Aggregate store rows into portfolio totals.

    The average attach rate is a simple unweighted mean. A store counts as
    improving when more of its brands improved than declined.
    """
    s = PortfolioSummary()
    if not results:
        return s

    df = stores_to_frame(results, rounded=False)
    status = df["final_status"]

    s.total = len(df)
    s.green = int((status == GREEN).sum())
    s.amber = int((status == AMBER).sum())
    s.red = int((status == RED).sum())
    s.average_attach_rate = round(float(df["attach_rate"].mean()), 2)

    improving = df["improving_brands"] > df["declining_brands"]
    declining = df["declining_brands"] > df["improving_brands"]
    s.improving_stores = int(improving.sum())
    s.declining_stores = int(declining.sum())
    s.stable_stores = s.total - s.improving_stores - s.declining_stores

    s.health_score = health_score(s.green, s.amber, s.total)
    return s
