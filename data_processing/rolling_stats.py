"""
Online (single pass) statistics kept per pool in the stat table.

Each new yield observation folds its APY and its implied daily return into
running moments using Welford's recurrences, so the full history never has
to be re-read:

    delta = a - M
    M'    = M + delta / n'
    S'    = S + delta * (a - M')

S is the running sum of squared deviations (variance = S / (n - ddof)).
The daily returns are additionally compounded into a running product P,
from which the annualized geometric mean is derived.
"""
import math
from dataclasses import dataclass, replace
from typing import Optional

from config import DAYS_PER_YEAR, MISSING_RETURN_POLICIES
from database.repositories.exceptions import InvalidInputError


@dataclass(frozen=True)
class RollingStats:
    count: int = 0
    mean_apy: float = 0.0
    mean2_apy: float = 0.0
    mean_dr: float = 0.0
    mean2_dr: float = 0.0
    product_dr: float = 1.0
    # periods folded into the daily-return side
    count_dr: int = 0

    @classmethod
    def from_row(cls, row) -> "RollingStats":
        """Build from a PoolStat row. Rows written without countDR share the APY count."""
        return cls(
            count=int(row.count),
            mean_apy=float(row.mean_apy),
            mean2_apy=float(row.mean2_apy or 0.0),
            mean_dr=float(row.mean_dr),
            mean2_dr=float(row.mean2_dr or 0.0),
            product_dr=float(row.product_dr),
            count_dr=int(row.count if row.count_dr is None else row.count_dr),
        )

    def as_columns(self) -> dict:
        return {
            "count": self.count,
            "mean_apy": self.mean_apy,
            "mean2_apy": self.mean2_apy,
            "mean_dr": self.mean_dr,
            "mean2_dr": self.mean2_dr,
            "product_dr": self.product_dr,
            "count_dr": self.count_dr,
        }

    def apy_variance(self, ddof: int = 1) -> float:
        if self.count - ddof <= 0:
            return 0.0
        return self.mean2_apy / (self.count - ddof)

    def apy_std(self, ddof: int = 1) -> float:
        return math.sqrt(max(self.apy_variance(ddof), 0.0))

    def dr_variance(self, ddof: int = 1) -> float:
        if self.count_dr - ddof <= 0:
            return 0.0
        return self.mean2_dr / (self.count_dr - ddof)

    def mu(self, days_per_year: int = DAYS_PER_YEAR) -> float:
        """Annualized geometric mean return in percent."""
        if self.count_dr == 0:
            return 0.0
        return (self.product_dr ** (days_per_year / self.count_dr) - 1) * 100

    def sigma(self, days_per_year: int = DAYS_PER_YEAR) -> float:
        """Annualized volatility of the daily returns in percent."""
        if self.count_dr < 2:
            return 0.0
        return math.sqrt(max(self.dr_variance(), 0.0) * days_per_year) * 100


def daily_return_from_apy(apy: float, days_per_year: int = DAYS_PER_YEAR) -> Optional[float]:
    """
    Compounded daily rate implied by an APY given in percent.
    Returns None when the APY implies a non-positive growth factor.
    """
    growth = 1 + apy / 100
    if growth <= 0:
        return None
    return growth ** (1 / days_per_year) - 1


def _welford(count: int, mean: float, m2: float, value: float):
    delta = value - mean
    mean_new = mean + delta / count
    return mean_new, m2 + delta * (value - mean_new)


def update_rolling_stats(
    previous: Optional[RollingStats],
    apy: float,
    daily_return: Optional[float],
    missing_return_policy: str = "skip",
) -> RollingStats:
    """
    Fold one observation into the previous statistics and return the new ones.

    Args:
        previous: statistics before this observation, None for a pool's first one
        apy: the observation's APY
        daily_return: the observation's daily return, None when it cannot be derived
        missing_return_policy: "skip" leaves the return side untouched for a missing
            return, "zero" counts the period with r = 0
    """
    if missing_return_policy not in MISSING_RETURN_POLICIES:
        raise ValueError(f"Unknown missing return policy: {missing_return_policy}")
    if apy is None or not math.isfinite(apy):
        raise InvalidInputError(f"apy must be finite, got {apy}")
    if daily_return is not None and not math.isfinite(daily_return):
        raise InvalidInputError(f"daily return must be finite, got {daily_return}")

    if daily_return is None and missing_return_policy == "zero":
        daily_return = 0.0

    stats = previous or RollingStats()
    count = stats.count + 1
    if stats.count == 0:
        mean_apy, mean2_apy = apy, 0.0
    else:
        mean_apy, mean2_apy = _welford(count, stats.mean_apy, stats.mean2_apy, apy)
    updated = replace(stats, count=count, mean_apy=mean_apy, mean2_apy=mean2_apy)

    if daily_return is None:
        return updated

    count_dr = stats.count_dr + 1
    if stats.count_dr == 0:
        mean_dr, mean2_dr, product_dr = daily_return, 0.0, 1 + daily_return
    else:
        mean_dr, mean2_dr = _welford(count_dr, stats.mean_dr, stats.mean2_dr, daily_return)
        product_dr = stats.product_dr * (1 + daily_return)

    return replace(
        updated,
        mean_dr=mean_dr,
        mean2_dr=mean2_dr,
        product_dr=product_dr,
        count_dr=count_dr,
    )
