"""Economic helpers shared across the commercial and residential calculators."""
from __future__ import annotations

import math
from dataclasses import dataclass

import pandas as pd

from services.errors import ValidationError


DEFAULT_ANALYSIS_YEARS = 25
DEFAULT_ANNUAL_ESCALATOR = 0.02


@dataclass(frozen=True)
class YearlySavings:
    """Savings for one project year plus the running total through that year."""

    year: int
    annual_savings: float
    cumulative_savings: float


@dataclass(frozen=True)
class EconomicsResult:
    """Simple-payback economics for a storage or solar+storage project.

    ``payback_years`` is ``math.inf`` when the project never saves money.
    """

    roi_year1_pct: float
    payback_years: float
    yearly: tuple[YearlySavings, ...]

    @property
    def total_savings(self) -> float:
        if not self.yearly:
            return 0.0
        return self.yearly[-1].cumulative_savings

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            [
                {
                    "year": row.year,
                    "annual_savings": row.annual_savings,
                    "cumulative_savings": row.cumulative_savings,
                }
                for row in self.yearly
            ],
            columns=["year", "annual_savings", "cumulative_savings"],
        )


@dataclass(frozen=True)
class LifetimeReturn:
    """Lifetime net savings after recovering the installed cost."""

    years: int
    lifetime_savings: float
    roi_pct: float


def _ensure_finite(value: float, name: str) -> None:
    """Raise ValidationError when a numeric value is NaN or infinite."""

    if not math.isfinite(value):
        raise ValidationError(f"{name} must be a finite number")


def _ensure_non_negative_finite(value: float, name: str) -> None:
    """Raise ValidationError when a numeric value is negative or non-finite."""

    _ensure_finite(value, name)
    if value < 0:
        raise ValidationError(f"{name} must be non-negative")


def _ensure_fraction(value: float, name: str) -> None:
    """Raise ValidationError unless ``0 < value <= 1``."""

    _ensure_finite(value, name)
    if not 0.0 < value <= 1.0:
        raise ValidationError(f"{name} must be in the range (0, 1]")


def validate_projection_inputs(
    annual_savings: float,
    net_installed_cost: float,
    years: int,
    escalator: float,
) -> None:
    """Validate projection inputs before computing any outputs."""

    _ensure_finite(float(annual_savings), "annual_savings")
    _ensure_finite(float(net_installed_cost), "net_installed_cost")
    _ensure_finite(float(escalator), "escalator")
    if isinstance(years, bool) or int(years) != years:
        raise ValidationError("years must be a whole number")
    if years < 1:
        raise ValidationError("years must be at least 1")
    if escalator <= -1.0:
        raise ValidationError("escalator must be greater than -100%")


def compute_roi_year1_pct(annual_savings: float, net_installed_cost: float) -> float:
    """Return first-year savings as a percentage of net cost (0 when cost is not positive)."""

    if net_installed_cost > 0:
        return (annual_savings / net_installed_cost) * 100.0
    return 0.0


def compute_payback_years(annual_savings: float, net_installed_cost: float) -> float:
    """Return simple payback in years, or ``inf`` when there are no savings."""

    if annual_savings > 0:
        return net_installed_cost / annual_savings
    return math.inf


def build_savings_series(
    annual_savings_year1: float, years: int, escalator: float
) -> list[YearlySavings]:
    """Escalate year-1 savings annually and track the cumulative sum."""

    series: list[YearlySavings] = []
    cumulative = 0.0
    for year in range(1, years + 1):
        annual = annual_savings_year1 * ((1.0 + escalator) ** (year - 1))
        cumulative += annual
        series.append(YearlySavings(year=year, annual_savings=annual, cumulative_savings=cumulative))
    return series


def project_savings(
    annual_savings: float,
    net_installed_cost: float,
    years: int = DEFAULT_ANALYSIS_YEARS,
    escalator: float = DEFAULT_ANNUAL_ESCALATOR,
) -> EconomicsResult:
    """Compute first-year ROI, simple payback, and the multi-year savings series.

    Parameters
    ----------
    annual_savings
        Year-1 savings in dollars. Later years grow by ``escalator``.
    net_installed_cost
        Installed cost after rebates.
    years
        Number of analysis years (1-indexed in the output).
    escalator
        Annual growth rate of savings (e.g., 0.02 = 2%/yr).

    Notes
    -----
    Payback uses undiscounted year-1 savings, so it ignores the escalator.
    """

    validate_projection_inputs(annual_savings, net_installed_cost, years, escalator)

    return EconomicsResult(
        roi_year1_pct=compute_roi_year1_pct(annual_savings, net_installed_cost),
        payback_years=compute_payback_years(annual_savings, net_installed_cost),
        yearly=tuple(build_savings_series(float(annual_savings), int(years), float(escalator))),
    )


def lifetime_return(
    annual_savings: float, net_cost: float, years: int = DEFAULT_ANALYSIS_YEARS
) -> LifetimeReturn:
    """Return flat lifetime savings net of cost and the matching ROI percentage."""

    _ensure_finite(float(annual_savings), "annual_savings")
    _ensure_finite(float(net_cost), "net_cost")
    if years < 1:
        raise ValidationError("years must be at least 1")

    lifetime_savings = annual_savings * years - net_cost
    roi_pct = (lifetime_savings / net_cost) * 100.0 if net_cost > 0 else 0.0
    return LifetimeReturn(years=int(years), lifetime_savings=lifetime_savings, roi_pct=roi_pct)


__all__ = [
    "DEFAULT_ANALYSIS_YEARS",
    "DEFAULT_ANNUAL_ESCALATOR",
    "YearlySavings",
    "EconomicsResult",
    "LifetimeReturn",
    "_ensure_finite",
    "_ensure_non_negative_finite",
    "_ensure_fraction",
    "validate_projection_inputs",
    "compute_roi_year1_pct",
    "compute_payback_years",
    "build_savings_series",
    "project_savings",
    "lifetime_return",
]
