"""Greedy allocation of an annual solar + battery offset budget across TOU periods.

The calculation works on annual totals only. Consumption is split into fixed
shares per tariff period, the offset budget is applied to the most expensive
periods first, and the split between "solar used directly" and "battery used"
is an aggregate approximation rather than an hourly dispatch.
"""

from __future__ import annotations

import json
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Mapping, Sequence, Union

import pandas as pd

from services.errors import ConfigurationError
from utils.economics import _ensure_fraction, _ensure_non_negative_finite

SHARE_TOLERANCE_PCT = 1e-6
DEFAULT_USABLE_DOD = 0.9
DEFAULT_CYCLES_PER_YEAR = 365
MONTHS_PER_YEAR = 12


@dataclass(frozen=True)
class TariffPeriod:
    key: str
    name: str
    price_per_kwh: float
    usage_share_pct: float


@dataclass(frozen=True)
class TariffSchedule:
    """Ordered set of TOU periods whose usage shares add up to 100%."""

    periods: tuple[TariffPeriod, ...]
    name: str = "custom"

    def __post_init__(self) -> None:
        if not self.periods:
            raise ConfigurationError("Tariff schedule must define at least one period")

        keys = [period.key for period in self.periods]
        if len(set(keys)) != len(keys):
            raise ConfigurationError(f"Tariff period keys must be unique, got {keys}")

        for period in self.periods:
            if not math.isfinite(period.price_per_kwh) or period.price_per_kwh < 0:
                raise ConfigurationError(f"Price for period '{period.key}' must be a non-negative number")
            if not math.isfinite(period.usage_share_pct) or period.usage_share_pct < 0:
                raise ConfigurationError(f"Usage share for period '{period.key}' must be a non-negative number")

        total_share = sum(period.usage_share_pct for period in self.periods)
        if abs(total_share - 100.0) > SHARE_TOLERANCE_PCT:
            raise ConfigurationError(f"Tariff usage shares must sum to 100%, got {total_share:g}%")

    def priority_order(self) -> list[TariffPeriod]:
        """Periods sorted by price, most expensive first; equal prices keep declaration order."""

        return sorted(self.periods, key=lambda period: -period.price_per_kwh)


DEFAULT_TOU_SCHEDULE = TariffSchedule(
    name="ultra-low overnight",
    periods=(
        TariffPeriod(key="ultra_low", name="Ultra-Low Overnight", price_per_kwh=0.039, usage_share_pct=37.0),
        TariffPeriod(key="off_peak", name="Off-Peak", price_per_kwh=0.098, usage_share_pct=22.0),
        TariffPeriod(key="mid_peak", name="Mid-Peak", price_per_kwh=0.157, usage_share_pct=27.0),
        TariffPeriod(key="on_peak", name="On-Peak", price_per_kwh=0.39, usage_share_pct=14.0),
    ),
)


def tariff_schedule_from_mapping(data: Mapping[str, Any]) -> TariffSchedule:
    """Build a schedule from ``{"name": ..., "periods": [{key, name, price_per_kwh, usage_share_pct}]}``."""

    raw_periods = data.get("periods")
    if not isinstance(raw_periods, Sequence) or isinstance(raw_periods, (str, bytes)):
        raise ConfigurationError("Tariff schedule requires a 'periods' list")

    periods = []
    for index, raw in enumerate(raw_periods):
        if not isinstance(raw, Mapping):
            raise ConfigurationError(f"Tariff period #{index + 1} must be an object")
        try:
            key = str(raw["key"])
            periods.append(
                TariffPeriod(
                    key=key,
                    name=str(raw.get("name", key)),
                    price_per_kwh=float(raw["price_per_kwh"]),
                    usage_share_pct=float(raw["usage_share_pct"]),
                )
            )
        except KeyError as exc:
            raise ConfigurationError(f"Tariff period #{index + 1} is missing {exc.args[0]!r}") from exc
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(f"Tariff period #{index + 1} has a non-numeric value") from exc

    return TariffSchedule(periods=tuple(periods), name=str(data.get("name", "custom")))


def load_tariff_schedule(path: Union[str, Path]) -> TariffSchedule:
    """Read a JSON tariff schedule from disk."""

    try:
        with open(path, "r", encoding="utf-8") as handle:
            data = json.load(handle)
    except OSError as exc:
        raise ConfigurationError(f"Could not read tariff schedule '{path}': {exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigurationError(f"Tariff schedule '{path}' is not valid JSON: {exc}") from exc

    if not isinstance(data, Mapping):
        raise ConfigurationError("Tariff schedule JSON must be an object")
    return tariff_schedule_from_mapping(data)


@dataclass(frozen=True)
class PeriodAllocation:
    key: str
    name: str
    price_per_kwh: float
    pre_usage_kwh: float
    pre_cost: float
    offset_kwh: float
    post_usage_kwh: float
    post_cost: float
    reduction_pct: float


@dataclass(frozen=True)
class TOUAllocationResult:
    periods: tuple[PeriodAllocation, ...]
    pre_cost: float
    post_cost: float
    annual_savings: float
    monthly_savings: float
    percent_saved: float
    offset_budget_kwh: float
    battery_annual_kwh: float
    total_offset_kwh: float
    solar_used_kwh: float
    battery_used_kwh: float
    unused_budget_kwh: float

    def period(self, key: str) -> PeriodAllocation:
        for allocation in self.periods:
            if allocation.key == key:
                return allocation
        raise KeyError(key)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame([vars(allocation) for allocation in self.periods])


def _allocate(periods: Iterable[TariffPeriod], usage: Mapping[str, float], budget: float) -> dict[str, float]:
    offsets: dict[str, float] = {}
    remaining = budget
    for period in periods:
        applied = min(usage[period.key], remaining)
        offsets[period.key] = applied
        remaining -= applied
    return offsets


def allocate_tou_offsets(
    annual_consumption_kwh: float,
    annual_solar_kwh: float,
    battery_nameplate_kwh: float,
    usable_dod: float = DEFAULT_USABLE_DOD,
    schedule: TariffSchedule = DEFAULT_TOU_SCHEDULE,
    cycles_per_year: float = DEFAULT_CYCLES_PER_YEAR,
) -> TOUAllocationResult:
    """Apply the solar plus battery budget to TOU buckets in price-descending order.

    The budget is ``annual_solar_kwh + battery_nameplate_kwh * usable_dod * cycles_per_year``
    (one full cycle per day by default). Each bucket absorbs at most its own usage.
    """

    _ensure_non_negative_finite(annual_consumption_kwh, "annual_consumption_kwh")
    _ensure_non_negative_finite(annual_solar_kwh, "annual_solar_kwh")
    _ensure_non_negative_finite(battery_nameplate_kwh, "battery_nameplate_kwh")
    _ensure_fraction(usable_dod, "usable_dod")
    _ensure_non_negative_finite(cycles_per_year, "cycles_per_year")

    battery_annual_kwh = battery_nameplate_kwh * usable_dod * cycles_per_year
    budget = annual_solar_kwh + battery_annual_kwh

    usage = {
        period.key: annual_consumption_kwh * period.usage_share_pct / 100.0
        for period in schedule.periods
    }
    offsets = _allocate(schedule.priority_order(), usage, budget)

    allocations = []
    for period in schedule.periods:
        pre_usage = usage[period.key]
        offset = offsets[period.key]
        post_usage = pre_usage - offset
        allocations.append(
            PeriodAllocation(
                key=period.key,
                name=period.name,
                price_per_kwh=period.price_per_kwh,
                pre_usage_kwh=pre_usage,
                pre_cost=pre_usage * period.price_per_kwh,
                offset_kwh=offset,
                post_usage_kwh=post_usage,
                post_cost=post_usage * period.price_per_kwh,
                reduction_pct=(offset / pre_usage) * 100.0 if pre_usage > 0 else 0.0,
            )
        )

    pre_cost = sum(allocation.pre_cost for allocation in allocations)
    post_cost = sum(allocation.post_cost for allocation in allocations)
    savings = pre_cost - post_cost
    total_offset = sum(offsets.values())
    solar_used = min(annual_solar_kwh, total_offset)

    return TOUAllocationResult(
        periods=tuple(allocations),
        pre_cost=pre_cost,
        post_cost=post_cost,
        annual_savings=savings,
        monthly_savings=savings / MONTHS_PER_YEAR,
        percent_saved=(savings / pre_cost) * 100.0 if pre_cost > 0 else 0.0,
        offset_budget_kwh=budget,
        battery_annual_kwh=battery_annual_kwh,
        total_offset_kwh=total_offset,
        solar_used_kwh=solar_used,
        battery_used_kwh=total_offset - solar_used,
        unused_budget_kwh=budget - total_offset,
    )


__all__ = [
    "TariffPeriod",
    "TariffSchedule",
    "DEFAULT_TOU_SCHEDULE",
    "tariff_schedule_from_mapping",
    "load_tariff_schedule",
    "PeriodAllocation",
    "TOUAllocationResult",
    "allocate_tou_offsets",
]
