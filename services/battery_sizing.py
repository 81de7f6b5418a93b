"""Battery nameplate sizing for peak shaving plus a residential size recommender."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from services.errors import ValidationError
from utils.economics import _ensure_finite, _ensure_fraction, _ensure_non_negative_finite

REGIME_POWER_DOMINATED = "power-dominated"
REGIME_ENERGY_DOMINATED = "energy-dominated"

COMMON_RESIDENTIAL_SIZES_KWH = (10.0, 13.5, 16.0, 20.0, 25.0, 30.0)
RESIDENTIAL_DAILY_COVERAGE = 0.6  # share of daily use stored for the evening peak
RESIDENTIAL_YIELD_KWH_PER_KW = 1250.0


@dataclass(frozen=True)
class BatterySizingResult:
    nameplate_kwh: float
    inverter_kw: float
    regime: str
    energy_needed_kwh: float
    power_implied_energy_kwh: float


@dataclass(frozen=True)
class BatteryRecommendation:
    recommended_kwh: float
    reasoning: str
    daily_consumption_kwh: float
    estimated_daily_production_kwh: float


def validate_sizing_inputs(
    shave_kw: float,
    peak_duration_minutes: float,
    c_rate: float,
    round_trip_efficiency: float,
    usable_dod: float,
) -> None:
    _ensure_non_negative_finite(shave_kw, "shave_kw")
    _ensure_non_negative_finite(peak_duration_minutes, "peak_duration_minutes")
    _ensure_finite(c_rate, "c_rate")
    if c_rate <= 0:
        raise ValidationError("c_rate must be positive")
    _ensure_fraction(round_trip_efficiency, "round_trip_efficiency")
    _ensure_fraction(usable_dod, "usable_dod")


def size_battery(
    shave_kw: float,
    peak_duration_minutes: float,
    c_rate: float,
    round_trip_efficiency: float,
    usable_dod: float,
) -> BatterySizingResult:
    """Return the smallest nameplate that satisfies both energy and power limits.

    The energy constraint covers ``shave_kw`` for the whole peak; the power
    constraint is the capacity a battery of the given C-rate needs to deliver
    ``shave_kw`` at all. Both are grossed up for round-trip losses and usable
    depth of discharge. The inverter is sized to the shave itself.

    An exact tie between the two constraints is reported as energy-dominated.
    """

    validate_sizing_inputs(shave_kw, peak_duration_minutes, c_rate, round_trip_efficiency, usable_dod)

    energy_needed_kwh = shave_kw * (peak_duration_minutes / 60.0)
    power_implied_energy_kwh = shave_kw / c_rate

    derate = round_trip_efficiency * usable_dod
    nameplate_by_energy = energy_needed_kwh / derate
    nameplate_by_power = power_implied_energy_kwh / derate

    regime = (
        REGIME_POWER_DOMINATED
        if power_implied_energy_kwh > energy_needed_kwh
        else REGIME_ENERGY_DOMINATED
    )

    return BatterySizingResult(
        nameplate_kwh=max(nameplate_by_energy, nameplate_by_power),
        inverter_kw=shave_kw,
        regime=regime,
        energy_needed_kwh=energy_needed_kwh,
        power_implied_energy_kwh=power_implied_energy_kwh,
    )


def recommend_residential_battery(
    annual_consumption_kwh: float,
    system_size_kw: float = 0.0,
    sizes_kwh: Sequence[float] = COMMON_RESIDENTIAL_SIZES_KWH,
) -> BatteryRecommendation:
    """Snap 60% of daily consumption to the nearest common battery product size."""

    _ensure_non_negative_finite(annual_consumption_kwh, "annual_consumption_kwh")
    _ensure_non_negative_finite(system_size_kw, "system_size_kw")
    if not sizes_kwh:
        raise ValidationError("sizes_kwh must include at least one battery size")

    daily_consumption = annual_consumption_kwh / 365.0
    target = daily_consumption * RESIDENTIAL_DAILY_COVERAGE
    # Ties go to the smaller size.
    recommended = min(sizes_kwh, key=lambda size: (abs(size - target), size))

    return BatteryRecommendation(
        recommended_kwh=float(recommended),
        reasoning=(
            f"Based on daily consumption of {round(daily_consumption)} kWh, a {recommended:g} kWh "
            "battery can store enough energy to cover evening peak periods and maximize savings."
        ),
        daily_consumption_kwh=daily_consumption,
        estimated_daily_production_kwh=system_size_kw * RESIDENTIAL_YIELD_KWH_PER_KW / 365.0,
    )


__all__ = [
    "REGIME_POWER_DOMINATED",
    "REGIME_ENERGY_DOMINATED",
    "COMMON_RESIDENTIAL_SIZES_KWH",
    "BatterySizingResult",
    "BatteryRecommendation",
    "validate_sizing_inputs",
    "size_battery",
    "recommend_residential_battery",
]
