"""Residential zero-export solar + battery analysis on a TOU tariff."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from services.battery_sizing import BatteryRecommendation, recommend_residential_battery
from services.production import ProductionEstimate, ProductionProvider, estimate_production
from services.rebates import ZeroExportIncentives, compute_zero_export_incentives
from services.tou_allocation import (
    DEFAULT_CYCLES_PER_YEAR,
    DEFAULT_TOU_SCHEDULE,
    DEFAULT_USABLE_DOD,
    TariffSchedule,
    TOUAllocationResult,
    allocate_tou_offsets,
)
from utils.economics import DEFAULT_ANALYSIS_YEARS, _ensure_finite, _ensure_fraction, lifetime_return


@dataclass(frozen=True)
class BatteryCapacity:
    nominal_kwh: float
    usable_kwh: float
    depth_of_discharge: float
    daily_kwh: float
    annual_kwh: float


@dataclass(frozen=True)
class ZeroExportEconomics:
    system_cost: float
    incentives: float
    net_cost: float
    annual_savings: float
    payback_years: float  # one decimal; inf when there are no savings
    roi_lifetime_pct: float
    lifetime_savings: float
    years: int


@dataclass(frozen=True)
class ZeroExportAnalysis:
    allocation: TOUAllocationResult
    incentives: ZeroExportIncentives
    economics: ZeroExportEconomics
    battery: BatteryCapacity
    production: Optional[ProductionEstimate] = None  # set when solar output was estimated
    recommendation: Optional[BatteryRecommendation] = None  # set when the size was recommended


def battery_capacity(
    battery_kwh: float,
    usable_dod: float = DEFAULT_USABLE_DOD,
    cycles_per_year: float = DEFAULT_CYCLES_PER_YEAR,
) -> BatteryCapacity:
    """Usable energy per cycle and per year assuming one full cycle a day."""

    _ensure_fraction(usable_dod, "usable_dod")
    usable = battery_kwh * usable_dod
    return BatteryCapacity(
        nominal_kwh=battery_kwh,
        usable_kwh=usable,
        depth_of_discharge=usable_dod,
        daily_kwh=usable,
        annual_kwh=usable * cycles_per_year,
    )


def analyze_zero_export_system(
    annual_consumption_kwh: float,
    system_size_kw: float,
    annual_solar_kwh: Optional[float],
    battery_kwh: Optional[float],
    system_cost: float,
    usable_dod: float = DEFAULT_USABLE_DOD,
    schedule: TariffSchedule = DEFAULT_TOU_SCHEDULE,
    years: int = DEFAULT_ANALYSIS_YEARS,
    production_provider: Optional[ProductionProvider] = None,
    shading_factor: float = 1.0,
) -> ZeroExportAnalysis:
    """TOU offset savings, zero-export incentives and simple lifetime economics.

    When ``annual_solar_kwh`` is ``None`` the output is estimated from
    ``system_size_kw`` via :func:`estimate_production`. When ``battery_kwh`` is
    ``None`` the nearest common product size is recommended from consumption.

    Payback is rounded to a tenth of a year. Lifetime savings and ROI use flat
    (unescalated) annual savings over ``years`` and are rounded to whole units.
    """

    _ensure_finite(system_cost, "system_cost")

    production = None
    if annual_solar_kwh is None:
        production = estimate_production(
            system_size_kw, provider=production_provider, shading_factor=shading_factor
        )
        annual_solar_kwh = production.annual_kwh
    recommendation = None
    if battery_kwh is None:
        recommendation = recommend_residential_battery(annual_consumption_kwh, system_size_kw)
        battery_kwh = recommendation.recommended_kwh

    allocation = allocate_tou_offsets(
        annual_consumption_kwh,
        annual_solar_kwh,
        battery_kwh,
        usable_dod=usable_dod,
        schedule=schedule,
    )
    incentives = compute_zero_export_incentives(system_size_kw, battery_kwh)

    net_cost = system_cost - incentives.total_incentive
    annual_savings = allocation.annual_savings
    payback = round(net_cost / annual_savings, 1) if annual_savings > 0 else math.inf
    lifetime = lifetime_return(annual_savings, net_cost, years=years)

    return ZeroExportAnalysis(
        allocation=allocation,
        incentives=incentives,
        economics=ZeroExportEconomics(
            system_cost=system_cost,
            incentives=incentives.total_incentive,
            net_cost=net_cost,
            annual_savings=annual_savings,
            payback_years=payback,
            roi_lifetime_pct=float(round(lifetime.roi_pct)),
            lifetime_savings=float(round(lifetime.lifetime_savings)),
            years=lifetime.years,
        ),
        battery=battery_capacity(battery_kwh, usable_dod),
        production=production,
        recommendation=recommendation,
    )


__all__ = [
    "BatteryCapacity",
    "ZeroExportEconomics",
    "ZeroExportAnalysis",
    "battery_capacity",
    "analyze_zero_export_system",
]
