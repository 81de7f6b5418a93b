"""Capped and tiered incentive calculations."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from services.errors import ConfigurationError
from utils.economics import _ensure_finite, _ensure_non_negative_finite

DEFAULT_REBATE_RATE_PER_KW = 860.0
DEFAULT_REBATE_CAP_DOLLARS = 860_000.0
SOLAR_COST_CAP_SHARE = 0.5

ZERO_EXPORT_SOLAR_RATE_PER_KW = 500.0
ZERO_EXPORT_SOLAR_MAX = 5_000.0
ZERO_EXPORT_BATTERY_RATE_PER_KWH = 300.0
ZERO_EXPORT_BATTERY_MAX = 5_000.0


@dataclass
class RebateInputs:
    """Commercial solar rebate inputs.

    When ``apply_solar_cost_cap`` is set, the rebate is further limited to half
    of ``solar_only_cost`` and that field becomes required.
    """

    eligible_kw: float
    installed_cost_total: float
    rate_per_kw: float = DEFAULT_REBATE_RATE_PER_KW
    cap_dollars: float = DEFAULT_REBATE_CAP_DOLLARS
    apply_solar_cost_cap: bool = False
    solar_only_cost: Optional[float] = None


@dataclass(frozen=True)
class RebateBreakdown:
    base_rebate: float
    rebate_after_cap: float
    rebate_final: float
    net_installed_cost: float


@dataclass(frozen=True)
class ZeroExportIncentives:
    solar_incentive: float
    battery_incentive: float
    total_incentive: float
    solar_calculated: float
    battery_calculated: float


def validate_rebate_inputs(inputs: RebateInputs) -> None:
    _ensure_non_negative_finite(inputs.eligible_kw, "eligible_kw")
    _ensure_non_negative_finite(inputs.rate_per_kw, "rate_per_kw")
    _ensure_non_negative_finite(inputs.cap_dollars, "cap_dollars")
    _ensure_finite(inputs.installed_cost_total, "installed_cost_total")
    if inputs.apply_solar_cost_cap:
        if inputs.solar_only_cost is None:
            raise ConfigurationError(
                "solar_only_cost is required when the 50% solar-cost cap is enabled"
            )
        _ensure_non_negative_finite(inputs.solar_only_cost, "solar_only_cost")


def compute_rebate(inputs: RebateInputs) -> RebateBreakdown:
    """Apply the per-kW rate, the absolute cap, and the optional solar-cost cap in turn."""

    validate_rebate_inputs(inputs)

    base_rebate = inputs.eligible_kw * inputs.rate_per_kw
    rebate_after_cap = min(base_rebate, inputs.cap_dollars)
    rebate_final = rebate_after_cap
    if inputs.apply_solar_cost_cap and inputs.solar_only_cost is not None:
        rebate_final = min(rebate_after_cap, SOLAR_COST_CAP_SHARE * inputs.solar_only_cost)

    return RebateBreakdown(
        base_rebate=base_rebate,
        rebate_after_cap=rebate_after_cap,
        rebate_final=rebate_final,
        net_installed_cost=inputs.installed_cost_total - rebate_final,
    )


def compute_zero_export_incentives(system_size_kw: float, battery_kwh: float) -> ZeroExportIncentives:
    """Residential zero-export incentives: a capped solar grant plus a capped battery grant."""

    _ensure_non_negative_finite(system_size_kw, "system_size_kw")
    _ensure_non_negative_finite(battery_kwh, "battery_kwh")

    solar_calculated = system_size_kw * ZERO_EXPORT_SOLAR_RATE_PER_KW
    battery_calculated = battery_kwh * ZERO_EXPORT_BATTERY_RATE_PER_KWH
    solar_incentive = min(solar_calculated, ZERO_EXPORT_SOLAR_MAX)
    battery_incentive = min(battery_calculated, ZERO_EXPORT_BATTERY_MAX)

    return ZeroExportIncentives(
        solar_incentive=solar_incentive,
        battery_incentive=battery_incentive,
        total_incentive=solar_incentive + battery_incentive,
        solar_calculated=solar_calculated,
        battery_calculated=battery_calculated,
    )


__all__ = [
    "DEFAULT_REBATE_RATE_PER_KW",
    "DEFAULT_REBATE_CAP_DOLLARS",
    "RebateInputs",
    "RebateBreakdown",
    "ZeroExportIncentives",
    "validate_rebate_inputs",
    "compute_rebate",
    "compute_zero_export_incentives",
]
