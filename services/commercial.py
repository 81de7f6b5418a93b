"""Commercial peak-shaving pipeline: billing, battery sizing, rebate and payback."""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Optional

from services.battery_sizing import BatterySizingResult, size_battery, validate_sizing_inputs
from services.billing import (
    BILLING_APPARENT_POWER,
    BillingInputs,
    BillingSimulation,
    DemandReading,
    resolve_shave_kw,
    simulate_billing,
    validate_billing_inputs,
)
from services.errors import ConfigurationError
from services.rebates import (
    DEFAULT_REBATE_CAP_DOLLARS,
    DEFAULT_REBATE_RATE_PER_KW,
    RebateBreakdown,
    RebateInputs,
    compute_rebate,
    validate_rebate_inputs,
)
from utils.economics import (
    DEFAULT_ANALYSIS_YEARS,
    DEFAULT_ANNUAL_ESCALATOR,
    EconomicsResult,
    LifetimeReturn,
    lifetime_return,
    project_savings,
    validate_projection_inputs,
)
from utils.io import ParsedSeries


@dataclass
class CommercialInputs:
    """All inputs for one commercial run.

    ``measured_peak`` and ``peak_duration_minutes`` may be left unset when an
    interval series is passed to :func:`calculate_commercial_results`; the
    series then supplies the kW peak and the typical peak duration.
    """

    demand_rate: float
    installed_cost_total: float
    billing_method: str = BILLING_APPARENT_POWER
    measured_peak: Optional[DemandReading] = None
    current_pf: float = 0.85
    target_pf: float = 0.95
    target_cap_kw: Optional[float] = None
    shave_kw: Optional[float] = None
    peak_duration_minutes: Optional[float] = None
    # Battery
    c_rate: float = 0.5
    round_trip_efficiency: float = 0.9
    usable_dod: float = 0.9
    # Rebate
    rebate_eligible_kw: float = 0.0
    rebate_rate_per_kw: float = DEFAULT_REBATE_RATE_PER_KW
    rebate_cap_dollars: float = DEFAULT_REBATE_CAP_DOLLARS
    apply_solar_cost_cap: bool = False
    solar_only_cost: Optional[float] = None
    # Economics
    analysis_years: int = DEFAULT_ANALYSIS_YEARS
    annual_escalator: float = DEFAULT_ANNUAL_ESCALATOR


@dataclass(frozen=True)
class CommercialResults:
    billing: BillingSimulation
    sizing: BatterySizingResult
    rebate: RebateBreakdown
    economics: EconomicsResult
    lifetime: LifetimeReturn
    peak_duration_minutes: float
    warnings: tuple[str, ...] = ()


def _billing_inputs(inputs: CommercialInputs, measured_peak: DemandReading) -> BillingInputs:
    return BillingInputs(
        billing_method=inputs.billing_method,
        demand_rate=inputs.demand_rate,
        measured_peak=measured_peak,
        current_pf=inputs.current_pf,
        target_pf=inputs.target_pf,
        target_cap_kw=inputs.target_cap_kw,
        shave_kw=inputs.shave_kw,
    )


def _rebate_inputs(inputs: CommercialInputs) -> RebateInputs:
    return RebateInputs(
        eligible_kw=inputs.rebate_eligible_kw,
        installed_cost_total=inputs.installed_cost_total,
        rate_per_kw=inputs.rebate_rate_per_kw,
        cap_dollars=inputs.rebate_cap_dollars,
        apply_solar_cost_cap=inputs.apply_solar_cost_cap,
        solar_only_cost=inputs.solar_only_cost,
    )


def resolve_series_inputs(inputs: CommercialInputs, series: Optional[ParsedSeries]) -> CommercialInputs:
    """Fill the measured peak and peak duration from an interval series when not given."""

    if series is None:
        return inputs
    measured_peak = inputs.measured_peak or DemandReading(unit="kW", value=series.peak_kw)
    duration = inputs.peak_duration_minutes
    if duration is None:
        duration = float(series.typical_peak_duration_minutes)
    return replace(inputs, measured_peak=measured_peak, peak_duration_minutes=duration)


def validate_commercial_inputs(inputs: CommercialInputs) -> None:
    """Run every configuration and range check for the pipeline up front."""

    if inputs.measured_peak is None:
        raise ConfigurationError("measured_peak is required when no interval data is supplied")
    if inputs.peak_duration_minutes is None:
        raise ConfigurationError("peak_duration_minutes is required when no interval data is supplied")

    billing_inputs = _billing_inputs(inputs, inputs.measured_peak)
    validate_billing_inputs(billing_inputs)
    validate_sizing_inputs(
        resolve_shave_kw(billing_inputs),
        inputs.peak_duration_minutes,
        inputs.c_rate,
        inputs.round_trip_efficiency,
        inputs.usable_dod,
    )
    validate_rebate_inputs(_rebate_inputs(inputs))
    validate_projection_inputs(0.0, inputs.installed_cost_total, inputs.analysis_years, inputs.annual_escalator)


def calculate_commercial_results(
    inputs: CommercialInputs, series: Optional[ParsedSeries] = None
) -> CommercialResults:
    """Run billing, sizing, rebate and economics for a commercial site.

    Nothing is computed until every input has been validated, so a bad input
    never yields a partial result.
    """

    resolved = resolve_series_inputs(inputs, series)
    validate_commercial_inputs(resolved)

    billing = simulate_billing(_billing_inputs(resolved, resolved.measured_peak))
    sizing = size_battery(
        billing.shave_kw,
        resolved.peak_duration_minutes,
        resolved.c_rate,
        resolved.round_trip_efficiency,
        resolved.usable_dod,
    )
    rebate = compute_rebate(_rebate_inputs(resolved))
    economics = project_savings(
        billing.annual_savings,
        rebate.net_installed_cost,
        years=resolved.analysis_years,
        escalator=resolved.annual_escalator,
    )
    lifetime = lifetime_return(billing.annual_savings, rebate.net_installed_cost, years=resolved.analysis_years)

    return CommercialResults(
        billing=billing,
        sizing=sizing,
        rebate=rebate,
        economics=economics,
        lifetime=lifetime,
        peak_duration_minutes=resolved.peak_duration_minutes,
        warnings=tuple(series.warnings) if series is not None else (),
    )


__all__ = [
    "CommercialInputs",
    "CommercialResults",
    "resolve_series_inputs",
    "validate_commercial_inputs",
    "calculate_commercial_results",
]
