"""Demand-charge billing model with power-factor correction and peak shaving.

A run produces three independent billing states for the same meter:

* ``before`` - measured peak at the current power factor.
* ``after_pf`` - same real power, apparent power recomputed at the target PF.
* ``after_pf_shave`` - target PF plus a battery shave off the real-power peak.

Savings are annualised with a flat 12x multiplier; seasonal demand rates are
not modelled.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

from services.errors import ValidationError
from utils.economics import _ensure_finite, _ensure_non_negative_finite

BILLING_APPARENT_POWER = "apparent_power"
BILLING_REAL_POWER = "real_power"
BILLING_MAX_REAL_OR_APPARENT = "max_real_or_apparent"

BILLING_METHODS = [
    BILLING_APPARENT_POWER,
    BILLING_REAL_POWER,
    BILLING_MAX_REAL_OR_APPARENT,
]

# Share of kVA that competes with kW under the max(kW, 0.9 x kVA) convention.
APPARENT_POWER_WEIGHT = 0.9

MIN_POWER_FACTOR = 0.5
MAX_POWER_FACTOR = 1.0
MONTHS_PER_YEAR = 12

DemandUnit = Literal["kW", "kVA"]


@dataclass(frozen=True)
class DemandReading:
    """Measured peak demand tagged with its unit."""

    unit: DemandUnit
    value: float

    def __post_init__(self) -> None:
        if self.unit not in ("kW", "kVA"):
            raise ValidationError(f"Demand unit must be 'kW' or 'kVA', got {self.unit!r}")

    def real_power_kw(self, power_factor: float) -> float:
        if self.unit == "kW":
            return self.value
        return self.value * power_factor


@dataclass(frozen=True)
class BillingState:
    apparent_power_kva: float
    real_power_kw: float
    billed_demand_units: float
    monthly_cost: float


@dataclass
class BillingInputs:
    """Tariff and meter inputs for one demand-billing simulation.

    ``demand_rate`` is dollars per billed unit per 30-day cycle. Provide either
    ``target_cap_kw`` (shave down to this real-power cap) or ``shave_kw`` (an
    explicit shave amount); a positive cap wins when both are set.
    """

    billing_method: str
    demand_rate: float
    measured_peak: DemandReading
    current_pf: float
    target_pf: float
    target_cap_kw: Optional[float] = None
    shave_kw: Optional[float] = None


@dataclass(frozen=True)
class BillingSimulation:
    before: BillingState
    after_pf: BillingState
    after_pf_shave: BillingState
    shave_kw: float
    monthly_savings: float
    annual_savings: float
    pf_monthly_savings: float
    shave_monthly_savings: float


def billed_demand(kva: float, kw: float, billing_method: str) -> float:
    """Return the billed demand units for the given convention."""

    if billing_method == BILLING_APPARENT_POWER:
        return kva
    if billing_method == BILLING_REAL_POWER:
        return kw
    if billing_method == BILLING_MAX_REAL_OR_APPARENT:
        return max(kw, APPARENT_POWER_WEIGHT * kva)
    raise ValidationError(f"billing_method must be one of {BILLING_METHODS}")


def _build_state(kw: float, kva: float, billing_method: str, demand_rate: float) -> BillingState:
    billed = billed_demand(kva, kw, billing_method)
    return BillingState(
        apparent_power_kva=kva,
        real_power_kw=kw,
        billed_demand_units=billed,
        monthly_cost=billed * demand_rate,
    )


def compute_state(kw: float, power_factor: float, billing_method: str, demand_rate: float) -> BillingState:
    """Build a billing state from real power and power factor (kVA = kW / PF)."""

    return _build_state(kw, kw / power_factor, billing_method, demand_rate)


def _ensure_power_factor(value: float, name: str) -> None:
    _ensure_finite(value, name)
    if not MIN_POWER_FACTOR <= value <= MAX_POWER_FACTOR:
        raise ValidationError(f"{name} must be between {MIN_POWER_FACTOR} and {MAX_POWER_FACTOR}")


def resolve_shave_kw(inputs: BillingInputs) -> float:
    """Return the shave applied after PF correction.

    A positive cap takes precedence over ``shave_kw``; a cap of 0 counts as unset.
    """

    kw_after_pf = inputs.measured_peak.real_power_kw(inputs.current_pf)
    if inputs.target_cap_kw is not None and inputs.target_cap_kw > 0:
        return max(0.0, kw_after_pf - inputs.target_cap_kw)
    if inputs.shave_kw is not None:
        return float(inputs.shave_kw)
    return 0.0


def validate_billing_inputs(inputs: BillingInputs) -> None:
    """Raise ValidationError for out-of-range or contradictory billing inputs."""

    if inputs.billing_method not in BILLING_METHODS:
        raise ValidationError(f"billing_method must be one of {BILLING_METHODS}")

    _ensure_finite(inputs.demand_rate, "demand_rate")
    if inputs.demand_rate <= 0:
        raise ValidationError("demand_rate must be positive")

    _ensure_non_negative_finite(inputs.measured_peak.value, "measured_peak")

    if inputs.target_pf > MAX_POWER_FACTOR:
        raise ValidationError("target_pf cannot exceed 1.0")
    _ensure_power_factor(inputs.current_pf, "current_pf")
    _ensure_power_factor(inputs.target_pf, "target_pf")
    if inputs.target_pf < inputs.current_pf:
        raise ValidationError("target_pf must be greater than or equal to current_pf")

    if inputs.target_cap_kw is not None:
        _ensure_non_negative_finite(inputs.target_cap_kw, "target_cap_kw")
    if inputs.shave_kw is not None:
        _ensure_non_negative_finite(inputs.shave_kw, "shave_kw")

    kw_after_pf = inputs.measured_peak.real_power_kw(inputs.current_pf)
    shave_kw = resolve_shave_kw(inputs)
    if shave_kw > kw_after_pf:
        raise ValidationError(
            f"shave_kw ({shave_kw:g}) cannot exceed the real-power peak "
            f"after PF correction ({kw_after_pf:g} kW)"
        )


def simulate_billing(inputs: BillingInputs) -> BillingSimulation:
    """Run the before / after-PF / after-PF-and-shave billing simulation."""

    validate_billing_inputs(inputs)

    method = inputs.billing_method
    rate = inputs.demand_rate

    kw0 = inputs.measured_peak.real_power_kw(inputs.current_pf)
    if inputs.measured_peak.unit == "kVA":
        before = _build_state(kw0, inputs.measured_peak.value, method, rate)
    else:
        before = compute_state(kw0, inputs.current_pf, method, rate)

    # PF correction lowers apparent power only.
    after_pf = compute_state(before.real_power_kw, inputs.target_pf, method, rate)

    shave_kw = resolve_shave_kw(inputs)
    after_pf_shave = compute_state(
        max(after_pf.real_power_kw - shave_kw, 0.0), inputs.target_pf, method, rate
    )

    monthly_savings = before.monthly_cost - after_pf_shave.monthly_cost
    return BillingSimulation(
        before=before,
        after_pf=after_pf,
        after_pf_shave=after_pf_shave,
        shave_kw=shave_kw,
        monthly_savings=monthly_savings,
        annual_savings=monthly_savings * MONTHS_PER_YEAR,
        pf_monthly_savings=before.monthly_cost - after_pf.monthly_cost,
        shave_monthly_savings=after_pf.monthly_cost - after_pf_shave.monthly_cost,
    )


__all__ = [
    "BILLING_APPARENT_POWER",
    "BILLING_REAL_POWER",
    "BILLING_MAX_REAL_OR_APPARENT",
    "BILLING_METHODS",
    "DemandReading",
    "BillingState",
    "BillingInputs",
    "BillingSimulation",
    "billed_demand",
    "compute_state",
    "resolve_shave_kw",
    "validate_billing_inputs",
    "simulate_billing",
]
