from __future__ import annotations

import itertools
import unittest

import pytest

from services.billing import (
    BILLING_APPARENT_POWER,
    BILLING_MAX_REAL_OR_APPARENT,
    BILLING_METHODS,
    BILLING_REAL_POWER,
    BillingInputs,
    DemandReading,
    billed_demand,
    compute_state,
    simulate_billing,
)
from services.errors import ValidationError


def _inputs(**overrides) -> BillingInputs:
    params = dict(
        billing_method=BILLING_MAX_REAL_OR_APPARENT,
        demand_rate=15.0,
        measured_peak=DemandReading(unit="kVA", value=500.0),
        current_pf=0.85,
        target_pf=0.95,
    )
    params.update(overrides)
    return BillingInputs(**params)


class MaxRealOrApparentScenarioTests(unittest.TestCase):
    def setUp(self) -> None:
        self.sim = simulate_billing(_inputs())

    def test_before_state_uses_measured_kva(self) -> None:
        self.assertAlmostEqual(self.sim.before.real_power_kw, 425.0)
        self.assertAlmostEqual(self.sim.before.apparent_power_kva, 500.0)
        self.assertAlmostEqual(self.sim.before.billed_demand_units, 450.0)
        self.assertAlmostEqual(self.sim.before.monthly_cost, 6750.0)

    def test_pf_correction_lets_real_power_dominate(self) -> None:
        self.assertAlmostEqual(self.sim.after_pf.real_power_kw, 425.0)
        self.assertAlmostEqual(self.sim.after_pf.apparent_power_kva, 447.368421, places=5)
        self.assertAlmostEqual(self.sim.after_pf.billed_demand_units, 425.0)
        self.assertAlmostEqual(self.sim.after_pf.monthly_cost, 6375.0)

    def test_savings_without_shave(self) -> None:
        self.assertEqual(self.sim.shave_kw, 0.0)
        self.assertAlmostEqual(self.sim.monthly_savings, 375.0)
        self.assertAlmostEqual(self.sim.annual_savings, 4500.0)
        self.assertAlmostEqual(self.sim.pf_monthly_savings, 375.0)
        self.assertAlmostEqual(self.sim.shave_monthly_savings, 0.0)


def test_billed_demand_conventions() -> None:
    assert billed_demand(500.0, 425.0, BILLING_APPARENT_POWER) == 500.0
    assert billed_demand(500.0, 425.0, BILLING_REAL_POWER) == 425.0
    assert billed_demand(500.0, 425.0, BILLING_MAX_REAL_OR_APPARENT) == pytest.approx(450.0)


def test_billed_demand_rejects_unknown_method() -> None:
    with pytest.raises(ValidationError):
        billed_demand(1.0, 1.0, "peak_of_peaks")


def test_compute_state_derives_kva_from_pf() -> None:
    state = compute_state(90.0, 0.9, BILLING_APPARENT_POWER, 10.0)

    assert state.apparent_power_kva == pytest.approx(100.0)
    assert state.monthly_cost == pytest.approx(1000.0)


def test_target_cap_sets_shave() -> None:
    sim = simulate_billing(_inputs(target_cap_kw=400.0))

    assert sim.shave_kw == pytest.approx(25.0)
    assert sim.after_pf_shave.real_power_kw == pytest.approx(400.0)
    assert sim.after_pf_shave.apparent_power_kva == pytest.approx(400.0 / 0.95)
    assert sim.shave_monthly_savings == pytest.approx(25.0 * 15.0)
    assert sim.monthly_savings == pytest.approx(sim.pf_monthly_savings + sim.shave_monthly_savings)


def test_cap_above_peak_means_no_shave() -> None:
    sim = simulate_billing(_inputs(target_cap_kw=1000.0))

    assert sim.shave_kw == 0.0
    assert sim.after_pf_shave == sim.after_pf


def test_cap_takes_precedence_over_explicit_shave() -> None:
    sim = simulate_billing(_inputs(target_cap_kw=400.0, shave_kw=100.0))

    assert sim.shave_kw == pytest.approx(25.0)


def test_zero_cap_is_treated_as_unset() -> None:
    sim = simulate_billing(
        _inputs(
            billing_method=BILLING_REAL_POWER,
            measured_peak=DemandReading("kW", 300.0),
            target_cap_kw=0.0,
            shave_kw=50.0,
        )
    )

    assert sim.shave_kw == pytest.approx(50.0)
    assert sim.after_pf_shave.real_power_kw == pytest.approx(250.0)


def test_zero_cap_without_shave_leaves_peak_untouched() -> None:
    sim = simulate_billing(_inputs(target_cap_kw=0.0))

    assert sim.shave_kw == 0.0
    assert sim.after_pf_shave == sim.after_pf


def test_explicit_shave_equal_to_peak_leaves_zero() -> None:
    sim = simulate_billing(_inputs(billing_method=BILLING_REAL_POWER, measured_peak=DemandReading("kW", 300.0), shave_kw=300.0))

    assert sim.after_pf_shave.real_power_kw == 0.0
    assert sim.after_pf_shave.monthly_cost == 0.0


def test_kw_reading_under_apparent_power_billing() -> None:
    sim = simulate_billing(
        _inputs(billing_method=BILLING_APPARENT_POWER, measured_peak=DemandReading("kW", 425.0))
    )

    assert sim.before.real_power_kw == pytest.approx(425.0)
    assert sim.before.apparent_power_kva == pytest.approx(500.0)


@pytest.mark.parametrize(
    "method, current_pf, target_pf",
    list(itertools.product(BILLING_METHODS, [0.5, 0.8, 0.95], [0.95, 1.0])),
)
def test_pf_correction_properties(method: str, current_pf: float, target_pf: float) -> None:
    sim = simulate_billing(
        _inputs(billing_method=method, current_pf=current_pf, target_pf=target_pf, shave_kw=10.0)
    )

    assert sim.after_pf.real_power_kw == pytest.approx(sim.before.real_power_kw)
    assert sim.after_pf.apparent_power_kva <= sim.before.apparent_power_kva + 1e-9
    assert sim.after_pf_shave.real_power_kw >= 0.0
    assert sim.shave_kw <= sim.after_pf.real_power_kw


@pytest.mark.parametrize(
    "overrides",
    [
        {"target_pf": 0.8},
        {"target_pf": 1.05},
        {"current_pf": 0.4, "target_pf": 0.9},
        {"demand_rate": 0.0},
        {"demand_rate": -3.0},
        {"shave_kw": 426.0},
        {"shave_kw": -1.0},
        {"target_cap_kw": -5.0},
        {"measured_peak": DemandReading("kVA", -10.0)},
        {"measured_peak": DemandReading("kVA", float("nan"))},
        {"billing_method": "coincident_peak"},
    ],
)
def test_invalid_inputs_raise_validation_error(overrides: dict) -> None:
    with pytest.raises(ValidationError):
        simulate_billing(_inputs(**overrides))


def test_demand_reading_rejects_unknown_unit() -> None:
    with pytest.raises(ValidationError):
        DemandReading(unit="MW", value=1.0)  # type: ignore[arg-type]


def test_validation_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        simulate_billing(_inputs(target_pf=0.5))
