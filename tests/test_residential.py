from __future__ import annotations

import math

import pytest

from services.errors import ValidationError
from services.residential import analyze_zero_export_system, battery_capacity

DEFAULT_BLENDED_RATE = 0.37 * 0.039 + 0.22 * 0.098 + 0.27 * 0.157 + 0.14 * 0.39


def test_zero_export_analysis() -> None:
    analysis = analyze_zero_export_system(
        annual_consumption_kwh=12_000.0,
        system_size_kw=7.0,
        annual_solar_kwh=9_000.0,
        battery_kwh=13.5,
        system_cost=30_000.0,
    )

    annual_savings = 12_000.0 * DEFAULT_BLENDED_RATE
    assert analysis.allocation.annual_savings == pytest.approx(annual_savings)

    assert analysis.incentives.solar_incentive == pytest.approx(3_500.0)
    assert analysis.incentives.battery_incentive == pytest.approx(4_050.0)

    economics = analysis.economics
    assert economics.incentives == pytest.approx(7_550.0)
    assert economics.net_cost == pytest.approx(22_450.0)
    assert economics.payback_years == pytest.approx(14.1)
    assert economics.lifetime_savings == pytest.approx(17_444.0)
    assert economics.roi_lifetime_pct == pytest.approx(78.0)
    assert economics.years == 25

    assert analysis.battery.nominal_kwh == 13.5
    assert analysis.battery.usable_kwh == pytest.approx(12.15)
    assert analysis.battery.daily_kwh == pytest.approx(12.15)
    assert analysis.battery.annual_kwh == pytest.approx(4_434.75)
    assert analysis.battery.depth_of_discharge == 0.9


def test_no_offset_means_infinite_payback() -> None:
    analysis = analyze_zero_export_system(
        annual_consumption_kwh=8_000.0,
        system_size_kw=0.0,
        annual_solar_kwh=0.0,
        battery_kwh=0.0,
        system_cost=5_000.0,
    )

    assert math.isinf(analysis.economics.payback_years)
    assert analysis.economics.lifetime_savings == pytest.approx(-5_000.0)


def test_battery_capacity_helper() -> None:
    capacity = battery_capacity(10.0, usable_dod=0.8)

    assert capacity.usable_kwh == pytest.approx(8.0)
    assert capacity.annual_kwh == pytest.approx(2_920.0)


def test_invalid_inputs() -> None:
    with pytest.raises(ValidationError):
        analyze_zero_export_system(12_000.0, 7.0, -1.0, 13.5, 30_000.0)
    with pytest.raises(ValidationError):
        analyze_zero_export_system(12_000.0, 7.0, 9_000.0, 13.5, float("nan"))


def test_missing_solar_uses_production_estimate() -> None:
    analysis = analyze_zero_export_system(12_000.0, 7.0, None, 13.5, 30_000.0)

    assert analysis.production is not None
    assert analysis.production.source == "fallback"
    assert analysis.production.annual_kwh == pytest.approx(8_400.0)
    assert analysis.allocation.offset_budget_kwh == pytest.approx(8_400.0 + 4_434.75)
    assert analysis.recommendation is None


def test_missing_solar_uses_injected_provider() -> None:
    def provider(system_size_kw: float, **_site) -> dict:
        return {"annual_kwh": system_size_kw * 1_400.0}

    analysis = analyze_zero_export_system(
        12_000.0, 5.0, None, 10.0, 20_000.0, production_provider=provider
    )

    assert analysis.production.source == "provider"
    assert analysis.allocation.offset_budget_kwh == pytest.approx(7_000.0 + 10.0 * 0.9 * 365)


def test_missing_battery_uses_recommended_size() -> None:
    analysis = analyze_zero_export_system(12_000.0, 7.0, 9_000.0, None, 30_000.0)

    assert analysis.recommendation is not None
    assert analysis.recommendation.recommended_kwh == 20.0
    assert analysis.battery.nominal_kwh == 20.0
    assert analysis.incentives.battery_incentive == pytest.approx(5_000.0)
    assert analysis.production is None
