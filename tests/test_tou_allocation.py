from __future__ import annotations

import json

import pytest

from services.errors import ConfigurationError, ValidationError
from services.tou_allocation import (
    DEFAULT_TOU_SCHEDULE,
    TariffPeriod,
    TariffSchedule,
    allocate_tou_offsets,
    load_tariff_schedule,
    tariff_schedule_from_mapping,
)


def test_default_schedule_priority() -> None:
    keys = [period.key for period in DEFAULT_TOU_SCHEDULE.priority_order()]

    assert keys == ["on_peak", "mid_peak", "off_peak", "ultra_low"]


def test_residential_scenario_offsets_on_peak_first() -> None:
    result = allocate_tou_offsets(12_000.0, 9_000.0, 13.5, usable_dod=0.9)

    assert result.battery_annual_kwh == pytest.approx(4_434.75)
    assert result.offset_budget_kwh == pytest.approx(13_434.75)

    on_peak = result.period("on_peak")
    assert on_peak.pre_usage_kwh == pytest.approx(1_680.0)
    assert on_peak.offset_kwh == pytest.approx(1_680.0)
    assert on_peak.post_usage_kwh == pytest.approx(0.0)
    assert on_peak.reduction_pct == pytest.approx(100.0)

    # Budget exceeds consumption, so every bucket is cleared.
    assert result.total_offset_kwh == pytest.approx(12_000.0)
    assert result.post_cost == pytest.approx(0.0)
    assert result.percent_saved == pytest.approx(100.0)
    assert result.unused_budget_kwh == pytest.approx(1_434.75)
    assert result.solar_used_kwh == pytest.approx(9_000.0)
    assert result.battery_used_kwh == pytest.approx(3_000.0)


def test_pre_cost_uses_default_rates() -> None:
    result = allocate_tou_offsets(10_000.0, 0.0, 0.0)

    expected = 10_000.0 * (0.37 * 0.039 + 0.22 * 0.098 + 0.27 * 0.157 + 0.14 * 0.39)
    assert result.pre_cost == pytest.approx(expected)
    assert result.annual_savings == pytest.approx(0.0)
    assert result.monthly_savings == pytest.approx(0.0)


def test_partial_budget_stops_at_mid_peak() -> None:
    result = allocate_tou_offsets(10_000.0, 2_000.0, 0.0)

    assert result.period("on_peak").offset_kwh == pytest.approx(1_400.0)
    assert result.period("mid_peak").offset_kwh == pytest.approx(600.0)
    assert result.period("off_peak").offset_kwh == 0.0
    assert result.period("ultra_low").offset_kwh == 0.0
    assert result.annual_savings == pytest.approx(1_400.0 * 0.39 + 600.0 * 0.157)
    assert result.monthly_savings == pytest.approx(result.annual_savings / 12)
    assert result.solar_used_kwh == pytest.approx(2_000.0)
    assert result.battery_used_kwh == 0.0


@pytest.mark.parametrize(
    "consumption, solar, battery",
    [(0.0, 0.0, 0.0), (8_000.0, 1_000.0, 10.0), (20_000.0, 30_000.0, 20.0), (5_432.1, 123.4, 13.5)],
)
def test_conservation(consumption: float, solar: float, battery: float) -> None:
    result = allocate_tou_offsets(consumption, solar, battery)

    pre = sum(p.pre_usage_kwh for p in result.periods)
    post = sum(p.post_usage_kwh for p in result.periods)
    offset = sum(p.offset_kwh for p in result.periods)
    assert pre == pytest.approx(post + offset)
    assert pre == pytest.approx(consumption)
    for period in result.periods:
        assert 0.0 <= period.offset_kwh <= period.pre_usage_kwh + 1e-9


def test_zero_consumption_has_zero_percent_saved() -> None:
    result = allocate_tou_offsets(0.0, 5_000.0, 10.0)

    assert result.percent_saved == 0.0
    assert result.total_offset_kwh == 0.0


def test_custom_schedule_with_equal_prices_keeps_declaration_order() -> None:
    schedule = TariffSchedule(
        periods=(
            TariffPeriod("night", "Night", 0.10, 50.0),
            TariffPeriod("day", "Day", 0.20, 25.0),
            TariffPeriod("evening", "Evening", 0.20, 25.0),
        )
    )
    result = allocate_tou_offsets(1_000.0, 300.0, 0.0, schedule=schedule)

    assert [p.key for p in schedule.priority_order()] == ["day", "evening", "night"]
    assert result.period("day").offset_kwh == pytest.approx(250.0)
    assert result.period("evening").offset_kwh == pytest.approx(50.0)
    assert result.period("night").offset_kwh == 0.0


def test_schedule_shares_must_sum_to_100() -> None:
    with pytest.raises(ConfigurationError):
        TariffSchedule(periods=(TariffPeriod("a", "A", 0.1, 60.0), TariffPeriod("b", "B", 0.2, 30.0)))


def test_schedule_keys_must_be_unique() -> None:
    with pytest.raises(ConfigurationError):
        TariffSchedule(periods=(TariffPeriod("a", "A", 0.1, 50.0), TariffPeriod("a", "B", 0.2, 50.0)))


def test_schedule_rejects_negative_price() -> None:
    with pytest.raises(ConfigurationError):
        TariffSchedule(periods=(TariffPeriod("a", "A", -0.1, 100.0),))


def test_schedule_from_mapping_and_json(tmp_path) -> None:
    data = {
        "name": "flat-ish",
        "periods": [
            {"key": "peak", "name": "Peak", "price_per_kwh": 0.3, "usage_share_pct": 40},
            {"key": "off", "price_per_kwh": 0.1, "usage_share_pct": 60},
        ],
    }
    schedule = tariff_schedule_from_mapping(data)
    assert schedule.name == "flat-ish"
    assert schedule.periods[1].name == "off"

    path = tmp_path / "schedule.json"
    path.write_text(json.dumps(data), encoding="utf-8")
    assert load_tariff_schedule(path) == schedule


def test_schedule_mapping_errors(tmp_path) -> None:
    with pytest.raises(ConfigurationError):
        tariff_schedule_from_mapping({"periods": [{"key": "x", "usage_share_pct": 100}]})
    with pytest.raises(ConfigurationError):
        tariff_schedule_from_mapping({"periods": "nope"})

    bad = tmp_path / "bad.json"
    bad.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigurationError):
        load_tariff_schedule(bad)
    with pytest.raises(ConfigurationError):
        load_tariff_schedule(tmp_path / "missing.json")


def test_invalid_allocation_inputs() -> None:
    with pytest.raises(ValidationError):
        allocate_tou_offsets(-1.0, 0.0, 0.0)
    with pytest.raises(ValidationError):
        allocate_tou_offsets(1_000.0, 0.0, 10.0, usable_dod=0.0)


def test_to_frame_lists_periods() -> None:
    frame = allocate_tou_offsets(12_000.0, 1_000.0, 0.0).to_frame()

    assert list(frame["key"]) == ["ultra_low", "off_peak", "mid_peak", "on_peak"]
    assert "reduction_pct" in frame.columns
