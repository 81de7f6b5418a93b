from __future__ import annotations

import math
import os
from contextlib import contextmanager
from dataclasses import asdict
from functools import lru_cache
from typing import Any, Dict, Iterator, Literal, Optional

from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field, field_validator, model_validator

from services.battery_sizing import recommend_residential_battery
from services.billing import BILLING_APPARENT_POWER, BILLING_METHODS, DemandReading
from services.commercial import CommercialInputs, CommercialResults, calculate_commercial_results
from services.errors import EngineError
from services.rebates import DEFAULT_REBATE_CAP_DOLLARS, DEFAULT_REBATE_RATE_PER_KW
from services.residential import analyze_zero_export_system
from services.tou_allocation import (
    DEFAULT_TOU_SCHEDULE,
    DEFAULT_USABLE_DOD,
    TariffSchedule,
    TOUAllocationResult,
    allocate_tou_offsets,
    load_tariff_schedule,
)
from utils.economics import DEFAULT_ANALYSIS_YEARS, DEFAULT_ANNUAL_ESCALATOR
from utils.io import ParsedSeries, read_interval_data

_DEFAULT_COMMERCIAL = CommercialInputs(demand_rate=1.0, installed_cost_total=0.0)


class DemandPayload(BaseModel):
    unit: Literal["kW", "kVA"]
    value: float

    def to_reading(self) -> DemandReading:
        return DemandReading(unit=self.unit, value=self.value)


class IntervalPayload(BaseModel):
    content: str
    filename: Optional[str] = None
    include_readings: bool = False


class CommercialPayload(BaseModel):
    """Pydantic mirror of :class:`CommercialInputs` plus optional interval data."""

    demand_rate: float
    installed_cost_total: float
    billing_method: str = BILLING_APPARENT_POWER
    measured_peak: Optional[DemandPayload] = None
    current_pf: float = _DEFAULT_COMMERCIAL.current_pf
    target_pf: float = _DEFAULT_COMMERCIAL.target_pf
    target_cap_kw: Optional[float] = None
    shave_kw: Optional[float] = None
    peak_duration_minutes: Optional[float] = None
    c_rate: float = _DEFAULT_COMMERCIAL.c_rate
    round_trip_efficiency: float = _DEFAULT_COMMERCIAL.round_trip_efficiency
    usable_dod: float = _DEFAULT_COMMERCIAL.usable_dod
    rebate_eligible_kw: float = 0.0
    rebate_rate_per_kw: float = DEFAULT_REBATE_RATE_PER_KW
    rebate_cap_dollars: float = DEFAULT_REBATE_CAP_DOLLARS
    apply_solar_cost_cap: bool = False
    solar_only_cost: Optional[float] = None
    analysis_years: int = DEFAULT_ANALYSIS_YEARS
    annual_escalator: float = DEFAULT_ANNUAL_ESCALATOR
    interval_content: Optional[str] = None
    interval_filename: Optional[str] = None

    @field_validator("billing_method")
    @classmethod
    def validate_billing_method(cls, value: str) -> str:
        if value not in BILLING_METHODS:
            raise ValueError(f"billing_method must be one of {BILLING_METHODS}")
        return value

    @model_validator(mode="after")
    def require_peak_source(self) -> "CommercialPayload":
        if self.measured_peak is None and not self.interval_content:
            raise ValueError("Provide measured_peak or interval_content.")
        return self

    def build(self) -> CommercialInputs:
        return CommercialInputs(
            demand_rate=self.demand_rate,
            installed_cost_total=self.installed_cost_total,
            billing_method=self.billing_method,
            measured_peak=self.measured_peak.to_reading() if self.measured_peak else None,
            current_pf=self.current_pf,
            target_pf=self.target_pf,
            target_cap_kw=self.target_cap_kw,
            shave_kw=self.shave_kw,
            peak_duration_minutes=self.peak_duration_minutes,
            c_rate=self.c_rate,
            round_trip_efficiency=self.round_trip_efficiency,
            usable_dod=self.usable_dod,
            rebate_eligible_kw=self.rebate_eligible_kw,
            rebate_rate_per_kw=self.rebate_rate_per_kw,
            rebate_cap_dollars=self.rebate_cap_dollars,
            apply_solar_cost_cap=self.apply_solar_cost_cap,
            solar_only_cost=self.solar_only_cost,
            analysis_years=self.analysis_years,
            annual_escalator=self.annual_escalator,
        )


class TOURequest(BaseModel):
    annual_consumption_kwh: float
    annual_solar_kwh: float = 0.0
    battery_kwh: float = 0.0
    usable_dod: float = DEFAULT_USABLE_DOD


class ZeroExportRequest(BaseModel):
    annual_consumption_kwh: float
    system_size_kw: float
    annual_solar_kwh: Optional[float] = None  # estimated from system size when omitted
    battery_kwh: Optional[float] = None  # recommended from consumption when omitted
    system_cost: float
    usable_dod: float = DEFAULT_USABLE_DOD
    years: int = Field(default=DEFAULT_ANALYSIS_YEARS, ge=1)


class BatteryRecommendationRequest(BaseModel):
    annual_consumption_kwh: float
    system_size_kw: float = 0.0


@contextmanager
def _engine_errors() -> Iterator[None]:
    try:
        yield
    except EngineError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@lru_cache(maxsize=1)
def _tariff_schedule() -> TariffSchedule:
    path = os.getenv("PEAKSHAVE_TARIFF_SCHEDULE", "").strip()
    if not path:
        return DEFAULT_TOU_SCHEDULE
    return load_tariff_schedule(path)


def _jsonable(value: Any) -> Any:
    """Replace non-finite floats with ``None`` so the payload is strict JSON."""

    if isinstance(value, float) and not math.isfinite(value):
        return None
    if isinstance(value, dict):
        return {key: _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    return value


def _serialize_series(series: ParsedSeries, include_readings: bool) -> Dict[str, Any]:
    data: Dict[str, Any] = {
        "interval_count": len(series),
        "interval_minutes": series.interval_minutes,
        "peak_kw": series.peak_kw,
        "peak_timestamp": series.peak_timestamp.isoformat(),
        "base_load_kw": series.base_load_kw,
        "typical_peak_duration_minutes": series.typical_peak_duration_minutes,
        "warnings": list(series.warnings),
    }
    if include_readings:
        data["readings"] = [
            {"timestamp": reading.timestamp.isoformat(), "power_kw": reading.power_kw}
            for reading in series.readings
        ]
    return data


def _serialize_commercial(results: CommercialResults) -> Dict[str, Any]:
    return _jsonable(
        {
            "billing": asdict(results.billing),
            "sizing": asdict(results.sizing),
            "rebate": asdict(results.rebate),
            "economics": {
                "roi_year1_pct": results.economics.roi_year1_pct,
                "payback_years": results.economics.payback_years,
                "total_savings": results.economics.total_savings,
                "yearly": [asdict(row) for row in results.economics.yearly],
            },
            "lifetime": asdict(results.lifetime),
            "peak_duration_minutes": results.peak_duration_minutes,
            "warnings": list(results.warnings),
        }
    )


def _serialize_allocation(result: TOUAllocationResult) -> Dict[str, Any]:
    return _jsonable(asdict(result))


app = FastAPI(
    title="Peak Shave API",
    description="REST surface for demand-charge billing, battery sizing and TOU offset analysis.",
    version="0.1.0",
)


_default_cors_origins = [
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://localhost:3000",
    "http://127.0.0.1:3000",
]
_allowed_origins_env = os.getenv("PEAKSHAVE_CORS_ORIGINS", "")
_allowed_origins = [
    origin.strip()
    for origin in _allowed_origins_env.split(",")
    if origin.strip()
] or _default_cors_origins

app.add_middleware(
    CORSMiddleware,
    allow_origins=_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health() -> Dict[str, str]:
    """Simple liveness probe for container orchestrators."""
    return {"status": "ok"}


@app.post("/intervals")
def parse_intervals(payload: IntervalPayload) -> Dict[str, Any]:
    """Parse a CSV or Green Button XML export and return the load summary."""

    with _engine_errors():
        series = read_interval_data(payload.content, payload.filename)
    return _serialize_series(series, payload.include_readings)


@app.post("/commercial")
def commercial(payload: CommercialPayload) -> Dict[str, Any]:
    """Run billing, sizing, rebate and economics for a commercial site."""

    with _engine_errors():
        series = None
        if payload.interval_content:
            series = read_interval_data(payload.interval_content, payload.interval_filename)
        results = calculate_commercial_results(payload.build(), series)
    response = _serialize_commercial(results)
    if series is not None:
        response["intervals"] = _serialize_series(series, include_readings=False)
    return response


@app.post("/residential/tou")
def residential_tou(request: TOURequest) -> Dict[str, Any]:
    """Allocate the solar and battery budget across TOU periods."""

    with _engine_errors():
        result = allocate_tou_offsets(
            request.annual_consumption_kwh,
            request.annual_solar_kwh,
            request.battery_kwh,
            usable_dod=request.usable_dod,
            schedule=_tariff_schedule(),
        )
    return _serialize_allocation(result)


@app.post("/residential/zero-export")
def residential_zero_export(request: ZeroExportRequest) -> Dict[str, Any]:
    """Zero-export solar + battery savings, incentives and payback."""

    with _engine_errors():
        analysis = analyze_zero_export_system(
            request.annual_consumption_kwh,
            request.system_size_kw,
            request.annual_solar_kwh,
            request.battery_kwh,
            request.system_cost,
            usable_dod=request.usable_dod,
            schedule=_tariff_schedule(),
            years=request.years,
        )
    return _jsonable(asdict(analysis))


@app.post("/residential/battery-recommendation")
def residential_battery_recommendation(request: BatteryRecommendationRequest) -> Dict[str, Any]:
    """Suggest a common battery size from annual consumption."""

    with _engine_errors():
        recommendation = recommend_residential_battery(
            request.annual_consumption_kwh, request.system_size_kw
        )
    return asdict(recommendation)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("api.server:app", host="0.0.0.0", port=8000, reload=False)
