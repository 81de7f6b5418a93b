"""Solar production estimates with a deterministic fallback profile."""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional, Sequence

import numpy as np

from services.errors import ConfigurationError
from utils.economics import _ensure_fraction, _ensure_non_negative_finite

FALLBACK_YIELD_KWH_PER_KW = 1200.0

# Northern-hemisphere seasonal weights, January first. They sum to 1.08 and are
# renormalised below so the monthly split preserves the annual total.
_SEASONAL_SHAPE = (
    0.051,
    0.067,
    0.087,
    0.099,
    0.116,
    0.122,
    0.127,
    0.118,
    0.103,
    0.084,
    0.057,
    0.049,
)
FALLBACK_MONTHLY_FRACTIONS = tuple(value / sum(_SEASONAL_SHAPE) for value in _SEASONAL_SHAPE)

SOURCE_PROVIDER = "provider"
SOURCE_FALLBACK = "fallback"

ProductionProvider = Callable[..., Mapping[str, Any]]


@dataclass(frozen=True)
class ProductionEstimate:
    annual_kwh: float
    monthly_kwh: tuple[float, ...]
    source: str
    warnings: tuple[str, ...] = ()


def distribute_annual_production(
    annual_kwh: float, fractions: Sequence[float] = FALLBACK_MONTHLY_FRACTIONS
) -> tuple[float, ...]:
    """Split an annual total into 12 monthly values by fixed fractions."""

    _ensure_non_negative_finite(annual_kwh, "annual_kwh")
    weights = np.asarray(fractions, dtype=float)
    if weights.shape != (12,):
        raise ConfigurationError("Monthly production fractions must contain exactly 12 values")
    if np.any(weights < 0) or not math.isclose(float(weights.sum()), 1.0, abs_tol=1e-6):
        raise ConfigurationError("Monthly production fractions must be non-negative and sum to 1.0")
    return tuple(float(value) for value in weights * annual_kwh)


def _fallback_estimate(system_size_kw: float, shading_factor: float, reason: str) -> ProductionEstimate:
    logging.getLogger(__name__).warning(reason)
    annual = system_size_kw * FALLBACK_YIELD_KWH_PER_KW * shading_factor
    return ProductionEstimate(
        annual_kwh=annual,
        monthly_kwh=distribute_annual_production(annual),
        source=SOURCE_FALLBACK,
        warnings=(reason,),
    )


def _coerce_provider_result(result: Mapping[str, Any]) -> tuple[float, Optional[tuple[float, ...]]]:
    annual = float(result["annual_kwh"])
    _ensure_non_negative_finite(annual, "annual_kwh")
    monthly = result.get("monthly_kwh")
    if monthly is None:
        return annual, None
    values = tuple(float(value) for value in monthly)
    if len(values) != 12:
        raise ConfigurationError("Provider returned monthly production that is not 12 values")
    for value in values:
        _ensure_non_negative_finite(value, "monthly_kwh")
    return annual, values


def estimate_production(
    system_size_kw: float,
    provider: Optional[ProductionProvider] = None,
    shading_factor: float = 1.0,
    **site: Any,
) -> ProductionEstimate:
    """Return annual and monthly production for a PV system.

    ``provider`` is called as ``provider(system_size_kw=..., **site)`` and must
    return a mapping with ``annual_kwh`` and optionally ``monthly_kwh``. Any
    failure falls back to ``system_size_kw * 1200 kWh/kW * shading_factor``
    spread over the fixed monthly fractions. No retry is attempted here.
    """

    _ensure_non_negative_finite(system_size_kw, "system_size_kw")
    _ensure_fraction(shading_factor, "shading_factor")

    if provider is None:
        return _fallback_estimate(
            system_size_kw, shading_factor, "No production provider configured; using fallback yield."
        )

    try:
        annual, monthly = _coerce_provider_result(provider(system_size_kw=system_size_kw, **site))
    except Exception as exc:  # noqa: BLE001
        return _fallback_estimate(
            system_size_kw, shading_factor, f"Production provider failed ({exc}); using fallback yield."
        )

    if monthly is None:
        return ProductionEstimate(
            annual_kwh=annual,
            monthly_kwh=distribute_annual_production(annual),
            source=SOURCE_PROVIDER,
            warnings=("Provider returned no monthly values; distributed by fallback fractions.",),
        )
    return ProductionEstimate(annual_kwh=annual, monthly_kwh=monthly, source=SOURCE_PROVIDER)


__all__ = [
    "FALLBACK_YIELD_KWH_PER_KW",
    "FALLBACK_MONTHLY_FRACTIONS",
    "ProductionEstimate",
    "ProductionProvider",
    "distribute_annual_production",
    "estimate_production",
]
