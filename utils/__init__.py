"""Utility helpers shared across the billing and allocation services."""

from utils.economics import EconomicsResult, lifetime_return, project_savings
from utils.io import ParsedSeries, read_interval_csv, read_interval_data, read_interval_xml

__all__ = [
    "EconomicsResult",
    "lifetime_return",
    "project_savings",
    "ParsedSeries",
    "read_interval_csv",
    "read_interval_data",
    "read_interval_xml",
]
