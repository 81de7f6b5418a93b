"""Input parsing utilities for utility interval-demand exports.

Two layouts are accepted: a delimited table with a header row (timestamp and
power/demand columns matched by case-insensitive substring) and a Green Button
ESPI-style XML export made of ``IntervalBlock`` elements holding energy
readings in Wh. Both are reduced to a 15-minute kW series and analysed for the
peak, base load, and typical peak duration used by the billing and sizing
engines.
"""

from __future__ import annotations

import io
import logging
import math
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from services.errors import FormatError, ValidationError

INTERVAL_MINUTES = 15
MIN_INTERVALS_FOR_FULL_DAY = 96  # 24 h of 15-minute data
PEAK_THRESHOLD_FRACTION = 0.8
BASE_LOAD_PERCENTILE = 0.05

TIMESTAMP_HEADER_TOKENS = ("timestamp", "date", "time")
POWER_HEADER_TOKENS = ("kw", "power", "demand", "value")


@dataclass(frozen=True)
class IntervalReading:
    """Average demand over one interval starting at ``timestamp``."""

    timestamp: datetime
    power_kw: float

    def __post_init__(self) -> None:
        if not math.isfinite(self.power_kw) or self.power_kw < 0:
            raise ValidationError("power_kw must be a finite, non-negative number")


@dataclass(frozen=True)
class ParsedSeries:
    """Resampled interval series plus the demand statistics derived from it."""

    readings: Tuple[IntervalReading, ...]
    peak_kw: float
    peak_timestamp: datetime
    base_load_kw: float
    typical_peak_duration_minutes: int
    warnings: Tuple[str, ...] = ()
    interval_minutes: int = INTERVAL_MINUTES

    def __post_init__(self) -> None:
        if not self.readings:
            raise FormatError("An interval series needs at least one reading.")

    def __len__(self) -> int:
        return len(self.readings)

    def to_frame(self) -> pd.DataFrame:
        return pd.DataFrame(
            {
                "timestamp": pd.to_datetime([r.timestamp for r in self.readings]),
                "power_kw": [r.power_kw for r in self.readings],
            }
        )


def _find_column(headers: Sequence[str], tokens: Sequence[str], exclude: Optional[int] = None) -> Optional[int]:
    for idx, header in enumerate(headers):
        if idx == exclude:
            continue
        if any(token in header for token in tokens):
            return idx
    return None


def _parse_timestamps(values: pd.Series) -> pd.Series:
    """Parse timestamps row by row; offsets are normalised to naive UTC."""

    cleaned = values.astype("string").str.strip()
    parsed = pd.to_datetime(cleaned, errors="coerce", utc=True, format="mixed")
    return parsed.dt.tz_convert(None)


def _parse_instant(text: Optional[str]) -> Optional[datetime]:
    """Parse epoch seconds or an ISO-8601 string into a naive UTC datetime."""

    if text is None or not text.strip():
        return None
    text = text.strip()
    try:
        seconds = float(text)
    except ValueError:
        parsed = pd.to_datetime(text, errors="coerce", utc=True)
        if pd.isna(parsed):
            return None
        return parsed.tz_convert(None).to_pydatetime()

    if not math.isfinite(seconds):
        return None
    try:
        return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)
    except (OverflowError, OSError, ValueError):
        return None


def _raw_frame(timestamps: Sequence, power_kw: Sequence[float]) -> pd.DataFrame:
    return pd.DataFrame(
        {
            "timestamp": pd.to_datetime(list(timestamps)),
            "power_kw": np.asarray(power_kw, dtype=float),
        }
    )


def _parse_csv_rows(text: str, warnings: List[str]) -> pd.DataFrame:
    """Return the valid (timestamp, power_kw) rows of a delimited export in file order."""

    bad_lines: List[List[str]] = []

    def _on_bad_line(fields: List[str]) -> None:
        bad_lines.append(fields)
        return None

    try:
        df = pd.read_csv(
            io.StringIO(text),
            dtype=str,
            index_col=False,
            skipinitialspace=True,
            skip_blank_lines=True,
            engine="python",
            on_bad_lines=_on_bad_line,
        )
    except pd.errors.EmptyDataError as exc:
        raise FormatError("Interval CSV is empty.") from exc
    except pd.errors.ParserError as exc:
        raise FormatError(f"Interval CSV could not be parsed: {exc}") from exc

    headers = [str(col).strip().lower() for col in df.columns]
    ts_idx = _find_column(headers, TIMESTAMP_HEADER_TOKENS)
    power_idx = _find_column(headers, POWER_HEADER_TOKENS, exclude=ts_idx)
    if ts_idx is None or power_idx is None:
        raise FormatError("CSV must contain timestamp and power (kW) columns.")

    for fields in bad_lines:
        warnings.append(f"Skipped malformed row with {len(fields)} fields: {','.join(fields)}")

    ts_raw = df.iloc[:, ts_idx]
    power_raw = df.iloc[:, power_idx]
    timestamps = _parse_timestamps(ts_raw)
    power = pd.to_numeric(power_raw.astype("string").str.strip(), errors="coerce").to_numpy(
        dtype=float, na_value=np.nan
    )

    ts_missing = timestamps.isna().to_numpy()
    power_invalid = ~np.isfinite(power)
    for pos in range(len(df)):
        if ts_missing[pos]:
            warnings.append(f"Invalid timestamp at data row {pos + 1}: {ts_raw.iat[pos]}")
        elif power_invalid[pos]:
            warnings.append(f"Invalid power value at data row {pos + 1}: {power_raw.iat[pos]}")

    valid = ~ts_missing & ~power_invalid
    return _raw_frame(timestamps[valid].tolist(), power[valid])


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _child(elem: ET.Element, name: str) -> Optional[ET.Element]:
    for child in elem:
        if _local_name(child.tag) == name:
            return child
    return None


def _child_text(elem: Optional[ET.Element], name: str) -> Optional[str]:
    if elem is None:
        return None
    child = _child(elem, name)
    return child.text if child is not None else None


def _parse_duration_seconds(text: Optional[str]) -> Optional[float]:
    try:
        seconds = float((text or "").strip())
    except ValueError:
        return None
    if not math.isfinite(seconds) or seconds <= 0:
        return None
    return seconds


def _parse_xml_readings(text: str, warnings: List[str]) -> pd.DataFrame:
    """Return readings from every well-formed ``IntervalBlock`` in document order.

    A reading's own ``timePeriod`` (duration/start) takes precedence over the
    block header; readings without one are laid out back to back from the
    block start using the block duration.
    """

    try:
        root = ET.fromstring(text)
    except ET.ParseError as exc:
        raise FormatError(f"Invalid XML interval export: {exc}") from exc

    blocks = [elem for elem in root.iter() if _local_name(elem.tag) == "IntervalBlock"]
    if not blocks:
        raise FormatError("Unrecognized interval export: no IntervalBlock elements found.")

    timestamps: List[datetime] = []
    power_kw: List[float] = []
    for block_no, block in enumerate(blocks, start=1):
        header = _child(block, "interval")
        if header is None:
            header = block
        block_duration = _parse_duration_seconds(_child_text(header, "duration"))
        block_start = _parse_instant(_child_text(header, "start"))
        if block_duration is None or block_start is None:
            warnings.append(f"Skipped IntervalBlock {block_no}: missing or invalid duration/start.")
            continue

        offset = 0
        for reading_no, reading in enumerate(
            (child for child in block if _local_name(child.tag) == "IntervalReading"), start=1
        ):
            period = _child(reading, "timePeriod")
            duration = block_duration
            start = block_start + timedelta(seconds=offset * block_duration)
            if period is not None:
                duration = _parse_duration_seconds(_child_text(period, "duration")) or block_duration
                start = _parse_instant(_child_text(period, "start"))
            offset += 1

            value_text = _child_text(reading, "value")
            try:
                energy_wh = float((value_text or "").strip())
            except ValueError:
                energy_wh = math.nan
            if start is None or not math.isfinite(energy_wh):
                warnings.append(
                    f"Skipped reading {reading_no} in IntervalBlock {block_no}: "
                    "missing or invalid value/timePeriod."
                )
                continue

            timestamps.append(start)
            power_kw.append((energy_wh / 1000.0) / (duration / 3600.0))

    return _raw_frame(timestamps, power_kw)


def resample_intervals(frame: pd.DataFrame, minutes: int = INTERVAL_MINUTES) -> pd.DataFrame:
    """Average readings into clock-aligned ``[t, t + minutes)`` windows.

    Windows without any reading are omitted rather than interpolated, so gaps
    in the source data stay visible as gaps in the output.
    """

    if frame.empty:
        return frame[["timestamp", "power_kw"]].copy()

    windows = frame["timestamp"].dt.floor(f"{int(minutes)}min")
    resampled = frame.groupby(windows)["power_kw"].mean()
    return resampled.rename_axis("timestamp").reset_index()


def _base_load_kw(power: np.ndarray) -> float:
    """Return the 5th-percentile demand, falling back to the minimum for tiny samples."""

    ordered = np.sort(power)
    index = int(math.floor(len(ordered) * BASE_LOAD_PERCENTILE))
    if index <= 0:
        return float(ordered.min())
    return float(ordered[index])


def _typical_peak_duration_minutes(
    timestamps: Sequence[pd.Timestamp], power: np.ndarray, peak_kw: float, interval_minutes: int
) -> int:
    """Length of the longest time-contiguous run at or above 80% of peak."""

    threshold = peak_kw * PEAK_THRESHOLD_FRACTION
    step = pd.Timedelta(minutes=interval_minutes)
    longest = 0
    current = 0
    previous: Optional[pd.Timestamp] = None
    for ts, value in zip(timestamps, power):
        if value >= threshold:
            if current and previous is not None and ts - previous == step:
                current += 1
            else:
                current = 1
            longest = max(longest, current)
        else:
            current = 0
        previous = ts
    return max(longest, 1) * interval_minutes


def analyze_intervals(
    frame: pd.DataFrame,
    warnings: Sequence[str] = (),
    interval_minutes: int = INTERVAL_MINUTES,
) -> ParsedSeries:
    """Derive peak, base load, and typical peak duration from a resampled series."""

    if frame.empty:
        raise FormatError("No intervals to analyze.")

    frame = frame.sort_values("timestamp", kind="mergesort").reset_index(drop=True)
    timestamps = frame["timestamp"].tolist()
    power = frame["power_kw"].to_numpy(dtype=float)

    peak_pos = int(np.argmax(power))
    peak_kw = float(power[peak_pos])

    readings = tuple(
        IntervalReading(timestamp=ts.to_pydatetime(), power_kw=float(value))
        for ts, value in zip(timestamps, power)
    )
    return ParsedSeries(
        readings=readings,
        peak_kw=peak_kw,
        peak_timestamp=timestamps[peak_pos].to_pydatetime(),
        base_load_kw=_base_load_kw(power),
        typical_peak_duration_minutes=_typical_peak_duration_minutes(
            timestamps, power, peak_kw, interval_minutes
        ),
        warnings=tuple(warnings),
        interval_minutes=interval_minutes,
    )


def _finalize(raw: pd.DataFrame, warnings: List[str]) -> ParsedSeries:
    """Validate raw readings, resample to 15 minutes, and analyse the result."""

    logger = logging.getLogger(__name__)
    if warnings:
        logger.warning("Skipped %d malformed interval rows/blocks.", len(warnings))

    if raw.empty:
        raise FormatError("No valid interval readings found.")

    if (raw["timestamp"].diff().dropna() < pd.Timedelta(0)).any():
        message = "Non-monotonic timestamps detected - data may be out of order."
        warnings.append(message)
        logger.warning(message)

    negative = raw["power_kw"] < 0
    if negative.any():
        warnings.append(f"Clamped {int(negative.sum())} negative power readings to 0 kW.")
        raw = raw.assign(power_kw=raw["power_kw"].clip(lower=0.0))

    resampled = resample_intervals(raw, INTERVAL_MINUTES)
    if len(resampled) < MIN_INTERVALS_FOR_FULL_DAY:
        warnings.append("Less than 24 hours of data - results may be inaccurate.")

    return analyze_intervals(resampled, warnings, INTERVAL_MINUTES)


def read_interval_csv(text: str) -> ParsedSeries:
    """Parse a delimited interval export into a 15-minute :class:`ParsedSeries`."""

    warnings: List[str] = []
    raw = _parse_csv_rows(text, warnings)
    return _finalize(raw, warnings)


def read_interval_xml(text: str) -> ParsedSeries:
    """Parse a Green Button ESPI-style export into a 15-minute :class:`ParsedSeries`."""

    warnings: List[str] = []
    raw = _parse_xml_readings(text, warnings)
    return _finalize(raw, warnings)


def read_interval_data(content: Union[str, bytes], filename: Optional[str] = None) -> ParsedSeries:
    """Route an upload to the CSV or XML parser by extension, else by content."""

    if isinstance(content, bytes):
        try:
            content = content.decode("utf-8-sig")
        except UnicodeDecodeError as exc:
            raise FormatError(f"Interval export is not valid UTF-8 text: {exc}") from exc
    content = content.lstrip("\ufeff")

    name = (filename or "").lower()
    if name.endswith(".csv"):
        return read_interval_csv(content)
    if name.endswith(".xml"):
        return read_interval_xml(content)
    if content.lstrip().startswith("<"):
        return read_interval_xml(content)
    return read_interval_csv(content)


__all__ = [
    "INTERVAL_MINUTES",
    "MIN_INTERVALS_FOR_FULL_DAY",
    "IntervalReading",
    "ParsedSeries",
    "analyze_intervals",
    "read_interval_csv",
    "read_interval_data",
    "read_interval_xml",
    "resample_intervals",
]
