"""Reporting-period helpers: frequency parsing, comparison steps, snapshot names."""
from __future__ import annotations

import re
from pathlib import Path
from typing import Optional, Sequence

from pd_engine.errors import ConfigurationError
from pd_engine.models.setup import Frequency

# (reporting frequency, comparison period) -> number of periods to step back
STEP_MAP: dict[tuple[Frequency, Frequency], int] = {
    (Frequency.yearly, Frequency.yearly): 1,
    (Frequency.quarterly, Frequency.yearly): 4,
    (Frequency.quarterly, Frequency.quarterly): 1,
    (Frequency.monthly, Frequency.yearly): 12,
    (Frequency.monthly, Frequency.quarterly): 3,
    (Frequency.monthly, Frequency.monthly): 1,
}

_SNAPSHOT_PATTERNS = [
    (Frequency.yearly, re.compile(r"^PD_(\d{4})_(\d+)$")),
    (Frequency.monthly, re.compile(r"^PD_(\d{4})-(0[1-9]|1[0-2])_(\d+)$")),
    (Frequency.quarterly, re.compile(r"^PD_(\d{4})Q([1-4])_(\d+)$")),
]


def parse_frequency(value: str) -> Frequency:
    try:
        return Frequency(value)
    except ValueError:
        raise ConfigurationError(
            "PDCalculation.UnknownFrequency", f"Unknown reporting frequency: {value!r}"
        ) from None


def comparison_step(frequency: Frequency, comparison_period: str) -> Optional[int]:
    """Periods to step back for a segment, or None when the combination is not supported."""
    try:
        comparison = Frequency(comparison_period)
    except ValueError:
        return None
    return STEP_MAP.get((frequency, comparison))


def previous_period(period_n: str, periods: Sequence[str], step: int) -> Optional[str]:
    """Period ``step`` positions before ``period_n`` in the sorted period list.

    Returns None when ``period_n`` is unknown or there is not enough history.
    """
    if period_n not in periods:
        return None
    index = list(periods).index(period_n)
    if index < step:
        return None
    return periods[index - step]


def parse_snapshot_name(file_name: str) -> Optional[tuple[Frequency, str]]:
    """Map snapshot file names to (frequency, period label).

    PD_2022_01.csv -> (yearly, "2022"), PD_2024-01_02 -> (monthly, "2024-01"),
    PD_2024Q1_01 -> (quarterly, "2024Q1"). Anything else returns None.
    """
    stem = Path(file_name).stem
    for frequency, pattern in _SNAPSHOT_PATTERNS:
        match = pattern.match(stem)
        if match is None:
            continue
        if frequency == Frequency.yearly:
            return frequency, match.group(1)
        if frequency == Frequency.monthly:
            return frequency, f"{match.group(1)}-{match.group(2)}"
        return frequency, f"{match.group(1)}Q{match.group(2)}"
    return None
