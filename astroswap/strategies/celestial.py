"""
Celestial calendar helpers - pure functions over wall-clock fields.

Lunar phase, planetary day/hour rulers, numerological reduction, Mercury
retrograde windows and seasons. Nothing here touches I/O or the clock;
callers pass the instant in.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

# Known new moon used as the lunar epoch (midnight, in the caller's timezone).
REFERENCE_NEW_MOON = (2000, 1, 6)
SYNODIC_MONTH_DAYS = 29.53

# Upper bounds of each phase bin as a fraction of the cycle. The last phase
# takes everything above 0.8125.
_PHASE_BINS: Tuple[Tuple[float, str], ...] = (
    (0.0625, "New Moon"),
    (0.1875, "Waxing Crescent"),
    (0.3125, "First Quarter"),
    (0.4375, "Waxing Gibbous"),
    (0.5625, "Full Moon"),
    (0.6875, "Waning Gibbous"),
    (0.8125, "Last Quarter"),
)

# Indexed by Sunday=0 .. Saturday=6.
DAY_RULERS: Tuple[str, ...] = (
    "Sun", "Moon", "Mars", "Mercury", "Jupiter", "Venus", "Saturn",
)

# Planetary hour rotation per weekday (Sunday=0). Each day is split into
# seven uneven slots of 3.43 hours counted from 06:00.
PLANETARY_HOURS: Tuple[Tuple[str, ...], ...] = (
    ("Sun", "Venus", "Mercury", "Moon", "Saturn", "Jupiter", "Mars"),
    ("Moon", "Saturn", "Jupiter", "Mars", "Sun", "Venus", "Mercury"),
    ("Mars", "Sun", "Venus", "Mercury", "Moon", "Saturn", "Jupiter"),
    ("Mercury", "Moon", "Saturn", "Jupiter", "Mars", "Sun", "Venus"),
    ("Jupiter", "Mars", "Sun", "Venus", "Mercury", "Moon", "Saturn"),
    ("Venus", "Mercury", "Moon", "Saturn", "Jupiter", "Mars", "Sun"),
    ("Saturn", "Jupiter", "Mars", "Sun", "Venus", "Mercury", "Moon"),
)
_PLANETARY_HOUR_SPAN = 3.43
_PLANETARY_HOUR_OFFSET = 18


@dataclass(frozen=True)
class RetrogradeWindow:
    """Closed interval of calendar days (both ends inclusive)."""
    start: date
    end: date

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end


def _windows(*pairs: Tuple[Tuple[int, int, int], Tuple[int, int, int]]) -> List[RetrogradeWindow]:
    return [RetrogradeWindow(date(*s), date(*e)) for s, e in pairs]


BUILTIN_RETROGRADE_PERIODS: Dict[int, List[RetrogradeWindow]] = {
    2024: _windows(
        ((2024, 4, 1), (2024, 4, 25)),
        ((2024, 8, 5), (2024, 8, 28)),
        ((2024, 11, 25), (2024, 12, 15)),
    ),
    2025: _windows(
        ((2025, 3, 14), (2025, 4, 7)),
        ((2025, 7, 18), (2025, 8, 11)),
        ((2025, 11, 9), (2025, 11, 29)),
    ),
}


def js_weekday(moment: datetime) -> int:
    """Weekday with Sunday=0 .. Saturday=6."""
    return (moment.weekday() + 1) % 7


def moon_phase(moment: datetime) -> str:
    """Name of the lunar phase bin the instant falls into."""
    epoch = datetime(*REFERENCE_NEW_MOON, tzinfo=moment.tzinfo)
    days_since = (moment - epoch).total_seconds() / 86400.0
    phase = (days_since % SYNODIC_MONTH_DAYS) / SYNODIC_MONTH_DAYS
    for upper, name in _PHASE_BINS:
        if phase < upper:
            return name
    return "Waning Crescent"


def day_ruler(moment: datetime) -> str:
    return DAY_RULERS[js_weekday(moment)]


def planetary_hour(hour: int, weekday: int) -> str:
    """Ruling body for ``hour`` (0-23) on ``weekday`` (Sunday=0)."""
    adjusted = (hour + _PLANETARY_HOUR_OFFSET) % 24
    index = int(adjusted // _PLANETARY_HOUR_SPAN) % 7
    return PLANETARY_HOURS[weekday][index]


def digit_root(number: int) -> int:
    """Repeatedly sum decimal digits until the value is at most 9."""
    number = abs(int(number))
    while number > 9:
        number = sum(int(d) for d in str(number))
    return number


def season(month: int) -> str:
    if 3 <= month <= 5:
        return "Spring"
    if 6 <= month <= 8:
        return "Summer"
    if 9 <= month <= 11:
        return "Autumn"
    return "Winter"


def merge_retrograde_periods(
    extra: Optional[Mapping[int, Iterable[RetrogradeWindow]]] = None,
) -> Dict[int, List[RetrogradeWindow]]:
    """Built-in table overlaid with externally supplied years."""
    table = {year: list(windows) for year, windows in BUILTIN_RETROGRADE_PERIODS.items()}
    for year, windows in (extra or {}).items():
        table[int(year)] = list(windows)
    return table


def retrograde_status(
    moment: datetime,
    periods: Mapping[int, Sequence[RetrogradeWindow]],
) -> Optional[bool]:
    """
    True/False when the year has known windows, None when it has none.

    Callers decide how to treat an unknown year.
    """
    windows = periods.get(moment.year)
    if windows is None:
        return None
    day = moment.date()
    return any(w.contains(day) for w in windows)
