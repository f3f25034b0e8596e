"""
Astrology Scorer - deterministic calendar oracle behind every trade decision.

Six independent factors are scored from the instant alone (lunar phase,
weekday ruler, planetary hour, numerology of the day, Mercury retrograde and
season) and summed into a single score. The score is then bucketed into a
recommendation tier that the engine acts on.

The scorer is a pure function of its input: two calls with the same instant
produce identical results, which is what makes the engine testable.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from astroswap.strategies import celestial
from astroswap.strategies.celestial import RetrogradeWindow

MAX_SCORE = 100
STRONG_BUY_THRESHOLD = 60
WEAK_BUY_THRESHOLD = 40
DEFENSIVE_THRESHOLD = 30


class FactorKind(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"


class RecommendationTier(str, Enum):
    STRONG_BUY = "STRONG_BUY"
    WEAK_BUY = "WEAK_BUY"
    HOLD = "HOLD"

    @property
    def label(self) -> str:
        return _TIER_LABELS[self]


class Confidence(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"


_TIER_LABELS = {
    RecommendationTier.STRONG_BUY: "BUY - COSMIC ALIGNMENT",
    RecommendationTier.WEAK_BUY: "WEAK BUY",
    RecommendationTier.HOLD: "HOLD",
}


def classify_score(score: int) -> Tuple[RecommendationTier, Confidence]:
    """Map a score onto its tier and confidence."""
    if score >= STRONG_BUY_THRESHOLD:
        return RecommendationTier.STRONG_BUY, Confidence.HIGH
    if score >= WEAK_BUY_THRESHOLD:
        return RecommendationTier.WEAK_BUY, Confidence.MEDIUM
    return RecommendationTier.HOLD, Confidence.HIGH


@dataclass(frozen=True)
class Factor:
    """One itemized contribution to the score."""
    kind: FactorKind
    label: str
    description: str
    points: int
    icon: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.kind.value,
            "icon": self.icon,
            "factor": self.label,
            "description": self.description,
            "points": self.points,
        }


@dataclass(frozen=True)
class AnalysisResult:
    """
    Output of one scoring pass.

    Build it through ``from_factors`` so that ``score``, ``tier`` and
    ``confidence`` always agree with the factor list.
    """
    score: int
    factors: Tuple[Factor, ...]
    tier: RecommendationTier
    confidence: Confidence
    timestamp: datetime
    moon_phase: str = ""
    max_score: int = MAX_SCORE

    @classmethod
    def from_factors(
        cls,
        factors: Iterable[Factor],
        timestamp: datetime,
        moon_phase: str = "",
    ) -> AnalysisResult:
        items = tuple(factors)
        score = sum(f.points for f in items)
        tier, confidence = classify_score(score)
        return cls(
            score=score,
            factors=items,
            tier=tier,
            confidence=confidence,
            timestamp=timestamp,
            moon_phase=moon_phase,
        )

    @property
    def buy_immediately(self) -> bool:
        return self.tier is RecommendationTier.STRONG_BUY

    @property
    def recommendation(self) -> str:
        return self.tier.label

    @property
    def is_defensive(self) -> bool:
        return self.score < DEFENSIVE_THRESHOLD

    def to_dict(self) -> Dict[str, Any]:
        return {
            "score": self.score,
            "max_score": self.max_score,
            "factors": [f.to_dict() for f in self.factors],
            "tier": self.tier.value,
            "recommendation": self.recommendation,
            "confidence": self.confidence.value,
            "buy_immediately": self.buy_immediately,
            "moon_phase": self.moon_phase,
            "timestamp": self.timestamp.isoformat(),
        }


# ---------------------------------------------------------------------------
# Factor tables
# ---------------------------------------------------------------------------

# (points, kind, icon, description) keyed by the value the factor inspects.
_MOON_TABLE: Dict[str, Tuple[int, FactorKind, str, str]] = {
    "New Moon": (25, FactorKind.POSITIVE, "🌑", "Perfect for new GALA acquisitions and lunar energy alignment"),
    "Waxing Crescent": (25, FactorKind.POSITIVE, "🌑", "Perfect for new GALA acquisitions and lunar energy alignment"),
    "Waxing Gibbous": (15, FactorKind.POSITIVE, "🌕", "Strong lunar energy favors GALA trading"),
    "Full Moon": (15, FactorKind.POSITIVE, "🌕", "Strong lunar energy favors GALA trading"),
    "Waning Gibbous": (5, FactorKind.NEUTRAL, "🌖", "Reflection period, moderate GALA energy"),
}
_MOON_DEFAULT = (-10, FactorKind.NEGATIVE, "🌘", "Waning lunar energy, GALA flows may be restricted")

# Sunday=0 .. Saturday=6
_WEEKDAY_TABLE: Tuple[Tuple[str, int, FactorKind, str, str], ...] = (
    ("Sunday", 5, FactorKind.NEUTRAL, "☀️", "Solar energy, neutral for GALA acquisition"),
    ("Monday", 18, FactorKind.POSITIVE, "🌙", "Lunar day enhances GALA energy flows"),
    ("Tuesday", 8, FactorKind.NEUTRAL, "🔥", "Aggressive energy, moderate for GALA"),
    ("Wednesday", 20, FactorKind.POSITIVE, "💨", "Mercury rules communication - excellent for GALA trades"),
    ("Thursday", 15, FactorKind.POSITIVE, "🪐", "Expansion energy favors GALA adoption"),
    ("Friday", 12, FactorKind.POSITIVE, "💕", "Harmonious energy for wealth attraction"),
    ("Saturday", -5, FactorKind.NEGATIVE, "🪨", "Restrictive energy, GALA flows limited"),
)

_HOUR_TABLE: Dict[str, Tuple[int, FactorKind, str, str]] = {
    "Mercury": (20, FactorKind.POSITIVE, "☿", "Optimal time for GALA trades and communication"),
    "Moon": (18, FactorKind.POSITIVE, "🌙", "Lunar hour enhances GALA flow energy"),
    "Jupiter": (15, FactorKind.POSITIVE, "✨", "Favorable energy for wealth and expansion"),
    "Venus": (15, FactorKind.POSITIVE, "✨", "Favorable energy for wealth and expansion"),
    "Sun": (10, FactorKind.NEUTRAL, "🌟", "Solar energy, moderate for financial decisions"),
    "Mars": (5, FactorKind.NEUTRAL, "⚔️", "Aggressive energy, proceed with caution"),
    "Saturn": (-10, FactorKind.NEGATIVE, "🪨", "Restrictive energy, not ideal for GALA purchases"),
}

_SEASON_TABLE: Dict[str, Tuple[int, FactorKind, str, str]] = {
    "Spring": (10, FactorKind.POSITIVE, "🌸", "Growth and new financial flows - good for GALA"),
    "Summer": (8, FactorKind.POSITIVE, "☀️", "Peak energy and GALA expansion"),
    "Autumn": (5, FactorKind.NEUTRAL, "🍂", "Harvest energy - consolidation time for GALA"),
    "Winter": (2, FactorKind.NEUTRAL, "❄️", "Reflection period - slow GALA accumulation"),
}


class AstrologyScorer:
    """
    Scores an instant against the six celestial factors.

    ``retrograde_periods`` extends the built-in Mercury retrograde table with
    extra years (an external ephemeris). Years missing from the merged table
    are scored as retrograde.
    """

    def __init__(
        self,
        retrograde_periods: Optional[Mapping[int, Sequence[RetrogradeWindow]]] = None,
    ):
        self.retrograde_periods = celestial.merge_retrograde_periods(retrograde_periods)

    @property
    def known_years(self) -> List[int]:
        return sorted(self.retrograde_periods)

    def evaluate(self, now: datetime) -> AnalysisResult:
        """Score ``now``. Total and deterministic."""
        phase = celestial.moon_phase(now)
        factors = (
            self._moon_factor(phase),
            self._weekday_factor(now),
            self._planetary_hour_factor(now),
            self._numerology_factor(now),
            self._retrograde_factor(now),
            self._season_factor(now),
        )
        return AnalysisResult.from_factors(factors, timestamp=now, moon_phase=phase)

    # ------------------------------------------------------------------
    # Individual factors
    # ------------------------------------------------------------------

    @staticmethod
    def _moon_factor(phase: str) -> Factor:
        points, kind, icon, desc = _MOON_TABLE.get(phase, _MOON_DEFAULT)
        return Factor(kind, phase, desc, points, icon)

    @staticmethod
    def _weekday_factor(now: datetime) -> Factor:
        weekday = celestial.js_weekday(now)
        name, points, kind, icon, desc = _WEEKDAY_TABLE[weekday]
        ruler = celestial.DAY_RULERS[weekday]
        return Factor(kind, f"{name} ({ruler})", desc, points, icon)

    @staticmethod
    def _planetary_hour_factor(now: datetime) -> Factor:
        ruler = celestial.planetary_hour(now.hour, celestial.js_weekday(now))
        points, kind, icon, desc = _HOUR_TABLE[ruler]
        return Factor(kind, f"{ruler} Hour", desc, points, icon)

    @staticmethod
    def _numerology_factor(now: datetime) -> Factor:
        root = celestial.digit_root(now.day)
        label = f"Day {now.day} ({root})"
        if root in (3, 6, 9):
            return Factor(FactorKind.POSITIVE, label, "Flow number - perfect for GALA energy", 15, "🔢")
        if root in (1, 8):
            return Factor(FactorKind.POSITIVE, label, "Manifestation number - good for GALA acquisition", 10, "🔢")
        if root in (2, 5, 7):
            return Factor(FactorKind.NEUTRAL, label, "Balanced energy for GALA", 5, "🔢")
        return Factor(FactorKind.NEUTRAL, label, "Neutral numerological influence", 0, "🔢")

    def _retrograde_factor(self, now: datetime) -> Factor:
        status = celestial.retrograde_status(now, self.retrograde_periods)
        if status is None:
            return Factor(
                FactorKind.NEGATIVE,
                "Mercury Retrograde (no ephemeris)",
                f"No retrograde table for {now.year} - assuming disruption",
                -20,
                "☿",
            )
        if status:
            return Factor(
                FactorKind.NEGATIVE,
                "Mercury Retrograde",
                "Communication disruptions - reduce GALA activity",
                -20,
                "☿",
            )
        return Factor(
            FactorKind.POSITIVE,
            "Mercury Direct",
            "Clear communication - excellent for GALA trades",
            10,
            "☿",
        )

    @staticmethod
    def _season_factor(now: datetime) -> Factor:
        name = celestial.season(now.month)
        points, kind, icon, desc = _SEASON_TABLE[name]
        return Factor(kind, name, desc, points, icon)


def format_breakdown(result: AnalysisResult) -> List[str]:
    """Human readable lines for logs and the preview script."""
    lines = []
    for f in result.factors:
        sign = "+" if f.points >= 0 else ""
        lines.append(f"{f.icon} {f.label}: {f.description} ({sign}{f.points})")
    lines.append(f"Total Score: {result.score}/{result.max_score}")
    lines.append(f"Recommendation: {result.recommendation} ({result.confidence.value} confidence)")
    return lines
