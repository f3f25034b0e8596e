#!/usr/bin/env python3
"""
Offline scoring preview.

Prints the factor breakdown for one instant, or a forecast table of the
next N hours, using the same scorer and configuration as the bot. Never
touches a backend.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Sequence
from zoneinfo import ZoneInfo

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from astroswap.core.config import load_config_with_overrides
from astroswap.strategies.astrology import (
    DEFENSIVE_THRESHOLD,
    AnalysisResult,
    AstrologyScorer,
    format_breakdown,
)


def _parse_instant(value: Optional[str], tz: ZoneInfo) -> datetime:
    if not value:
        return datetime.now(tz)
    moment = datetime.fromisoformat(value)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=tz)
    return moment.astimezone(tz)


def forecast(
    scorer: AstrologyScorer,
    start: datetime,
    hours: float,
    step_minutes: int = 60,
) -> List[AnalysisResult]:
    if step_minutes <= 0:
        raise ValueError("step_minutes must be positive")
    results = []
    end = start + timedelta(hours=hours)
    moment = start
    while moment <= end:
        results.append(scorer.evaluate(moment))
        moment += timedelta(minutes=step_minutes)
    return results


def _action_hint(result: AnalysisResult) -> str:
    if result.buy_immediately:
        return "trade (if gate open)"
    if result.score < DEFENSIVE_THRESHOLD:
        return "defensive swap"
    return "-"


def run_preview(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Preview celestial scores without trading.")
    parser.add_argument("--config", default="config/config.yaml", help="Path to config.yaml.")
    parser.add_argument("--at", default=None, help="ISO-8601 instant to score (default: now).")
    parser.add_argument(
        "--hours",
        type=float,
        default=0.0,
        help="Forecast this many hours ahead instead of a single breakdown.",
    )
    parser.add_argument("--step-minutes", type=int, default=60, help="Forecast step.")
    parser.add_argument("--json", action="store_true", help="Emit JSON instead of text.")
    args = parser.parse_args(argv)

    config = load_config_with_overrides(config_path=args.config)
    tz = ZoneInfo(config.scoring.timezone)
    scorer = AstrologyScorer(config.scoring.retrograde_windows())
    start = _parse_instant(args.at, tz)
    end_year = (start + timedelta(hours=max(0.0, args.hours))).year
    missing = [y for y in range(start.year, end_year + 1) if y not in scorer.known_years]
    if missing and not args.json:
        years = ", ".join(str(y) for y in missing)
        print(f"[WARN] No retrograde table for {years}; those days score as retrograde.")

    if args.hours > 0:
        results = forecast(scorer, start, args.hours, args.step_minutes)
        if args.json:
            print(json.dumps([r.to_dict() for r in results], indent=2, ensure_ascii=False))
            return 0
        print(f"{'time':<26} {'score':>5}  {'recommendation':<24} action")
        for r in results:
            print(f"{r.timestamp.isoformat():<26} {r.score:>5}  {r.recommendation:<24} {_action_hint(r)}")
        return 0

    result = scorer.evaluate(start)
    if args.json:
        print(json.dumps(result.to_dict(), indent=2, ensure_ascii=False))
        return 0
    print(f"Celestial analysis for {start.isoformat()} ({config.scoring.timezone})")
    for line in format_breakdown(result):
        print(f"  {line}")
    return 0


def main() -> None:
    raise SystemExit(run_preview())


if __name__ == "__main__":
    main()
