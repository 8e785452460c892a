"""Scoring rules shared by the game, quiz and progress code paths.

All rounding here is half-up, matching the scores already stored by the
platform; Python's built-in `round` rounds halves to even and would drift
from them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date
from typing import Optional

PROGRESS_STEP = 10
MAX_COMPLETION = 100
QUIZ_BASELINE_POINTS = 10


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves towards positive infinity."""
    return int(math.floor(value + 0.5))


def normalize_score(raw: float, max_score: int) -> int:
    """Rescale a raw game score to a 0-100 percentage of `max_score`.

    Scores above the maximum are clamped to 100, including values that
    overflow to infinity; NaN counts as 0. `max_score` must be positive;
    games are created with a positive maximum.
    """
    ratio = raw / max_score * 100
    if not math.isfinite(ratio):
        return 100 if ratio > 0 else 0
    return max(0, min(round_half_up(ratio), 100))


@dataclass(frozen=True)
class ProgressState:
    completion_percentage: int = 0
    games_played: int = 0
    total_score: int = 0
    average_score: int = 0


def advance_progress(state: ProgressState, score: int) -> ProgressState:
    """Apply one scored activity to a progress record.

    Completion moves by a fixed step regardless of the score. The average
    is recomputed incrementally from the previous rounded average, so the
    stored value can differ from `total_score / games_played`.
    """
    games_played = state.games_played + 1
    average = round_half_up((state.average_score * (games_played - 1) + score) / games_played)
    return ProgressState(
        completion_percentage=min(MAX_COMPLETION, state.completion_percentage + PROGRESS_STEP),
        games_played=games_played,
        total_score=state.total_score + score,
        average_score=average,
    )


def next_streak(current: int, last_activity: Optional[date], today: date) -> int:
    """Return the streak length after activity on `today`.

    Same-day repeats and dates earlier than the last activity leave the
    streak unchanged.
    """
    if last_activity is None:
        return 1
    diff = (today - last_activity).days
    if diff == 1:
        return current + 1
    if diff > 1:
        return 1
    return current


def quiz_percentage(score: int, answer_count: int) -> int:
    """Percentage shown after a quiz submission.

    The denominator assumes every submitted answer is worth
    `QUIZ_BASELINE_POINTS`, whatever the questions' real point values are.
    """
    if answer_count <= 0:
        return 0
    return round_half_up(score / (answer_count * QUIZ_BASELINE_POINTS) * 100)
