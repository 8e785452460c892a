"""Ranking helpers for the global and per-game leaderboards."""

from __future__ import annotations

from typing import Iterable, List, Sequence


def competition_ranks(scores: Sequence[float]) -> List[int]:
    """Rank scores already sorted best-first.

    Equal scores share a rank and the next distinct score takes its
    1-based position, e.g. [90, 90, 80] -> [1, 1, 3].
    """
    ranks: List[int] = []
    for i, score in enumerate(scores):
        if i > 0 and score == scores[i - 1]:
            ranks.append(ranks[-1])
        else:
            ranks.append(i + 1)
    return ranks


def strictly_greater_rank(target: float, totals: Iterable[float]) -> int:
    """One plus the number of totals strictly above `target`."""
    return 1 + sum(1 for t in totals if t > target)
