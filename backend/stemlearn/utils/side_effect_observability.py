"""Structured observability for best-effort post-activity updates.

Progress, streak and leaderboard updates never fail the request that
triggered them, so every outcome is recorded here instead: failures are
appended to a JSONL event file and a small aggregate stats file tracks
run and failure counts per step.
"""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock


_WRITE_LOCK = Lock()
_LOGGER = logging.getLogger("stemlearn.side_effects")


def _observability_root() -> Path:
    raw = os.getenv("SIDE_EFFECT_OBSERVABILITY_DIR", "").strip()
    if raw:
        return Path(raw).expanduser().resolve()
    return Path(__file__).resolve().parents[2] / "data" / "side_effects"


def _events_path() -> Path:
    root = _observability_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "side_effect_failures.jsonl"


def _stats_path() -> Path:
    root = _observability_root()
    root.mkdir(parents=True, exist_ok=True)
    return root / "side_effect_stats.json"


def _empty_stats() -> dict:
    return {
        "total_runs": 0,
        "failed_runs": 0,
        "steps": {},
        "last_error": "",
    }


def get_side_effect_stats() -> dict:
    """Return the current aggregate stats snapshot."""
    try:
        stats_file = _stats_path()
        if not stats_file.exists():
            return _empty_stats()
        return json.loads(stats_file.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return _empty_stats()


def record_side_effect(step: str, student_id: int, failed: bool, error: str = "") -> None:
    """Count one step run; failures are also written to the event log.

    An unwritable observability directory is logged and otherwise ignored.
    """
    payload = {
        "step": step,
        "student_id": student_id,
        "failed": failed,
        "error": error,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    try:
        with _WRITE_LOCK:
            if failed:
                with _events_path().open("a", encoding="utf-8") as fh:
                    fh.write(json.dumps(payload, ensure_ascii=True) + "\n")
            _update_stats(payload)
    except OSError:
        _LOGGER.exception("side_effect_record_failed step=%s student_id=%s", step, student_id)
    if failed:
        _LOGGER.warning("side_effect_failed %s", json.dumps(payload, ensure_ascii=True))


def _update_stats(event: dict) -> None:
    stats = get_side_effect_stats()
    stats.setdefault("total_runs", 0)
    stats.setdefault("failed_runs", 0)
    stats.setdefault("steps", {})
    stats.setdefault("last_error", "")

    step = stats["steps"].setdefault(event["step"], {"runs": 0, "failures": 0})
    stats["total_runs"] += 1
    step["runs"] += 1
    if event["failed"]:
        stats["failed_runs"] += 1
        step["failures"] += 1
        stats["last_error"] = str(event.get("error", ""))
    stats["updated_at"] = datetime.now(timezone.utc).isoformat()
    _stats_path().write_text(json.dumps(stats, ensure_ascii=True, indent=2), encoding="utf-8")
