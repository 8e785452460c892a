"""Progress, streak, leaderboard and ranking services.

Every scored activity (a completed game session or a graded quiz attempt)
ends up in `ActivityOrchestrator`, which persists the immutable record
and then brings the per-student aggregates up to date:

    record -> ProgressTracker -> StreakTracker -> LeaderboardAggregator

The aggregate updates are best-effort. A failing step is logged and
counted but never undoes the record or fails the caller, and the steps
for one student run under a per-student lock so two activities arriving
together cannot overwrite each other's read-modify-write.
"""

import logging
from datetime import date, datetime
from typing import Callable, List, Optional
from sqlmodel import Session
from . import models, repositories
from .errors import NotFoundError
from .utils.clock import as_utc, today_utc, utcnow
from .utils.locks import student_locks
from .utils.ranking import competition_ranks
from .utils.scoring import ProgressState, advance_progress, next_streak
from .utils.side_effect_observability import record_side_effect

logger = logging.getLogger("stemlearn.tracking")

QUIZ_TOPIC = "Quiz"

# Topics every new student starts with, at 0% completion.
DEFAULT_TOPICS = (
    ("Science", "Living Things"),
    ("Science", "Measurement"),
    ("Science", "Light and Sound"),
    ("Mathematics", "Basic Operations"),
    ("Mathematics", "Fractions"),
    ("Mathematics", "Geometry"),
    ("Geography", "Continents and Oceans"),
    ("Geography", "Maps and Directions"),
)


class ProgressTracker:
    """Per student/subject/topic completion, play count and average score."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.ProgressRepository(session)
        self.students = repositories.StudentRepository(session)

    def record_activity(self, student_id: int, subject: str, topic: str, normalized_score: int,
                        now: Optional[datetime] = None) -> Optional[models.Progress]:
        """Apply one scored activity to the student's progress in a topic.

        The row is created on first activity. Returns `None` without
        touching anything when the student does not exist.
        """
        if self.students.get(student_id) is None:
            logger.info("progress skipped for unknown student %s", student_id)
            return None
        row = self.repo.get_or_default(student_id, subject, topic)
        state = advance_progress(
            ProgressState(
                completion_percentage=row.completion_percentage or 0,
                games_played=row.games_played or 0,
                total_score=row.total_score or 0,
                average_score=row.average_score or 0,
            ),
            normalized_score,
        )
        row.completion_percentage = state.completion_percentage
        row.games_played = state.games_played
        row.total_score = state.total_score
        row.average_score = state.average_score
        row.last_played = now or utcnow()
        return self.repo.save(row)

    def seed_default_topics(self, student_id: int) -> int:
        """Create zeroed rows for the default topic list; existing rows are kept."""
        return self.repo.seed(student_id, DEFAULT_TOPICS)


class StreakTracker:
    """Consecutive-day activity streaks."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.StreakRepository(session)
        self.students = repositories.StudentRepository(session)

    def ensure(self, student_id: int) -> models.Streak:
        """Return the student's streak row, creating a zeroed one if missing."""
        streak = self.repo.get(student_id)
        if streak is None:
            streak = self.repo.save(models.Streak(student_id=student_id))
        return streak

    def touch(self, student_id: int, today: Optional[date] = None) -> dict:
        """Register activity for `today` (UTC date by default).

        Same-day repeats and dates before the last recorded activity keep
        the current streak as it is; the last activity date is still set
        to `today`.
        """
        if self.students.get(student_id) is None:
            raise NotFoundError(f"student not found: {student_id}")
        today = today or today_utc()
        streak = self.repo.get_or_default(student_id)
        current = next_streak(streak.current_streak or 0, streak.last_activity_date, today)
        streak.current_streak = current
        streak.longest_streak = max(current, streak.longest_streak or 0)
        streak.last_activity_date = today
        streak = self.repo.save(streak)
        return {'current': streak.current_streak, 'longest': streak.longest_streak}


class LeaderboardAggregator:
    """Maintains the denormalized leaderboard row of each student."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.LeaderboardRepository(session)
        self.sessions = repositories.GameSessionRepository(session)
        self.students = repositories.StudentRepository(session)

    def refresh(self, student_id: int, now: Optional[datetime] = None) -> models.LeaderboardEntry:
        """Recompute the student's row from all completed game sessions."""
        student = self.students.get(student_id)
        if student is None:
            raise NotFoundError(f"student not found: {student_id}")
        total, played, average = self.sessions.completed_totals(student_id)
        entry = models.LeaderboardEntry(
            student_id=student.id,
            full_name=student.full_name,
            grade=student.grade,
            profile_picture=student.profile_picture,
            total_score=total,
            games_played=played,
            average_score=average,
            last_updated=now or utcnow(),
        )
        return self.repo.replace(entry)


class RankingEngine:
    """Global and per-game ranks.

    The two use different policies on purpose: the global rank counts
    strictly better totals, the per-game rank is a competition ranking
    over best scores.
    """
    def __init__(self, session: Session):
        self.session = session
        self.leaderboard = repositories.LeaderboardRepository(session)
        self.sessions = repositories.GameSessionRepository(session)
        self.students = repositories.StudentRepository(session)
        self.games = repositories.GameRepository(session)

    def global_rank(self, student_id: int) -> int:
        """1 + the number of students with a strictly higher total score.

        A student without a leaderboard row yet ranks first, as nothing
        compares greater than a missing total.
        """
        if self.students.get(student_id) is None:
            raise NotFoundError(f"student not found: {student_id}")
        entry = self.leaderboard.get(student_id)
        if entry is None:
            return 1
        return 1 + self.leaderboard.count_above(entry.total_score)

    def game_rank(self, game_id: int) -> List[dict]:
        """Rank every student with a completed session of `game_id`.

        Ordering is best score descending, then the earliest moment that
        best score was reached. Students sharing a best score share a rank.
        """
        if self.games.get(game_id) is None:
            raise NotFoundError(f"game not found: {game_id}")
        best = {}
        for s in self.sessions.completed_for_game(game_id):
            played_at = as_utc(s.played_at)
            row = best.get(s.student_id)
            if row is None:
                best[s.student_id] = {
                    'student_id': s.student_id,
                    'score': s.score,
                    'first_achieved': played_at,
                    'attempts': 1,
                }
                continue
            row['attempts'] += 1
            if s.score > row['score']:
                row['score'] = s.score
                row['first_achieved'] = played_at
        ordered = sorted(best.values(), key=lambda r: (-r['score'], r['first_achieved'], r['student_id']))
        for row, rank in zip(ordered, competition_ranks([r['score'] for r in ordered])):
            row['rank'] = rank
        return ordered

    def student_game_rank(self, game_id: int, student_id: int) -> dict:
        """The student's rank within `game_rank` and the number of ranked players.

        A student without a completed play is placed after every ranked player.
        """
        ranking = self.game_rank(game_id)
        rank = next((r['rank'] for r in ranking if r['student_id'] == student_id), len(ranking) + 1)
        return {'rank': rank, 'total_players': len(ranking)}


class ActivityOrchestrator:
    """Single entry point after any scored activity.

    `schedule`, when given, receives a callable and its arguments and is
    expected to run it later (FastAPI's `BackgroundTasks.add_task`); the
    aggregate updates then run in a fresh session opened from
    `session_factory`. Without `schedule` they run inline.
    """
    def __init__(self, session: Session, session_factory: Optional[Callable[[], Session]] = None):
        self.session = session
        self.session_factory = session_factory
        self.game_sessions = repositories.GameSessionRepository(session)

    def on_game_completed(self, student_id: int, game: models.Game, normalized_score: int, time_taken: int = 0,
                          completed: bool = True, schedule: Optional[Callable] = None) -> models.GameSession:
        """Persist the game session, then update the student's aggregates."""
        record = self.game_sessions.create(models.GameSession(
            student_id=student_id,
            game_id=game.id,
            score=normalized_score,
            time_taken=time_taken or 0,
            completed=bool(completed),
        ))
        logger.info("game session %s stored for student %s (score=%s)", record.id, student_id, normalized_score)
        self._dispatch(schedule, student_id, game.subject, game.topic, normalized_score)
        return record

    def on_quiz_completed(self, student_id: int, subject: str, score: int,
                          schedule: Optional[Callable] = None) -> None:
        """Update aggregates after an attempt has been graded and committed."""
        self._dispatch(schedule, student_id, subject, QUIZ_TOPIC, score)

    def on_login(self, student_id: int) -> Optional[dict]:
        """Best-effort streak touch for a successful student login."""
        with student_locks.hold(student_id):
            return self._run_step("streak", student_id, lambda: StreakTracker(self.session).touch(student_id))

    def on_registered(self, student_id: int) -> None:
        """Best-effort initial aggregates for a new student."""
        with student_locks.hold(student_id):
            self._run_step("progress_seed", student_id,
                           lambda: ProgressTracker(self.session).seed_default_topics(student_id))
            self._run_step("streak_init", student_id, lambda: StreakTracker(self.session).ensure(student_id))
            self._run_step("leaderboard", student_id, lambda: LeaderboardAggregator(self.session).refresh(student_id))

    def apply_updates(self, student_id: int, subject: str, topic: str, score: int) -> dict:
        """Run progress, streak and leaderboard updates; returns step outcomes."""
        with student_locks.hold(student_id):
            results = {}
            results['progress'] = self._run_step(
                "progress", student_id,
                lambda: ProgressTracker(self.session).record_activity(student_id, subject, topic, score),
            ) is not None
            results['streak'] = self._run_step(
                "streak", student_id, lambda: StreakTracker(self.session).touch(student_id)
            ) is not None
            results['leaderboard'] = self._run_step(
                "leaderboard", student_id, lambda: LeaderboardAggregator(self.session).refresh(student_id)
            ) is not None
            return results

    def _dispatch(self, schedule, student_id, subject, topic, score):
        if schedule is None or self.session_factory is None:
            self.apply_updates(student_id, subject, topic, score)
            return
        schedule(_apply_detached, self.session_factory, student_id, subject, topic, score)

    def _run_step(self, step: str, student_id: int, fn: Callable):
        try:
            result = fn()
        except Exception as exc:
            self.session.rollback()
            logger.exception("%s update failed for student %s", step, student_id)
            record_side_effect(step, student_id, failed=True, error=str(exc))
            return None
        record_side_effect(step, student_id, failed=False)
        return result


def _apply_detached(session_factory, student_id, subject, topic, score):
    """Background-task body: run the updates in a session of their own."""
    with session_factory() as session:
        ActivityOrchestrator(session).apply_updates(student_id, subject, topic, score)
