from datetime import date, datetime, timedelta, timezone

import pytest

from stemlearn import models, repositories
from stemlearn.errors import NotFoundError
from stemlearn.tracking import (
    DEFAULT_TOPICS,
    ActivityOrchestrator,
    LeaderboardAggregator,
    ProgressTracker,
    RankingEngine,
    StreakTracker,
)


def test_registration_seeds_default_topics(session, make_student):
    student = make_student()
    rows = repositories.ProgressRepository(session).list_for_student(student.id)
    assert {(r.subject, r.topic) for r in rows} == set(DEFAULT_TOPICS)
    assert all(r.completion_percentage == 0 and r.games_played == 0 for r in rows)
    assert repositories.StreakRepository(session).get(student.id).current_streak == 0
    assert repositories.LeaderboardRepository(session).get(student.id).total_score == 0


def test_progress_completion_steps_and_caps(session, make_student):
    student = make_student()
    tracker = ProgressTracker(session)
    for i in range(11):
        row = tracker.record_activity(student.id, "Mathematics", "Fractions", 80)
        assert row.completion_percentage == min(100, 10 * (i + 1))
    assert row.games_played == 11
    assert row.total_score == 880
    assert row.average_score == 80


def test_progress_creates_missing_topic_row(session, make_student):
    student = make_student()
    row = ProgressTracker(session).record_activity(student.id, "Science", "Quiz", 30)
    assert row.id is not None
    assert (row.completion_percentage, row.games_played, row.total_score, row.average_score) == (10, 1, 30, 30)


def test_progress_average_keeps_earlier_rounding(session, make_student):
    student = make_student()
    tracker = ProgressTracker(session)
    for score in (1, 2, 1):
        row = tracker.record_activity(student.id, "Science", "Measurement", score)
    assert row.total_score == 4
    assert row.average_score == 2


def test_progress_for_unknown_student_is_noop(session):
    assert ProgressTracker(session).record_activity(999, "Science", "Measurement", 50) is None
    assert repositories.ProgressRepository(session).list_for_student(999) == []


def test_streak_consecutive_gap_and_same_day(session, make_student):
    student = make_student()
    tracker = StreakTracker(session)
    d = date(2024, 3, 1)
    assert tracker.touch(student.id, d) == {'current': 1, 'longest': 1}
    assert tracker.touch(student.id, d + timedelta(days=1)) == {'current': 2, 'longest': 2}
    assert tracker.touch(student.id, d + timedelta(days=1)) == {'current': 2, 'longest': 2}
    assert tracker.touch(student.id, d + timedelta(days=3)) == {'current': 1, 'longest': 2}
    assert repositories.StreakRepository(session).get(student.id).last_activity_date == d + timedelta(days=3)


def test_streak_backdated_activity_keeps_count(session, make_student):
    student = make_student()
    tracker = StreakTracker(session)
    d = date(2024, 3, 10)
    tracker.touch(student.id, d)
    tracker.touch(student.id, d + timedelta(days=1))
    assert tracker.touch(student.id, d - timedelta(days=5)) == {'current': 2, 'longest': 2}
    assert repositories.StreakRepository(session).get(student.id).last_activity_date == d - timedelta(days=5)


def test_streak_unknown_student(session):
    with pytest.raises(NotFoundError):
        StreakTracker(session).touch(12345, date(2024, 1, 1))


def _play(session, student_id, game, score, completed=True, played_at=None):
    gs = models.GameSession(student_id=student_id, game_id=game.id, score=score, completed=completed)
    if played_at is not None:
        gs.played_at = played_at
    return repositories.GameSessionRepository(session).create(gs)


def test_leaderboard_refresh_counts_completed_only_and_is_idempotent(session, make_student, make_game):
    student = make_student()
    game = make_game()
    _play(session, student.id, game, 60)
    _play(session, student.id, game, 90)
    _play(session, student.id, game, 100, completed=False)
    now = datetime(2024, 6, 1, tzinfo=timezone.utc)
    agg = LeaderboardAggregator(session)
    first = agg.refresh(student.id, now=now)
    snapshot = (first.total_score, first.games_played, first.average_score, first.full_name, first.grade)
    second = agg.refresh(student.id, now=now)
    assert (second.total_score, second.games_played, second.average_score, second.full_name, second.grade) == snapshot
    assert snapshot[:3] == (150, 2, 75.0)
    assert len(repositories.LeaderboardRepository(session).list_top(10)) == 1


def test_leaderboard_refresh_unknown_student(session):
    with pytest.raises(NotFoundError):
        LeaderboardAggregator(session).refresh(777)


def test_global_rank_ties_share_rank(session, make_student, make_game):
    a, b, c, idle = make_student(), make_student(), make_student(), make_student()
    game = make_game()
    orchestrator = ActivityOrchestrator(session)
    for student, score in ((a, 100), (b, 100), (c, 50)):
        orchestrator.on_game_completed(student.id, game, score)
    ranking = RankingEngine(session)
    assert ranking.global_rank(a.id) == 1
    assert ranking.global_rank(b.id) == 1
    assert ranking.global_rank(c.id) == 3
    assert ranking.global_rank(idle.id) == 4


def test_global_rank_without_leaderboard_row_is_first(session):
    student = repositories.StudentRepository(session).create(
        models.Student(full_name="No Row", email="norow@example.com", password_hash="x", grade="6")
    )
    assert RankingEngine(session).global_rank(student.id) == 1
