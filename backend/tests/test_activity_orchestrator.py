import json
import logging
import threading

from sqlmodel import Session

from stemlearn import repositories, services, tracking
from stemlearn.tracking import ActivityOrchestrator
from stemlearn.utils.locks import KeyedLocks
from stemlearn.utils.side_effect_observability import get_side_effect_stats


def test_failed_step_does_not_undo_the_session(session, make_student, make_game, monkeypatch, caplog,
                                               side_effect_dir):
    student = make_student()
    game = make_game()

    def boom(self, student_id, today=None):
        raise RuntimeError("streak store unavailable")

    monkeypatch.setattr(tracking.StreakTracker, "touch", boom)
    with caplog.at_level(logging.ERROR, logger="stemlearn.tracking"):
        record = ActivityOrchestrator(session).on_game_completed(student.id, game, 70)

    assert record.id is not None
    assert repositories.GameSessionRepository(session).completed_totals(student.id) == (70, 1, 70.0)
    # the steps after the failing one still ran
    assert repositories.LeaderboardRepository(session).get(student.id).total_score == 70
    assert repositories.ProgressRepository(session).get(student.id, "Mathematics", "Fractions").games_played == 1
    assert "streak update failed" in caplog.text

    stats = get_side_effect_stats()
    assert stats["failed_runs"] == 1
    assert stats["steps"]["streak"] == {"runs": 1, "failures": 1}
    assert stats["last_error"] == "streak store unavailable"
    events = (side_effect_dir / "side_effect_failures.jsonl").read_text().splitlines()
    assert json.loads(events[-1])["step"] == "streak"


def test_apply_updates_reports_each_step(session, make_student):
    student = make_student()
    out = ActivityOrchestrator(session).apply_updates(student.id, "Science", "Quiz", 20)
    assert out == {'progress': True, 'streak': True, 'leaderboard': True}


def test_unknown_student_updates_are_contained(session):
    out = ActivityOrchestrator(session).apply_updates(31337, "Science", "Quiz", 20)
    assert out == {'progress': False, 'streak': False, 'leaderboard': False}
    assert get_side_effect_stats()["steps"]["streak"]["failures"] == 1


def test_scheduled_updates_run_in_their_own_session(engine, session, make_student, make_game):
    student = make_student()
    game = make_game()
    scheduled = []
    orchestrator = ActivityOrchestrator(session, session_factory=lambda: Session(engine))
    orchestrator.on_game_completed(student.id, game, 40, schedule=lambda fn, *args: scheduled.append((fn, args)))

    assert repositories.LeaderboardRepository(session).get(student.id).total_score == 0
    fn, args = scheduled[0]
    fn(*args)
    session.expire_all()
    assert repositories.LeaderboardRepository(session).get(student.id).total_score == 40


def test_unwritable_stats_dir_does_not_fail_the_activity(session, make_student, make_game, monkeypatch,
                                                         tmp_path, caplog):
    student = make_student()
    game = make_game()
    not_a_dir = tmp_path / "not_a_dir"
    not_a_dir.write_text("occupied")
    monkeypatch.setenv("SIDE_EFFECT_OBSERVABILITY_DIR", str(not_a_dir))

    with caplog.at_level(logging.ERROR, logger="stemlearn.side_effects"):
        out = services.GameService(session).save_result(student.id, game.name, 50)

    assert out['normalized_score'] == 50
    assert repositories.LeaderboardRepository(session).get(student.id).total_score == 50
    assert "side_effect_record_failed" in caplog.text
    assert get_side_effect_stats()["total_runs"] == 0


def test_concurrent_updates_for_one_student_are_not_lost(engine, make_student):
    student = make_student()
    calls = 6
    errors = []
    start = threading.Barrier(calls)

    def worker():
        try:
            start.wait()
            with Session(engine) as s:
                ActivityOrchestrator(s).apply_updates(student.id, "Science", "Quiz", 10)
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=worker) for _ in range(calls)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=30)

    assert errors == []
    with Session(engine) as s:
        row = repositories.ProgressRepository(s).get(student.id, "Science", "Quiz")
        assert row.games_played == calls
        assert row.completion_percentage == 10 * calls
        assert row.total_score == 10 * calls
    assert get_side_effect_stats()["failed_runs"] == 0


def test_keyed_locks_serialize_same_key_only():
    locks = KeyedLocks()
    holding = threading.Event()
    release = threading.Event()
    acquired = []

    def hold_first():
        with locks.hold(1):
            holding.set()
            release.wait(5)

    def take(key):
        with locks.hold(key):
            acquired.append(key)

    first = threading.Thread(target=hold_first)
    first.start()
    assert holding.wait(5)

    same = threading.Thread(target=take, args=(1,))
    other = threading.Thread(target=take, args=(2,))
    same.start()
    other.start()
    other.join(5)
    assert acquired == [2]
    same.join(0.2)
    assert same.is_alive()

    release.set()
    first.join(5)
    same.join(5)
    assert acquired == [2, 1]
    assert len(locks) == 0


def test_keyed_locks_are_reentrant():
    locks = KeyedLocks()
    with locks.hold("s"):
        with locks.hold("s"):
            assert len(locks) == 1
    assert len(locks) == 0
