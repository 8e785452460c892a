from datetime import datetime, timedelta, timezone

import pytest

from stemlearn import models, repositories, services
from stemlearn.errors import NotFoundError
from stemlearn.tracking import RankingEngine

T0 = datetime(2024, 4, 1, 9, 0, tzinfo=timezone.utc)


def _play(session, student, game, score, minutes, completed=True):
    return repositories.GameSessionRepository(session).create(models.GameSession(
        student_id=student.id, game_id=game.id, score=score, completed=completed,
        played_at=T0 + timedelta(minutes=minutes),
    ))


def test_ties_share_rank_and_next_rank_skips(session, make_student, make_game):
    a, b, c = make_student(), make_student(), make_student()
    game = make_game()
    _play(session, a, game, 90, 5)
    _play(session, b, game, 90, 1)
    _play(session, c, game, 80, 0)
    ranking = RankingEngine(session).game_rank(game.id)
    assert [r['rank'] for r in ranking] == [1, 1, 3]
    # equal best scores: whoever reached it first is listed first
    assert [r['student_id'] for r in ranking] == [b.id, a.id, c.id]


def test_best_score_and_first_achieved(session, make_student, make_game):
    student = make_student()
    game = make_game()
    _play(session, student, game, 50, 0)
    _play(session, student, game, 70, 10)
    _play(session, student, game, 70, 20)
    _play(session, student, game, 30, 30)
    [row] = RankingEngine(session).game_rank(game.id)
    assert row['score'] == 70
    assert row['attempts'] == 4
    assert row['first_achieved'] == T0 + timedelta(minutes=10)


def test_incomplete_sessions_are_not_ranked(session, make_student, make_game):
    a, b = make_student(), make_student()
    game = make_game()
    _play(session, a, game, 40, 0)
    _play(session, b, game, 100, 1, completed=False)
    ranking = RankingEngine(session).game_rank(game.id)
    assert [r['student_id'] for r in ranking] == [a.id]
    assert RankingEngine(session).student_game_rank(game.id, b.id) == {'rank': 2, 'total_players': 1}


def test_save_with_rank_for_unfinished_play_ranks_last(session, make_student, make_game):
    a, b = make_student(), make_student()
    game = make_game()
    svc = services.GameService(session)
    svc.save_result(a.id, game.name, 80)
    out = svc.save_result_with_rank(b.id, game.name, 100, completed=False)
    assert (out['rank'], out['total_players']) == (2, 1)


def test_unknown_game(session):
    with pytest.raises(NotFoundError):
        RankingEngine(session).game_rank(404)


def test_save_result_normalizes_and_reports_rank(session, make_student, make_game):
    a, b = make_student(), make_student()
    game = make_game(name="Body Part Functions", subject="Science", topic="Living Things", max_score=150)
    svc = services.GameService(session)
    first = svc.save_result_with_rank(a.id, game.name, 150)
    assert first['normalized_score'] == 100
    assert (first['rank'], first['total_players']) == (1, 1)
    second = svc.save_result_with_rank(b.id, game.name, 75)
    assert second['normalized_score'] == 50
    assert (second['rank'], second['total_players']) == (2, 2)
    assert second['user']['id'] == b.id

    progress = repositories.ProgressRepository(session).get(b.id, "Science", "Living Things")
    assert (progress.games_played, progress.total_score, progress.completion_percentage) == (1, 50, 10)
    assert repositories.LeaderboardRepository(session).get(a.id).total_score == 100


def test_save_result_over_max_is_clamped(session, make_student, make_game):
    student = make_student()
    make_game(max_score=50)
    out = services.GameService(session).save_result(student.id, "Fraction Fun", 80)
    assert out['normalized_score'] == 100


def test_save_result_unknown_game(session, make_student):
    student = make_student()
    with pytest.raises(NotFoundError):
        services.GameService(session).save_result(student.id, "Nope", 10)


def test_game_leaderboard_rows(session, make_student, make_game):
    a, b = make_student("Asha"), make_student("Bilal")
    game = make_game()
    _play(session, a, game, 60, 0)
    _play(session, b, game, 95, 2)
    rows = services.GameService(session).leaderboard(game.name, 1)
    assert len(rows) == 1
    assert rows[0]['full_name'] == "Bilal"
    assert rows[0]['rank'] == 1
    assert rows[0]['first_achieved'].startswith("2024-04-01T09:02")
