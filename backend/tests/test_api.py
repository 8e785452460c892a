from sqlmodel import Session

from stemlearn import models


def _register_and_login(client, email="rahul@example.com", grade="6", name="Rahul Sharma"):
    r = client.post('/api/register', json={
        'full_name': name, 'email': email, 'password': 'password123', 'grade': grade,
    })
    assert r.status_code == 201, r.text
    r = client.post('/api/login', json={'email': email, 'password': 'password123'})
    assert r.status_code == 200, r.text
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


def _teacher_headers(client):
    r = client.post('/api/teachers/register', json={
        'full_name': 'John Smith', 'teacher_code': 'TCH001', 'email': 'john@example.com',
        'password': 'teacher123', 'subject': 'Science',
    })
    assert r.status_code == 201, r.text
    r = client.post('/api/teachers/login', json={'teacher_code': 'TCH001', 'password': 'teacher123'})
    assert r.status_code == 200, r.text
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


def _add_game(engine, name="Habitat Match", max_score=100):
    with Session(engine) as s:
        s.add(models.Game(name=name, subject="Science", topic="Living Things", difficulty="Basic", max_score=max_score))
        s.commit()


def test_health_echoes_request_id(client):
    r = client.get('/health', headers={'X-Request-ID': 'abc123'})
    assert r.status_code == 200
    assert r.json() == {'status': 'ok'}
    assert r.headers['X-Request-ID'] == 'abc123'


def test_register_duplicate_and_bad_login(client):
    _register_and_login(client)
    dup = client.post('/api/register', json={
        'full_name': 'Other', 'email': 'rahul@example.com', 'password': 'x', 'grade': '6',
    })
    assert dup.status_code == 409
    assert dup.json()['detail'] == 'user already exists'
    bad = client.post('/api/login', json={'email': 'rahul@example.com', 'password': 'wrong'})
    assert bad.status_code == 401


def test_missing_fields_return_400(client):
    r = client.post('/api/register', json={'email': 'x@example.com'})
    assert r.status_code == 400
    assert 'full_name' in r.json()['fields']


def test_protected_routes_need_student_token(client):
    assert client.get('/api/student/dashboard').status_code in (401, 403)
    teacher = _teacher_headers(client)
    assert client.get('/api/student/dashboard', headers=teacher).status_code == 401


def test_game_result_updates_dashboard_and_leaderboards(client, engine):
    _add_game(engine, max_score=50)
    headers = _register_and_login(client)
    r = client.post('/api/game/save-result', headers=headers, json={'game_name': 'Habitat Match', 'score': 40})
    assert r.status_code == 200, r.text
    assert r.json()['normalized_score'] == 80

    missing = client.post('/api/game/save-result', headers=headers, json={'game_name': 'Nope', 'score': 1})
    assert missing.status_code == 404

    dash = client.get('/api/student/dashboard', headers=headers).json()
    assert dash['stats']['total_games_played'] == 1
    assert dash['stats']['total_score'] == 80
    assert dash['stats']['leaderboard_rank'] == 1
    assert dash['streaks'] == {'current': 1, 'longest': 1}
    science = [s for s in dash['subject_progress'] if s['subject'] == 'Science'][0]
    assert science['games_played'] == 1

    board = client.get('/api/leaderboard').json()
    assert board[0]['total_score'] == 80
    assert board[0]['rank'] == 1

    per_game = client.get('/api/game/leaderboard/Habitat Match').json()
    assert [(row['score'], row['rank'], row['attempts']) for row in per_game] == [(80, 1, 1)]
    assert client.get('/api/student/rank', headers=headers).json()['rank'] == 1


def test_save_result_with_rank_shares_ties(client, engine):
    _add_game(engine)
    first = _register_and_login(client, 'a@example.com', name='Asha')
    second = _register_and_login(client, 'b@example.com', name='Bilal')
    client.post('/api/game/save-result', headers=first, json={'game_name': 'Habitat Match', 'score': 90})
    r = client.post('/api/game/save-result-with-rank', headers=second,
                    json={'game_name': 'Habitat Match', 'score': 90})
    body = r.json()
    assert (body['rank'], body['total_players']) == (1, 2)
    assert body['user']['full_name'] == 'Bilal'


def test_quiz_flow_over_http(client):
    teacher = _teacher_headers(client)
    student = _register_and_login(client)
    r = client.post('/api/quizzes/create', headers=teacher, json={
        'title': 'Living Things', 'subject': 'Science', 'class_grade': '6',
        'questions': [
            {'question_text': 'Plants make food through:', 'option_a': 'Respiration',
             'option_b': 'Photosynthesis', 'option_c': 'Digestion', 'option_d': 'Transpiration',
             'correct_answer': 'B'},
            {'question_text': 'Which is NOT living?', 'option_a': 'Tree', 'option_b': 'Mushroom',
             'option_c': 'Rock', 'option_d': 'Bacteria', 'correct_answer': 'C', 'points': 20},
        ],
    })
    assert r.status_code == 201, r.text
    quiz_id = r.json()['quiz_id']

    listed = client.get('/api/student/quizzes', headers=student).json()
    assert [(q['id'], q['attempt_status']) for q in listed] == [(quiz_id, 'not-started')]
    notes = client.get('/api/student/notifications', headers=student).json()
    assert notes[0]['type'] == 'quiz'
    assert client.put(f"/api/student/notifications/{notes[0]['id']}/read", headers=student).status_code == 200

    detail = client.get(f'/api/student/quiz/{quiz_id}', headers=student).json()
    assert all('correct_answer' not in q for q in detail['questions'])
    q1, q2 = [q['id'] for q in detail['questions']]

    start = client.post('/api/student/quiz/start', headers=student, json={'quiz_id': quiz_id})
    assert start.status_code == 201
    resume = client.post('/api/student/quiz/start', headers=student, json={'quiz_id': quiz_id})
    assert resume.status_code == 200
    attempt_id = start.json()['attempt_id']
    assert resume.json()['attempt_id'] == attempt_id

    submission = {'quiz_id': quiz_id, 'attempt_id': attempt_id, 'answers': [
        {'question_id': q1, 'selected_answer': 'B'},
        {'question_id': q2, 'selected_answer': 'C'},
    ]}
    graded = client.post('/api/student/quiz/submit', headers=student, json=submission)
    assert graded.status_code == 200, graded.text
    assert (graded.json()['score'], graded.json()['percentage']) == (30, 150)

    assert client.post('/api/student/quiz/submit', headers=student, json=submission).status_code == 409
    assert client.post('/api/student/quiz/start', headers=student, json={'quiz_id': quiz_id}).status_code == 409

    summary = client.get('/api/teachers/quizzes', headers=teacher).json()
    assert (summary[0]['attempts_count'], summary[0]['completed_count']) == (1, 1)


def test_teacher_views(client, engine):
    _add_game(engine)
    teacher = _teacher_headers(client)
    student = _register_and_login(client)
    client.post('/api/game/save-result', headers=student, json={'game_name': 'Habitat Match', 'score': 55})

    students = client.get('/api/teachers/students', headers=teacher).json()
    assert students[0]['total_score'] == 55
    detail = client.get(f"/api/teachers/students/{students[0]['id']}", headers=teacher).json()
    assert detail['recent_games'][0]['name'] == 'Habitat Match'
    activity = client.get('/api/teachers/recent-activity', headers=teacher).json()
    assert activity[0]['score'] == '55%'
    assert activity[0]['time'] == 'Just now'

    created = client.post('/api/assignments/create', headers=teacher, json={
        'title': 'Worksheet', 'subject': 'Mathematics', 'due_date': '2030-01-01', 'class_grade': '6',
    })
    assert created.status_code == 201
    assignment_id = created.json()['assignment_id']
    r = client.post('/api/student/assignment/submit', headers=student, json={'assignment_id': assignment_id})
    assert r.status_code == 200
    subs = client.get(f'/api/teachers/assignments/{assignment_id}/submissions', headers=teacher).json()
    assert len(subs) == 1
    assert client.get('/api/teachers/assignments', headers=teacher).json()[0]['submitted_count'] == 1


def test_side_effect_stats_endpoint(client):
    _register_and_login(client)
    stats = client.get('/api/stats/side-effects').json()
    assert stats['failed_runs'] == 0
    assert stats['steps']['streak']['runs'] == 1


def test_huge_score_is_clamped_and_nan_rejected(client, engine):
    _add_game(engine)
    headers = _register_and_login(client)
    r = client.post('/api/game/save-result', headers=headers,
                    json={'game_name': 'Habitat Match', 'score': 1e308})
    assert r.status_code == 200, r.text
    assert r.json()['normalized_score'] == 100
    nan = client.post('/api/game/save-result', headers={**headers, 'Content-Type': 'application/json'},
                      content=b'{"game_name": "Habitat Match", "score": NaN}')
    assert nan.status_code == 400
    assert 'score' in nan.json()['fields']


def test_login_response_shape(client):
    r = client.post('/api/register', json={
        'full_name': 'Mina', 'email': 'mina@example.com', 'password': 'pw', 'grade': '6',
    })
    assert r.status_code == 201
    body = client.post('/api/login', json={'email': 'mina@example.com', 'password': 'pw'}).json()
    assert set(body) == {'access_token', 'user'}
    assert body['user']['email'] == 'mina@example.com'
    assert body['user']['account_type'] == 'student'
