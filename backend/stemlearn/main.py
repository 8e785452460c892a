"""FastAPI application entrypoint and HTTP controllers.

This module defines the HTTP endpoints of the STEM Learn backend.
Controllers are intentionally thin: they accept requests, delegate to
services, and return JSON responses. Service errors are mapped to HTTP
status codes by the exception handlers registered below.

Endpoints implemented:
- POST /api/register, POST /api/login
- POST /api/teachers/register, POST /api/teachers/login
- GET /api/games, GET /api/games/subject/{subject}
- POST /api/game/save-result, POST /api/game/save-result-with-rank
- GET /api/game/leaderboard/{game_name}
- GET /api/leaderboard, GET /api/student/rank
- GET /api/student/dashboard, /assignments, /quizzes, /quiz/{quiz_id}, /notifications
- POST /api/student/quiz/start, /quiz/submit, /assignment/submit
- PUT /api/student/notifications/{notification_id}/read
- GET /api/teachers/students, /students/{student_id}, /recent-activity, /assignments, /quizzes
- GET /api/teachers/assignments/{assignment_id}/submissions
- POST /api/assignments/create, POST /api/quizzes/create
- GET /api/stats/side-effects, GET /health
"""

from fastapi import FastAPI, Depends, HTTPException, Request, BackgroundTasks
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from fastapi.middleware.cors import CORSMiddleware
from sqlmodel import Session
import json
import logging
import time
import uuid
from .database import create_db_and_tables, get_session, get_session_factory
from . import services, models
from .auth import get_current_student, get_current_teacher
from .errors import ServiceError
from .schemas import (
    AssignmentCreateIn,
    AssignmentSubmitIn,
    GameResultIn,
    QuizCreateIn,
    QuizStartIn,
    QuizSubmission,
    StudentLoginIn,
    StudentRegisterIn,
    TeacherLoginIn,
    TeacherRegisterIn,
    TokenOut,
)
from .tracking import RankingEngine
from .repositories import LeaderboardRepository
from .utils.side_effect_observability import get_side_effect_stats
from .config import settings

app = FastAPI(title="STEM Learn API")
logger = logging.getLogger("stemlearn.api")
if not logger.handlers:
    logging.basicConfig(level=settings.LOG_LEVEL)

if settings.ALLOW_DEV_CORS:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

create_db_and_tables()


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    req_id = request.headers.get("X-Request-ID", uuid.uuid4().hex)
    request.state.request_id = req_id
    started = time.perf_counter()
    response: Response
    try:
        response = await call_next(request)
    except Exception:
        elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
        logger.exception(
            "request_failed %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
        raise
    response.headers["X-Request-ID"] = req_id
    elapsed_ms = round((time.perf_counter() - started) * 1000.0, 2)
    if request.url.path.startswith("/api"):
        logger.info(
            "request_done %s",
            json.dumps(
                {
                    "request_id": req_id,
                    "path": request.url.path,
                    "method": request.method,
                    "status_code": response.status_code,
                    "duration_ms": elapsed_ms,
                    "client": request.client.host if request.client else "unknown",
                },
                ensure_ascii=True,
            ),
        )
    return response


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.error("service_error %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    missing = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
    return JSONResponse(status_code=400, content={"detail": "invalid or missing fields", "fields": missing})


def _scheduler(background_tasks: BackgroundTasks):
    """Return the callable used to defer aggregate updates, or None to run inline."""
    return background_tasks.add_task if settings.DEFER_SIDE_EFFECTS else None


# ---- accounts ----

@app.post('/api/register', status_code=201)
def register_student(payload: StudentRegisterIn, db: Session = Depends(get_session)):
    """Register a student account.

    Returns 409 when the email is already registered. The new student
    starts with seeded topic progress, an empty streak and a leaderboard row.
    """
    student = services.AuthService(db).register_student(
        payload.full_name, payload.email, payload.password, payload.grade,
        school=payload.school, profile_picture=payload.profile_picture,
    )
    return {'message': 'User registered successfully', 'user': services.student_profile(student)}


@app.post('/api/login', response_model=TokenOut)
def login_student(payload: StudentLoginIn, db: Session = Depends(get_session)):
    """Authenticate a student and return a bearer token with the profile."""
    result = services.AuthService(db).authenticate_student(payload.email, payload.password)
    if not result:
        raise HTTPException(status_code=401, detail='invalid email or password')
    student, token = result
    return {'access_token': token, 'user': services.student_profile(student)}


@app.post('/api/teachers/register', status_code=201)
def register_teacher(payload: TeacherRegisterIn, db: Session = Depends(get_session)):
    teacher = services.AuthService(db).register_teacher(
        payload.full_name, payload.teacher_code, payload.email, payload.password, payload.subject,
        phone=payload.phone, school=payload.school, profile_picture=payload.profile_picture,
    )
    return {'message': 'Teacher registered successfully', 'teacher': services.teacher_profile(teacher)}


@app.post('/api/teachers/login', response_model=TokenOut)
def login_teacher(payload: TeacherLoginIn, db: Session = Depends(get_session)):
    result = services.AuthService(db).authenticate_teacher(payload.teacher_code, payload.password)
    if not result:
        raise HTTPException(status_code=401, detail='invalid teacher id or password')
    teacher, token = result
    return {'access_token': token, 'user': services.teacher_profile(teacher)}


# ---- games and leaderboards ----

@app.get('/api/games')
def list_games(db: Session = Depends(get_session)):
    """List all games ordered by subject and difficulty."""
    return services.GameService(db).list_games()


@app.get('/api/games/subject/{subject}')
def list_games_by_subject(subject: str, db: Session = Depends(get_session)):
    return services.GameService(db).list_games(subject)


@app.post('/api/game/save-result')
def save_game_result(payload: GameResultIn, background_tasks: BackgroundTasks,
                     db: Session = Depends(get_session), session_factory=Depends(get_session_factory),
                     student: models.Student = Depends(get_current_student)):
    """Record a game play for the authenticated student.

    The raw score is normalized against the game's maximum. Progress,
    streak and leaderboard updates run after the response is sent.
    """
    svc = services.GameService(db, session_factory)
    result = svc.save_result(student.id, payload.game_name, payload.score, payload.time_taken,
                             payload.completed, schedule=_scheduler(background_tasks))
    return {'message': 'Game result saved successfully', **result}


@app.post('/api/game/save-result-with-rank')
def save_game_result_with_rank(payload: GameResultIn, background_tasks: BackgroundTasks,
                               db: Session = Depends(get_session), session_factory=Depends(get_session_factory),
                               student: models.Student = Depends(get_current_student)):
    """Record a game play and return the student's rank on that game."""
    svc = services.GameService(db, session_factory)
    result = svc.save_result_with_rank(student.id, payload.game_name, payload.score, payload.time_taken,
                                       payload.completed, schedule=_scheduler(background_tasks))
    return {'message': 'Game result saved successfully', **result}


@app.get('/api/game/leaderboard/{game_name}')
def game_leaderboard(game_name: str, limit: int = settings.GAME_LEADERBOARD_LIMIT, db: Session = Depends(get_session)):
    """Per-game leaderboard: best score per student, ties share a rank."""
    return services.GameService(db).leaderboard(game_name, max(1, limit))


@app.get('/api/leaderboard')
def global_leaderboard(limit: int = 10, db: Session = Depends(get_session)):
    """Global leaderboard rows ordered by total score, with their rank."""
    repo = LeaderboardRepository(db)
    out = []
    for entry in repo.list_top(max(1, limit)):
        row = entry.model_dump()
        row['rank'] = 1 + repo.count_above(entry.total_score)
        out.append(row)
    return out


@app.get('/api/student/rank')
def my_global_rank(db: Session = Depends(get_session), student: models.Student = Depends(get_current_student)):
    return {'student_id': student.id, 'rank': RankingEngine(db).global_rank(student.id)}


# ---- student views ----

@app.get('/api/student/dashboard')
def student_dashboard(db: Session = Depends(get_session), student: models.Student = Depends(get_current_student)):
    return services.DashboardService(db).student_dashboard(student.id)


@app.get('/api/student/assignments')
def student_assignments(db: Session = Depends(get_session), student: models.Student = Depends(get_current_student)):
    """Active assignments for the student's grade with due status."""
    return services.AssignmentService(db).list_for_student(student.id)


@app.post('/api/student/assignment/submit')
def submit_assignment(payload: AssignmentSubmitIn, db: Session = Depends(get_session),
                      student: models.Student = Depends(get_current_student)):
    sub = services.AssignmentService(db).submit(student.id, payload.assignment_id, payload.attachment)
    return {
        'message': 'Assignment submitted successfully',
        'submission_id': sub.id,
        'submission_date': sub.submission_date.isoformat() if sub.submission_date else None,
    }


@app.get('/api/student/quizzes')
def student_quizzes(db: Session = Depends(get_session), student: models.Student = Depends(get_current_student)):
    return services.QuizService(db).list_for_student(student.id)


@app.get('/api/student/quiz/{quiz_id}')
def get_quiz(quiz_id: int, db: Session = Depends(get_session), student: models.Student = Depends(get_current_student)):
    """Quiz with its questions; correct answers are never included."""
    return services.QuizService(db).get_quiz(quiz_id)


@app.post('/api/student/quiz/start')
def start_quiz(payload: QuizStartIn, db: Session = Depends(get_session),
               student: models.Student = Depends(get_current_student)):
    """Start a quiz attempt or resume the open one (409 once completed)."""
    result = services.QuizService(db).start_attempt(student.id, payload.quiz_id)
    message = 'Resuming quiz attempt' if result['resumed'] else 'Quiz started successfully'
    return JSONResponse(status_code=200 if result['resumed'] else 201, content={'message': message, **result})


@app.post('/api/student/quiz/submit')
def submit_quiz(payload: QuizSubmission, background_tasks: BackgroundTasks,
                db: Session = Depends(get_session), session_factory=Depends(get_session_factory),
                student: models.Student = Depends(get_current_student)):
    """Grade the authenticated student's attempt and make it terminal."""
    answers = [{'question_id': a.question_id, 'selected_answer': a.selected_answer} for a in payload.answers]
    svc = services.QuizService(db, session_factory)
    result = svc.grade(payload.attempt_id, payload.quiz_id, answers, student_id=student.id,
                       schedule=_scheduler(background_tasks))
    return {'message': 'Quiz submitted successfully', **result}


@app.get('/api/student/notifications')
def student_notifications(db: Session = Depends(get_session), student: models.Student = Depends(get_current_student)):
    return services.NotificationService(db).latest_for_student(student.id)


@app.put('/api/student/notifications/{notification_id}/read')
def mark_notification_read(notification_id: int, db: Session = Depends(get_session),
                           student: models.Student = Depends(get_current_student)):
    services.NotificationService(db).mark_read(notification_id, student.id)
    return {'message': 'Notification marked as read'}


# ---- teacher views ----

@app.get('/api/teachers/students')
def teacher_students(db: Session = Depends(get_session), teacher: models.Teacher = Depends(get_current_teacher)):
    return services.DashboardService(db).teacher_students()


@app.get('/api/teachers/students/{student_id}')
def teacher_student_detail(student_id: int, db: Session = Depends(get_session),
                           teacher: models.Teacher = Depends(get_current_teacher)):
    return services.DashboardService(db).student_detail(student_id)


@app.get('/api/teachers/recent-activity')
def teacher_recent_activity(db: Session = Depends(get_session), teacher: models.Teacher = Depends(get_current_teacher)):
    return services.DashboardService(db).recent_activity()


@app.get('/api/teachers/assignments')
def teacher_assignments(db: Session = Depends(get_session), teacher: models.Teacher = Depends(get_current_teacher)):
    return services.AssignmentService(db).list_for_teacher(teacher.id)


@app.get('/api/teachers/assignments/{assignment_id}/submissions')
def teacher_assignment_submissions(assignment_id: int, db: Session = Depends(get_session),
                                   teacher: models.Teacher = Depends(get_current_teacher)):
    return services.AssignmentService(db).submissions(assignment_id)


@app.get('/api/teachers/quizzes')
def teacher_quizzes(db: Session = Depends(get_session), teacher: models.Teacher = Depends(get_current_teacher)):
    return services.QuizService(db).list_for_teacher(teacher.id)


@app.post('/api/assignments/create', status_code=201)
def create_assignment(payload: AssignmentCreateIn, db: Session = Depends(get_session),
                      teacher: models.Teacher = Depends(get_current_teacher)):
    """Post an assignment; students of the class grade are notified."""
    a = services.AssignmentService(db).create(
        teacher.id, payload.title, payload.subject, payload.due_date, payload.class_grade,
        topic=payload.topic, description=payload.description, attachment=payload.attachment,
    )
    return {'message': 'Assignment created successfully', 'assignment_id': a.id}


@app.post('/api/quizzes/create', status_code=201)
def create_quiz(payload: QuizCreateIn, db: Session = Depends(get_session),
                teacher: models.Teacher = Depends(get_current_teacher)):
    """Create a quiz with its questions atomically."""
    quiz = services.QuizService(db).create_quiz(
        teacher.id, payload.title, payload.subject, payload.class_grade,
        [q.model_dump() for q in payload.questions],
        description=payload.description, duration=payload.duration,
    )
    return {'message': 'Quiz created successfully', 'quiz_id': quiz.id}


# ---- operations ----

@app.get('/api/stats/side-effects')
def side_effect_stats():
    """Run and failure counts of the post-activity aggregate updates."""
    return get_side_effect_stats()


@app.get("/health")
def health():
    """Lightweight health check for uptime monitoring."""
    return {"status": "ok"}
