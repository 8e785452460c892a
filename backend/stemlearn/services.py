"""Business logic services used by HTTP controllers.

This module holds small service classes that coordinate repositories
and the tracking subsystem. Services are intentionally thin: they
perform validation, execute domain logic and persist aggregates via
repositories, raising `errors.ServiceError` subclasses on failure.
"""

import logging
from datetime import date, datetime, timedelta
import math
from passlib.context import CryptContext
import jwt
from typing import Callable, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session
from . import models, repositories
from .config import settings
from .errors import ConflictError, NotFoundError, StorageFailure, ValidationError
from .tracking import ActivityOrchestrator, RankingEngine
from .utils.clock import as_utc, time_ago, today_utc, utcnow
from .utils.scoring import normalize_score, quiz_percentage, round_half_up

PWD_CTX = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
ANSWER_OPTIONS = ("A", "B", "C", "D")

logger = logging.getLogger("stemlearn.services")


def create_access_token(account_id: int, kind: str) -> str:
    """Sign a JWT identifying an account and its kind (`student`/`teacher`)."""
    expire = utcnow() + timedelta(hours=settings.JWT_EXPIRE_HOURS)
    payload = {"account_id": account_id, "kind": kind, "exp": int(expire.timestamp())}
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def student_profile(student: models.Student) -> dict:
    return {
        'id': student.id,
        'full_name': student.full_name,
        'email': student.email,
        'grade': student.grade,
        'profile_picture': student.profile_picture,
        'school': student.school,
        'account_type': 'student',
    }


def teacher_profile(teacher: models.Teacher) -> dict:
    return {
        'id': teacher.id,
        'full_name': teacher.full_name,
        'teacher_code': teacher.teacher_code,
        'email': teacher.email,
        'subject': teacher.subject,
        'profile_picture': teacher.profile_picture,
        'phone': teacher.phone,
        'school': teacher.school,
        'account_type': 'teacher',
    }


def _require(fields: dict):
    """Raise ValidationError naming every missing/blank required field."""
    missing = [name for name, value in fields.items() if value is None or (isinstance(value, str) and not value.strip())]
    if missing:
        raise ValidationError(f"missing required fields: {', '.join(missing)}")


class AuthService:
    """Registration and login for both account kinds."""
    def __init__(self, session: Session):
        self.session = session
        self.students = repositories.StudentRepository(session)
        self.teachers = repositories.TeacherRepository(session)

    def register_student(self, full_name: str, email: str, password: str, grade: str,
                         school: Optional[str] = None, profile_picture: Optional[str] = None) -> models.Student:
        """Create a student with a hashed password and initial aggregates.

        Raises ConflictError when the email is already registered.
        """
        _require({'full_name': full_name, 'email': email, 'password': password, 'grade': grade})
        if self.students.get_by_email(email):
            raise ConflictError("user already exists")
        student = models.Student(
            full_name=full_name,
            email=email,
            password_hash=PWD_CTX.hash(password),
            grade=str(grade),
            school=school or settings.DEFAULT_SCHOOL,
            profile_picture=profile_picture,
        )
        try:
            student = self.students.create(student)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("error creating user") from exc
        ActivityOrchestrator(self.session).on_registered(student.id)
        return student

    def authenticate_student(self, email: str, password: str):
        """Verify credentials and return `(student, token)`, or `None`.

        A successful login counts as activity for the streak.
        """
        student = self.students.get_by_email(email)
        if not student or not PWD_CTX.verify(password, student.password_hash):
            return None
        ActivityOrchestrator(self.session).on_login(student.id)
        return student, create_access_token(student.id, "student")

    def register_teacher(self, full_name: str, teacher_code: str, email: str, password: str, subject: str,
                         phone: Optional[str] = None, school: Optional[str] = None,
                         profile_picture: Optional[str] = None) -> models.Teacher:
        _require({'full_name': full_name, 'teacher_code': teacher_code, 'email': email,
                  'password': password, 'subject': subject})
        if self.teachers.exists_by_code_or_email(teacher_code, email):
            raise ConflictError("teacher already exists")
        teacher = models.Teacher(
            full_name=full_name,
            teacher_code=teacher_code,
            email=email,
            password_hash=PWD_CTX.hash(password),
            subject=subject,
            phone=phone or "",
            school=school or settings.DEFAULT_SCHOOL,
            profile_picture=profile_picture,
        )
        try:
            return self.teachers.create(teacher)
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("error creating teacher") from exc

    def authenticate_teacher(self, teacher_code: str, password: str):
        teacher = self.teachers.get_by_code(teacher_code)
        if not teacher or not PWD_CTX.verify(password, teacher.password_hash):
            return None
        return teacher, create_access_token(teacher.id, "teacher")


class GameService:
    """Game catalog reads and game result submission."""
    def __init__(self, session: Session, session_factory: Optional[Callable[[], Session]] = None):
        self.session = session
        self.games = repositories.GameRepository(session)
        self.students = repositories.StudentRepository(session)
        self.orchestrator = ActivityOrchestrator(session, session_factory)
        self.ranking = RankingEngine(session)

    def list_games(self, subject: Optional[str] = None) -> List[models.Game]:
        return self.games.list_all(subject)

    def _game_by_name(self, game_name: str) -> models.Game:
        game = self.games.get_by_name(game_name)
        if not game:
            raise NotFoundError("game not found")
        return game

    def save_result(self, student_id: int, game_name: str, raw_score: float, time_taken: int = 0,
                    completed: bool = True, schedule: Optional[Callable] = None) -> dict:
        """Normalize a raw score against the game's maximum and record the play."""
        _require({'game_name': game_name, 'score': raw_score})
        game = self._game_by_name(game_name)
        normalized = normalize_score(raw_score, game.max_score)
        try:
            record = self.orchestrator.on_game_completed(
                student_id, game, normalized, time_taken=time_taken, completed=completed, schedule=schedule
            )
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("error saving game result") from exc
        return {'session_id': record.id, 'normalized_score': normalized, 'game_id': game.id}

    def save_result_with_rank(self, student_id: int, game_name: str, raw_score: float, time_taken: int = 0,
                              completed: bool = True, schedule: Optional[Callable] = None) -> dict:
        """Like `save_result`, plus the student's standing on the game's leaderboard."""
        out = self.save_result(student_id, game_name, raw_score, time_taken, completed, schedule)
        standing = self.ranking.student_game_rank(out['game_id'], student_id)
        student = self.students.get(student_id)
        out.update({
            'raw_score': raw_score,
            'rank': standing['rank'],
            'total_players': standing['total_players'],
            'user': {
                'id': student_id,
                'full_name': student.full_name if student else 'Unknown',
                'profile_picture': student.profile_picture if student else None,
            },
        })
        return out

    def leaderboard(self, game_name: str, limit: int) -> List[dict]:
        """Top `limit` entries of the per-game ranking with display details."""
        game = self._game_by_name(game_name)
        out = []
        for row in self.ranking.game_rank(game.id)[:limit]:
            student = self.students.get(row['student_id'])
            out.append({
                'user_id': row['student_id'],
                'full_name': student.full_name if student else None,
                'profile_picture': student.profile_picture if student else None,
                'grade': student.grade if student else None,
                'score': row['score'],
                'first_achieved': row['first_achieved'].isoformat(),
                'attempts': row['attempts'],
                'rank': row['rank'],
            })
        return out


class NotificationService:
    """Create and read inbox notifications."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.NotificationRepository(session)
        self.students = repositories.StudentRepository(session)

    def notify_grade(self, class_grade: str, title: str, message: str, type_: str, related_id: int) -> int:
        """Notify every student of a class grade. Failures are logged, not raised."""
        try:
            ids = self.students.list_ids_for_grade(class_grade)
            return self.repo.add_many([
                models.Notification(recipient_id=sid, recipient_kind='student', title=title,
                                    message=message, type=type_, related_id=related_id)
                for sid in ids
            ])
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("failed to notify grade %s about %s %s", class_grade, type_, related_id)
            return 0

    def notify_teacher(self, teacher_id: int, title: str, message: str, type_: str, related_id: int) -> int:
        try:
            return self.repo.add_many([
                models.Notification(recipient_id=teacher_id, recipient_kind='teacher', title=title,
                                    message=message, type=type_, related_id=related_id)
            ])
        except SQLAlchemyError:
            self.session.rollback()
            logger.exception("failed to notify teacher %s about %s %s", teacher_id, type_, related_id)
            return 0

    def latest_for_student(self, student_id: int, limit: int = 20) -> List[models.Notification]:
        return self.repo.latest_for(student_id, 'student', limit)

    def mark_read(self, notification_id: int, student_id: int) -> models.Notification:
        n = self.repo.get(notification_id)
        if not n or n.recipient_kind != 'student' or n.recipient_id != student_id:
            raise NotFoundError("notification not found")
        return self.repo.mark_read(n)


class QuizService:
    """Quiz authoring, attempts and grading."""
    def __init__(self, session: Session, session_factory: Optional[Callable[[], Session]] = None):
        self.session = session
        self.quizzes = repositories.QuizRepository(session)
        self.attempts = repositories.QuizAttemptRepository(session)
        self.students = repositories.StudentRepository(session)
        self.teachers = repositories.TeacherRepository(session)
        self.orchestrator = ActivityOrchestrator(session, session_factory)

    def create_quiz(self, teacher_id: int, title: str, subject: str, class_grade: str, questions: List[dict],
                    description: str = "", duration: int = 30) -> models.Quiz:
        """Create a quiz and all of its questions as one unit.

        Input is validated before anything is written. If any insert fails
        the quiz and every question staged so far are rolled back together.
        """
        _require({'title': title, 'subject': subject, 'class_grade': class_grade})
        if not questions:
            raise ValidationError("missing required fields: questions")
        for idx, q in enumerate(questions):
            if q.get('correct_answer') not in ANSWER_OPTIONS:
                raise ValidationError(f"question {idx}: correct_answer must be one of A, B, C, D")
        if self.teachers.get(teacher_id) is None:
            raise NotFoundError("teacher not found")
        quiz = models.Quiz(
            teacher_id=teacher_id,
            title=title,
            subject=subject,
            description=description or "",
            duration=duration or 30,
            class_grade=str(class_grade),
            total_questions=len(questions),
            max_score=100,
        )
        rows = [
            models.QuizQuestion(
                quiz_id=0,
                question_text=q.get('question_text'),
                option_a=q.get('option_a'),
                option_b=q.get('option_b'),
                option_c=q.get('option_c'),
                option_d=q.get('option_d'),
                correct_answer=q['correct_answer'],
                points=q.get('points') or 10,
            )
            for q in questions
        ]
        try:
            self.quizzes.add_with_questions(quiz, rows)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("quiz creation rolled back for teacher %s", teacher_id)
            raise StorageFailure("error creating quiz questions") from exc
        self.session.refresh(quiz)
        NotificationService(self.session).notify_grade(
            quiz.class_grade, 'New Quiz', f'New quiz "{quiz.title}" is available.', 'quiz', quiz.id
        )
        return quiz

    def get_quiz(self, quiz_id: int) -> dict:
        """Quiz details with its questions; correct answers are left out."""
        quiz = self.quizzes.get(quiz_id)
        if not quiz:
            raise NotFoundError("quiz not found")
        teacher = self.teachers.get(quiz.teacher_id)
        return {
            **self._quiz_summary(quiz),
            'teacher_name': teacher.full_name if teacher else None,
            'questions': [
                {
                    'id': q.id,
                    'question_text': q.question_text,
                    'option_a': q.option_a,
                    'option_b': q.option_b,
                    'option_c': q.option_c,
                    'option_d': q.option_d,
                    'points': q.points,
                }
                for q in self.quizzes.questions(quiz_id)
            ],
        }

    def list_for_student(self, student_id: int) -> List[dict]:
        """Active quizzes of the student's grade with the student's attempt status."""
        student = self.students.get(student_id)
        if not student:
            raise NotFoundError("student not found")
        out = []
        for quiz in self.quizzes.list_active_for_grade(student.grade):
            attempt = self.attempts.get_for(student_id, quiz.id)
            if attempt and attempt.completed_at:
                status = 'completed'
            elif attempt and attempt.started_at:
                status = 'in-progress'
            else:
                status = 'not-started'
            teacher = self.teachers.get(quiz.teacher_id)
            out.append({
                **self._quiz_summary(quiz),
                'teacher_name': teacher.full_name if teacher else None,
                'student_score': attempt.score if attempt else None,
                'completed_date': as_utc(attempt.completed_at).isoformat() if attempt and attempt.completed_at else None,
                'attempt_status': status,
            })
        return out

    def list_for_teacher(self, teacher_id: int) -> List[dict]:
        out = []
        for quiz in self.quizzes.list_for_teacher(teacher_id):
            attempts = self.attempts.list_for_quiz(quiz.id)
            scores = [a.score or 0 for a in attempts]
            out.append({
                **self._quiz_summary(quiz),
                'attempts_count': len(attempts),
                'completed_count': sum(1 for a in attempts if a.completed_at is not None),
                'average_score': (sum(scores) / len(scores)) if scores else 0,
            })
        return out

    def start_attempt(self, student_id: int, quiz_id: int, now: Optional[datetime] = None) -> dict:
        """Start a quiz, or resume the student's open attempt.

        Raises ConflictError if the student already completed the quiz.
        """
        existing = self.attempts.get_for(student_id, quiz_id)
        if existing:
            if existing.completed_at:
                raise ConflictError("quiz already completed")
            return {'attempt_id': existing.id, 'started_at': as_utc(existing.started_at).isoformat(), 'resumed': True}
        quiz = self.quizzes.get(quiz_id)
        if not quiz:
            raise NotFoundError("quiz not found")
        if self.students.get(student_id) is None:
            raise NotFoundError("student not found")
        started = now or utcnow()
        try:
            attempt = self.attempts.create(models.QuizAttempt(
                student_id=student_id, quiz_id=quiz_id, started_at=started, total_questions=quiz.total_questions
            ))
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("error starting quiz") from exc
        return {'attempt_id': attempt.id, 'started_at': as_utc(started).isoformat(), 'resumed': False}

    def grade(self, attempt_id: int, quiz_id: int, answers: List[dict], student_id: Optional[int] = None,
              now: Optional[datetime] = None, schedule: Optional[Callable] = None) -> dict:
        """Grade a submission of `{question_id, selected_answer}` items.

        Answers to questions outside the quiz are skipped, as are repeats of
        a question already answered (the first one counts). A correct answer
        earns the question's points. The attempt and its answers are
        written together and the attempt becomes terminal; submitting to a
        terminal attempt raises ConflictError and writes nothing.

        The returned percentage divides by ten points per submitted answer
        whatever the questions are actually worth.
        """
        quiz = self.quizzes.get(quiz_id)
        if not quiz:
            raise NotFoundError("quiz not found")
        attempt = self.attempts.get(attempt_id)
        if not attempt or attempt.quiz_id != quiz_id:
            raise NotFoundError("quiz attempt not found")
        if student_id is not None and attempt.student_id != student_id:
            raise NotFoundError("quiz attempt not found")
        if attempt.completed_at is not None:
            raise ConflictError("quiz already completed")

        questions = {q.id: q for q in self.quizzes.questions(quiz_id)}
        answered = set()
        correct_count = 0
        total_score = 0
        completed_at = now or utcnow()
        try:
            for a in answers:
                question = questions.get(a.get('question_id'))
                if question is None:
                    logger.warning("quiz %s: question not found: %s", quiz_id, a.get('question_id'))
                    continue
                if question.id in answered:
                    logger.warning("quiz %s: repeated answer to question %s ignored", quiz_id, question.id)
                    continue
                answered.add(question.id)
                selected = a.get('selected_answer')
                is_correct = selected == question.correct_answer
                if is_correct:
                    correct_count += 1
                    total_score += question.points
                self.session.add(models.QuizAnswer(
                    attempt_id=attempt.id, question_id=question.id, selected_answer=selected, is_correct=is_correct
                ))
            time_taken = math.floor((as_utc(completed_at) - as_utc(attempt.started_at)).total_seconds())
            attempt.completed_at = completed_at
            attempt.time_taken = time_taken
            attempt.score = total_score
            attempt.correct_answers = correct_count
            self.session.add(attempt)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("error submitting quiz") from exc

        self.orchestrator.on_quiz_completed(attempt.student_id, quiz.subject, total_score, schedule=schedule)
        return {
            'score': total_score,
            'correct_answers': correct_count,
            'total_questions': len(answers),
            'percentage': quiz_percentage(total_score, len(answers)),
            'time_taken': time_taken,
        }

    @staticmethod
    def _quiz_summary(quiz: models.Quiz) -> dict:
        return {
            'id': quiz.id,
            'teacher_id': quiz.teacher_id,
            'title': quiz.title,
            'subject': quiz.subject,
            'description': quiz.description,
            'duration': quiz.duration,
            'class_grade': quiz.class_grade,
            'total_questions': quiz.total_questions,
            'max_score': quiz.max_score,
            'status': quiz.status,
            'created_at': as_utc(quiz.created_at).isoformat(),
        }


class AssignmentService:
    """Assignment posting, listing and submission."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.AssignmentRepository(session)
        self.students = repositories.StudentRepository(session)
        self.teachers = repositories.TeacherRepository(session)
        self.notifications = NotificationService(session)

    def create(self, teacher_id: int, title: str, subject: str, due_date: date, class_grade: str,
               topic: str = "", description: str = "", attachment: Optional[str] = None) -> models.Assignment:
        _require({'title': title, 'subject': subject, 'due_date': due_date, 'class_grade': class_grade})
        if self.teachers.get(teacher_id) is None:
            raise NotFoundError("teacher not found")
        try:
            assignment = self.repo.create(models.Assignment(
                teacher_id=teacher_id, title=title, subject=subject, topic=topic or "",
                description=description or "", due_date=due_date, class_grade=str(class_grade),
                attachment=attachment,
            ))
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("error creating assignment") from exc
        self.notifications.notify_grade(
            assignment.class_grade, 'New Assignment',
            f'New assignment "{title}" has been posted. Due: {due_date.isoformat()}',
            'assignment', assignment.id,
        )
        return assignment

    def list_for_student(self, student_id: int, today: Optional[date] = None) -> List[dict]:
        """Active assignments of the student's grade, soonest due first."""
        student = self.students.get(student_id)
        if not student:
            raise NotFoundError("student not found")
        today = today or today_utc()
        out = []
        for a in self.repo.list_active_for_grade(student.grade):
            submission = self.repo.get_submission(student_id, a.id)
            teacher = self.teachers.get(a.teacher_id)
            days = (a.due_date - today).days
            if days < 0:
                status = 'overdue'
            elif days == 0:
                status = 'due-today'
            else:
                status = 'upcoming'
            out.append({
                **self._summary(a),
                'teacher_name': teacher.full_name if teacher else None,
                'status': status,
                'is_submitted': bool(submission and submission.submitted),
                'student_grade': submission.grade if submission else None,
                'submission_date': as_utc(submission.submission_date).isoformat()
                if submission and submission.submission_date else None,
                'days_remaining': abs(days),
                'is_overdue': days < 0,
            })
        return out

    def submit(self, student_id: int, assignment_id: int, attachment: Optional[str] = None) -> models.StudentAssignment:
        """Record (or overwrite) the student's submission and tell the teacher."""
        assignment = self.repo.get(assignment_id)
        if not assignment:
            raise NotFoundError("assignment not found")
        student = self.students.get(student_id)
        if not student:
            raise NotFoundError("student not found")
        try:
            submission = self.repo.upsert_submission(models.StudentAssignment(
                student_id=student_id, assignment_id=assignment_id, submitted=True,
                submission_date=utcnow(), attachment=attachment,
            ))
        except SQLAlchemyError as exc:
            self.session.rollback()
            raise StorageFailure("error submitting assignment") from exc
        self.notifications.notify_teacher(
            assignment.teacher_id, 'Assignment Submitted',
            f'Student {student.full_name} submitted assignment "{assignment.title}"',
            'assignment_submission', assignment_id,
        )
        return submission

    def list_for_teacher(self, teacher_id: int) -> List[dict]:
        """Teacher's assignments with submission counts and a few submitter names."""
        out = []
        for a in self.repo.list_for_teacher(teacher_id):
            rows = self.repo.submissions(a.id)
            names = []
            for sub, student in rows:
                if sub.submitted and student.full_name not in names:
                    names.append(student.full_name)
            if names:
                submitted_students = ', '.join(names[:3]) + ('...' if len(names) > 3 else '')
            else:
                submitted_students = 'No submissions yet'
            out.append({
                **self._summary(a),
                'submissions_count': len(rows),
                'submitted_count': sum(1 for sub, _ in rows if sub.submitted),
                'submitted_students': submitted_students,
            })
        return out

    def submissions(self, assignment_id: int) -> List[dict]:
        if not self.repo.get(assignment_id):
            raise NotFoundError("assignment not found")
        return [
            {
                'id': sub.id,
                'student_id': student.id,
                'student_name': student.full_name,
                'grade': student.grade,
                'email': student.email,
                'profile_picture': student.profile_picture,
                'submission_date': as_utc(sub.submission_date).isoformat() if sub.submission_date else None,
                'attachment': sub.attachment,
                'score': sub.grade,
                'feedback': sub.feedback,
            }
            for sub, student in self.repo.submissions(assignment_id, submitted_only=True)
        ]

    @staticmethod
    def _summary(a: models.Assignment) -> dict:
        return {
            'id': a.id,
            'teacher_id': a.teacher_id,
            'title': a.title,
            'subject': a.subject,
            'topic': a.topic,
            'description': a.description,
            'due_date': a.due_date.isoformat(),
            'class_grade': a.class_grade,
            'attachment': a.attachment,
        }


class DashboardService:
    """Read-only views assembled for the student and teacher dashboards."""
    def __init__(self, session: Session):
        self.session = session
        self.students = repositories.StudentRepository(session)
        self.sessions = repositories.GameSessionRepository(session)
        self.progress = repositories.ProgressRepository(session)
        self.streaks = repositories.StreakRepository(session)
        self.games = repositories.GameRepository(session)
        self.assignments = repositories.AssignmentRepository(session)
        self.attempts = repositories.QuizAttemptRepository(session)
        self.ranking = RankingEngine(session)

    def _student(self, student_id: int) -> models.Student:
        student = self.students.get(student_id)
        if not student:
            raise NotFoundError("student not found")
        return student

    def student_dashboard(self, student_id: int) -> dict:
        student = self._student(student_id)
        stats = self.sessions.completed_stats(student_id)
        streak = self.streaks.get(student_id)
        created = as_utc(student.created_at)
        return {
            'user': {**student_profile(student), 'member_since': f"{created.strftime('%B')} {created.day}, {created.year}"},
            'stats': {
                'total_games_played': stats['total_games_played'],
                'total_score': stats['total_score'],
                'average_score': round_half_up(stats['average_score']),
                'highest_score': stats['highest_score'],
                'unique_games_played': stats['unique_games_played'],
                'total_time_played': round_half_up(stats['total_time_played'] / 60),
                'leaderboard_rank': self.ranking.global_rank(student_id),
                'accuracy': round_half_up(stats['average_score']),
            },
            'streaks': {
                'current': streak.current_streak if streak else 0,
                'longest': streak.longest_streak if streak else 0,
            },
            'subject_progress': self.progress.subject_summary(student_id),
            'recent_games': [self._game_row(gs, g) for gs, g in self.sessions.recent_for_student(student_id, 5)],
            'available_games': [g.model_dump() for g in self.games.list_all()],
            'pending_assignments': self.assignments.count_pending_for_student(student_id, student.grade),
            'pending_quizzes': self.attempts.count_pending_for_student(student_id, student.grade),
        }

    def teacher_students(self) -> List[dict]:
        out = []
        for student in self.students.list_all():
            stats = self.sessions.completed_stats(student.id)
            out.append({
                'id': student.id,
                'full_name': student.full_name,
                'email': student.email,
                'grade': student.grade,
                'profile_picture': student.profile_picture,
                'school': student.school,
                'total_games_played': stats['total_games_played'],
                'total_score': stats['total_score'],
                'average_score': stats['average_score'],
            })
        return out

    def student_detail(self, student_id: int) -> dict:
        student = self._student(student_id)
        return {
            'student': student_profile(student),
            'progress': [
                {
                    'subject': p.subject,
                    'topic': p.topic,
                    'completion_percentage': p.completion_percentage,
                    'games_played': p.games_played,
                    'total_score': p.total_score,
                    'average_score': p.average_score,
                    'last_played': as_utc(p.last_played).isoformat() if p.last_played else None,
                }
                for p in self.progress.list_for_student(student_id)
            ],
            'recent_games': [self._game_row(gs, g) for gs, g in self.sessions.recent_for_student(student_id, 10)],
        }

    def recent_activity(self, limit: int = 10, now: Optional[datetime] = None) -> List[dict]:
        out = []
        for gs, student, game in self.sessions.recent_completed(limit):
            out.append({
                'student_name': student.full_name,
                'profile_picture': student.profile_picture,
                'activity': f"Completed {game.name} ({game.subject} - {game.topic})",
                'score': f"{gs.score}%",
                'time': time_ago(gs.played_at, now),
                'played_at': as_utc(gs.played_at).isoformat(),
            })
        return out

    @staticmethod
    def _game_row(gs: models.GameSession, game: models.Game) -> dict:
        return {
            'name': game.name,
            'subject': game.subject,
            'topic': game.topic,
            'difficulty': game.difficulty,
            'score': gs.score,
            'time_taken': gs.time_taken,
            'played_at': as_utc(gs.played_at).isoformat(),
        }
