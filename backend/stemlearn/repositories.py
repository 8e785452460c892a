"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (accounts,
games, sessions, progress, streaks, leaderboard, quizzes, assignments,
notifications). Repositories return SQLModel objects and perform
commits/refreshes where appropriate; the quiz repository also exposes
non-committing helpers so a caller can group writes into one transaction.
"""

from datetime import date
from typing import List, Optional, Sequence
from sqlmodel import Session, select
from sqlalchemy import func
from . import models


class StudentRepository:
    """CRUD operations for `Student` accounts."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, student: models.Student) -> models.Student:
        """Persist a new student and return the managed instance."""
        self.session.add(student)
        self.session.commit()
        self.session.refresh(student)
        return student

    def get(self, student_id: int) -> Optional[models.Student]:
        return self.session.get(models.Student, student_id)

    def get_by_email(self, email: str) -> Optional[models.Student]:
        """Return a `Student` by email or `None` if not found."""
        stmt = select(models.Student).where(models.Student.email == email)
        return self.session.exec(stmt).first()

    def list_ids_for_grade(self, grade: str) -> List[int]:
        stmt = select(models.Student.id).where(models.Student.grade == grade)
        return list(self.session.exec(stmt).all())

    def list_all(self) -> List[models.Student]:
        stmt = select(models.Student).order_by(models.Student.full_name)
        return self.session.exec(stmt).all()


class TeacherRepository:
    """CRUD operations for `Teacher` accounts."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, teacher: models.Teacher) -> models.Teacher:
        self.session.add(teacher)
        self.session.commit()
        self.session.refresh(teacher)
        return teacher

    def get(self, teacher_id: int) -> Optional[models.Teacher]:
        return self.session.get(models.Teacher, teacher_id)

    def get_by_code(self, teacher_code: str) -> Optional[models.Teacher]:
        stmt = select(models.Teacher).where(models.Teacher.teacher_code == teacher_code)
        return self.session.exec(stmt).first()

    def exists_by_code_or_email(self, teacher_code: str, email: str) -> bool:
        """Return True if either the teacher code or the email is taken."""
        stmt = select(models.Teacher.id).where(
            (models.Teacher.teacher_code == teacher_code) | (models.Teacher.email == email)
        )
        return self.session.exec(stmt).first() is not None


class GameRepository:
    """Read access to the game catalog."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, game: models.Game) -> models.Game:
        self.session.add(game)
        self.session.commit()
        self.session.refresh(game)
        return game

    def get(self, game_id: int) -> Optional[models.Game]:
        return self.session.get(models.Game, game_id)

    def get_by_name(self, name: str) -> Optional[models.Game]:
        stmt = select(models.Game).where(models.Game.name == name)
        return self.session.exec(stmt).first()

    def list_all(self, subject: Optional[str] = None) -> List[models.Game]:
        """Return games ordered by subject then difficulty, optionally filtered."""
        stmt = select(models.Game)
        if subject is not None:
            stmt = stmt.where(models.Game.subject == subject)
        stmt = stmt.order_by(models.Game.subject, models.Game.difficulty)
        return self.session.exec(stmt).all()

    def count(self) -> int:
        return self.session.exec(select(func.count(models.Game.id))).one()


class GameSessionRepository:
    """Append-only store of game plays plus the aggregates read from it."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, game_session: models.GameSession) -> models.GameSession:
        self.session.add(game_session)
        self.session.commit()
        self.session.refresh(game_session)
        return game_session

    def completed_totals(self, student_id: int):
        """Return `(sum, count, avg)` of completed session scores for a student."""
        stmt = select(
            func.coalesce(func.sum(models.GameSession.score), 0),
            func.count(models.GameSession.id),
            func.coalesce(func.avg(models.GameSession.score), 0),
        ).where(
            models.GameSession.student_id == student_id,
            models.GameSession.completed == True,  # noqa: E712
        )
        total, count, avg = self.session.exec(stmt).one()
        return int(total or 0), int(count or 0), float(avg or 0)

    def completed_stats(self, student_id: int) -> dict:
        """Dashboard figures over the student's completed sessions."""
        stmt = select(
            func.count(models.GameSession.id),
            func.coalesce(func.sum(models.GameSession.score), 0),
            func.coalesce(func.avg(models.GameSession.score), 0),
            func.coalesce(func.max(models.GameSession.score), 0),
            func.count(func.distinct(models.GameSession.game_id)),
            func.coalesce(func.sum(models.GameSession.time_taken), 0),
        ).where(
            models.GameSession.student_id == student_id,
            models.GameSession.completed == True,  # noqa: E712
        )
        played, total, avg, highest, unique_games, seconds = self.session.exec(stmt).one()
        return {
            'total_games_played': int(played or 0),
            'total_score': int(total or 0),
            'average_score': float(avg or 0),
            'highest_score': int(highest or 0),
            'unique_games_played': int(unique_games or 0),
            'total_time_played': int(seconds or 0),
        }

    def completed_for_game(self, game_id: int) -> List[models.GameSession]:
        """All completed sessions of a game in play order."""
        stmt = select(models.GameSession).where(
            models.GameSession.game_id == game_id,
            models.GameSession.completed == True,  # noqa: E712
        ).order_by(models.GameSession.played_at, models.GameSession.id)
        return self.session.exec(stmt).all()

    def recent_for_student(self, student_id: int, limit: int):
        """Most recent sessions of a student joined with their game."""
        stmt = select(models.GameSession, models.Game).join(
            models.Game, models.Game.id == models.GameSession.game_id
        ).where(models.GameSession.student_id == student_id).order_by(
            models.GameSession.played_at.desc(), models.GameSession.id.desc()
        ).limit(limit)
        return self.session.exec(stmt).all()

    def recent_completed(self, limit: int):
        """Most recent completed sessions across students with student and game."""
        stmt = select(models.GameSession, models.Student, models.Game).join(
            models.Student, models.Student.id == models.GameSession.student_id
        ).join(
            models.Game, models.Game.id == models.GameSession.game_id
        ).where(models.GameSession.completed == True).order_by(  # noqa: E712
            models.GameSession.played_at.desc(), models.GameSession.id.desc()
        ).limit(limit)
        return self.session.exec(stmt).all()


class ProgressRepository:
    """Keyed progress rows with get-or-default reads."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, student_id: int, subject: str, topic: str) -> Optional[models.Progress]:
        stmt = select(models.Progress).where(
            models.Progress.student_id == student_id,
            models.Progress.subject == subject,
            models.Progress.topic == topic,
        )
        return self.session.exec(stmt).first()

    def get_or_default(self, student_id: int, subject: str, topic: str) -> models.Progress:
        """Return the stored row, or a new zeroed row that is not yet persisted."""
        existing = self.get(student_id, subject, topic)
        if existing:
            return existing
        return models.Progress(student_id=student_id, subject=subject, topic=topic)

    def save(self, progress: models.Progress) -> models.Progress:
        self.session.add(progress)
        self.session.commit()
        self.session.refresh(progress)
        return progress

    def seed(self, student_id: int, topics: Sequence[tuple]) -> int:
        """Insert zeroed rows for `(subject, topic)` pairs that do not exist yet."""
        created = 0
        for subject, topic in topics:
            if self.get(student_id, subject, topic) is None:
                self.session.add(models.Progress(student_id=student_id, subject=subject, topic=topic))
                created += 1
        self.session.commit()
        return created

    def list_for_student(self, student_id: int) -> List[models.Progress]:
        stmt = select(models.Progress).where(models.Progress.student_id == student_id).order_by(
            models.Progress.subject, models.Progress.topic
        )
        return self.session.exec(stmt).all()

    def subject_summary(self, student_id: int) -> List[dict]:
        """Per-subject aggregates of the student's progress rows."""
        stmt = select(
            models.Progress.subject,
            func.avg(models.Progress.completion_percentage),
            func.sum(models.Progress.games_played),
            func.avg(models.Progress.average_score),
            func.sum(models.Progress.total_score),
        ).where(models.Progress.student_id == student_id).group_by(models.Progress.subject)
        out = []
        for subject, completion, played, avg_score, total in self.session.exec(stmt).all():
            out.append({
                'subject': subject,
                'overall_progress': float(completion or 0),
                'games_played': int(played or 0),
                'avg_score': float(avg_score or 0),
                'total_score': int(total or 0),
            })
        return out


class StreakRepository:
    """One streak row per student."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, student_id: int) -> Optional[models.Streak]:
        stmt = select(models.Streak).where(models.Streak.student_id == student_id)
        return self.session.exec(stmt).first()

    def get_or_default(self, student_id: int) -> models.Streak:
        existing = self.get(student_id)
        if existing:
            return existing
        return models.Streak(student_id=student_id)

    def save(self, streak: models.Streak) -> models.Streak:
        self.session.add(streak)
        self.session.commit()
        self.session.refresh(streak)
        return streak


class LeaderboardRepository:
    """Replace-on-write leaderboard rows and the global rank query."""
    def __init__(self, session: Session):
        self.session = session

    def get(self, student_id: int) -> Optional[models.LeaderboardEntry]:
        return self.session.get(models.LeaderboardEntry, student_id)

    def replace(self, entry: models.LeaderboardEntry) -> models.LeaderboardEntry:
        """Store `entry` as the student's only row, overwriting any previous one."""
        merged = self.session.merge(entry)
        self.session.commit()
        self.session.refresh(merged)
        return merged

    def count_above(self, total_score: int) -> int:
        stmt = select(func.count(models.LeaderboardEntry.student_id)).where(
            models.LeaderboardEntry.total_score > total_score
        )
        return self.session.exec(stmt).one()

    def list_top(self, limit: int) -> List[models.LeaderboardEntry]:
        stmt = select(models.LeaderboardEntry).order_by(
            models.LeaderboardEntry.total_score.desc(), models.LeaderboardEntry.student_id
        ).limit(limit)
        return self.session.exec(stmt).all()


class QuizRepository:
    """Quizzes, their questions and per-teacher summaries."""
    def __init__(self, session: Session):
        self.session = session

    def add_with_questions(self, quiz: models.Quiz, questions: List[models.QuizQuestion]) -> models.Quiz:
        """Stage a quiz and its questions without committing.

        The quiz is flushed to obtain its id; the caller commits or rolls
        back the whole unit.
        """
        self.session.add(quiz)
        self.session.flush()
        for q in questions:
            q.quiz_id = quiz.id
            self.session.add(q)
        self.session.flush()
        return quiz

    def get(self, quiz_id: int) -> Optional[models.Quiz]:
        return self.session.get(models.Quiz, quiz_id)

    def questions(self, quiz_id: int) -> List[models.QuizQuestion]:
        stmt = select(models.QuizQuestion).where(models.QuizQuestion.quiz_id == quiz_id).order_by(
            models.QuizQuestion.id
        )
        return self.session.exec(stmt).all()

    def list_active_for_grade(self, grade: str) -> List[models.Quiz]:
        stmt = select(models.Quiz).where(
            models.Quiz.class_grade == grade, models.Quiz.status == 'active'
        ).order_by(models.Quiz.created_at.desc(), models.Quiz.id.desc())
        return self.session.exec(stmt).all()

    def list_for_teacher(self, teacher_id: int) -> List[models.Quiz]:
        stmt = select(models.Quiz).where(models.Quiz.teacher_id == teacher_id).order_by(
            models.Quiz.created_at.desc(), models.Quiz.id.desc()
        )
        return self.session.exec(stmt).all()


class QuizAttemptRepository:
    """Quiz attempts and their graded answers."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, attempt: models.QuizAttempt) -> models.QuizAttempt:
        self.session.add(attempt)
        self.session.commit()
        self.session.refresh(attempt)
        return attempt

    def get(self, attempt_id: int) -> Optional[models.QuizAttempt]:
        return self.session.get(models.QuizAttempt, attempt_id)

    def get_for(self, student_id: int, quiz_id: int) -> Optional[models.QuizAttempt]:
        stmt = select(models.QuizAttempt).where(
            models.QuizAttempt.student_id == student_id,
            models.QuizAttempt.quiz_id == quiz_id,
        )
        return self.session.exec(stmt).first()

    def answers(self, attempt_id: int) -> List[models.QuizAnswer]:
        stmt = select(models.QuizAnswer).where(models.QuizAnswer.attempt_id == attempt_id).order_by(
            models.QuizAnswer.id
        )
        return self.session.exec(stmt).all()

    def list_for_quiz(self, quiz_id: int) -> List[models.QuizAttempt]:
        stmt = select(models.QuizAttempt).where(models.QuizAttempt.quiz_id == quiz_id)
        return self.session.exec(stmt).all()

    def count_pending_for_student(self, student_id: int, grade: str) -> int:
        """Active quizzes for the grade without a completed attempt by the student."""
        completed = select(models.QuizAttempt.quiz_id).where(
            models.QuizAttempt.student_id == student_id,
            models.QuizAttempt.completed_at.is_not(None),
        )
        stmt = select(func.count(models.Quiz.id)).where(
            models.Quiz.class_grade == grade,
            models.Quiz.status == 'active',
            models.Quiz.id.not_in(completed),
        )
        return self.session.exec(stmt).one()


class AssignmentRepository:
    """Assignments and student submissions."""
    def __init__(self, session: Session):
        self.session = session

    def create(self, assignment: models.Assignment) -> models.Assignment:
        self.session.add(assignment)
        self.session.commit()
        self.session.refresh(assignment)
        return assignment

    def get(self, assignment_id: int) -> Optional[models.Assignment]:
        return self.session.get(models.Assignment, assignment_id)

    def list_active_for_grade(self, grade: str) -> List[models.Assignment]:
        stmt = select(models.Assignment).where(
            models.Assignment.class_grade == grade, models.Assignment.status == 'active'
        ).order_by(models.Assignment.due_date, models.Assignment.id)
        return self.session.exec(stmt).all()

    def list_for_teacher(self, teacher_id: int) -> List[models.Assignment]:
        stmt = select(models.Assignment).where(models.Assignment.teacher_id == teacher_id).order_by(
            models.Assignment.created_at.desc(), models.Assignment.id.desc()
        )
        return self.session.exec(stmt).all()

    def get_submission(self, student_id: int, assignment_id: int) -> Optional[models.StudentAssignment]:
        stmt = select(models.StudentAssignment).where(
            models.StudentAssignment.student_id == student_id,
            models.StudentAssignment.assignment_id == assignment_id,
        )
        return self.session.exec(stmt).first()

    def upsert_submission(self, submission: models.StudentAssignment) -> models.StudentAssignment:
        """Insert or overwrite the submission for a student/assignment pair."""
        existing = self.get_submission(submission.student_id, submission.assignment_id)
        if existing:
            existing.submitted = submission.submitted
            existing.submission_date = submission.submission_date
            existing.attachment = submission.attachment
            submission = existing
        self.session.add(submission)
        self.session.commit()
        self.session.refresh(submission)
        return submission

    def submissions(self, assignment_id: int, submitted_only: bool = False):
        """Submission rows joined with their student, newest first."""
        stmt = select(models.StudentAssignment, models.Student).join(
            models.Student, models.Student.id == models.StudentAssignment.student_id
        ).where(models.StudentAssignment.assignment_id == assignment_id)
        if submitted_only:
            stmt = stmt.where(models.StudentAssignment.submitted == True)  # noqa: E712
        stmt = stmt.order_by(models.StudentAssignment.submission_date.desc())
        return self.session.exec(stmt).all()

    def count_pending_for_student(self, student_id: int, grade: str) -> int:
        """Active assignments for the grade the student has not submitted."""
        submitted = select(models.StudentAssignment.assignment_id).where(
            models.StudentAssignment.student_id == student_id,
            models.StudentAssignment.submitted == True,  # noqa: E712
        )
        stmt = select(func.count(models.Assignment.id)).where(
            models.Assignment.class_grade == grade,
            models.Assignment.status == 'active',
            models.Assignment.id.not_in(submitted),
        )
        return self.session.exec(stmt).one()


class NotificationRepository:
    """Inbox rows for students and teachers."""
    def __init__(self, session: Session):
        self.session = session

    def add_many(self, notifications: List[models.Notification]) -> int:
        for n in notifications:
            self.session.add(n)
        self.session.commit()
        return len(notifications)

    def get(self, notification_id: int) -> Optional[models.Notification]:
        return self.session.get(models.Notification, notification_id)

    def latest_for(self, recipient_id: int, recipient_kind: str, limit: int = 20) -> List[models.Notification]:
        stmt = select(models.Notification).where(
            models.Notification.recipient_id == recipient_id,
            models.Notification.recipient_kind == recipient_kind,
        ).order_by(models.Notification.created_at.desc(), models.Notification.id.desc()).limit(limit)
        return self.session.exec(stmt).all()

    def mark_read(self, notification: models.Notification) -> models.Notification:
        notification.is_read = True
        self.session.add(notification)
        self.session.commit()
        self.session.refresh(notification)
        return notification
