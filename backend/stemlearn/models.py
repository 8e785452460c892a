"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Accounts and the game/quiz/assignment catalog come first, followed by
the activity records (game sessions, quiz attempts and answers) and the
per-student aggregates derived from them (progress, streak, leaderboard).
"""

from typing import Optional
from sqlalchemy import UniqueConstraint
from sqlmodel import SQLModel, Field, Relationship
from datetime import datetime, date, timezone
from typing import List


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Student(SQLModel, table=True):
    """A registered student account.

    Fields:
    - `email`: unique login name
    - `password_hash`: hashed password string (never store plaintext)
    - `grade`: class grade used to scope visible quizzes and assignments
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    grade: str = Field(index=True)
    profile_picture: Optional[str] = None
    school: str = "Odisha Public School"
    created_at: datetime = Field(default_factory=_utcnow)


class Teacher(SQLModel, table=True):
    """A registered teacher account, identified at login by `teacher_code`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    full_name: str
    teacher_code: str = Field(index=True, nullable=False, unique=True)
    email: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    subject: str
    profile_picture: Optional[str] = None
    school: str = "Odisha Public School"
    phone: str = ""
    created_at: datetime = Field(default_factory=_utcnow)


class Game(SQLModel, table=True):
    """A mini-game in the catalog. `max_score` must be positive."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    subject: str = Field(index=True)
    topic: str
    difficulty: str
    max_score: int = 100
    description: Optional[str] = None
    game_url: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class GameSession(SQLModel, table=True):
    """One play of a game. Append-only; `score` is already normalized."""
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='student.id', index=True)
    game_id: int = Field(foreign_key='game.id', index=True)
    score: int
    time_taken: int = 0
    completed: bool = False
    played_at: datetime = Field(default_factory=_utcnow)


class Progress(SQLModel, table=True):
    """Rolling per student/subject/topic progress."""
    __table_args__ = (UniqueConstraint('student_id', 'subject', 'topic'),)
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='student.id', index=True)
    subject: str
    topic: str
    completion_percentage: int = 0
    games_played: int = 0
    total_score: int = 0
    average_score: int = 0
    last_played: Optional[datetime] = None


class Streak(SQLModel, table=True):
    """Consecutive-day activity streak, one row per student."""
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='student.id', unique=True)
    current_streak: int = 0
    longest_streak: int = 0
    last_activity_date: Optional[date] = None


class LeaderboardEntry(SQLModel, table=True):
    """Denormalized per-student summary, replaced on every refresh."""
    student_id: int = Field(foreign_key='student.id', primary_key=True)
    full_name: str
    grade: str
    profile_picture: Optional[str] = None
    total_score: int = Field(default=0, index=True)
    games_played: int = 0
    average_score: float = 0.0
    last_updated: datetime = Field(default_factory=_utcnow)


class Assignment(SQLModel, table=True):
    """Homework posted by a teacher for a class grade."""
    id: Optional[int] = Field(default=None, primary_key=True)
    teacher_id: int = Field(foreign_key='teacher.id', index=True)
    title: str
    subject: str
    topic: str = ""
    description: str = ""
    due_date: date
    class_grade: str = Field(index=True)
    attachment: Optional[str] = None
    status: str = "active"
    created_at: datetime = Field(default_factory=_utcnow)


class StudentAssignment(SQLModel, table=True):
    """A student's submission for an assignment (one per pair)."""
    __table_args__ = (UniqueConstraint('student_id', 'assignment_id'),)
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='student.id', index=True)
    assignment_id: int = Field(foreign_key='assignment.id', index=True)
    submitted: bool = False
    submission_date: Optional[datetime] = None
    attachment: Optional[str] = None
    grade: Optional[int] = None
    feedback: Optional[str] = None
    created_at: datetime = Field(default_factory=_utcnow)


class Quiz(SQLModel, table=True):
    """A teacher-authored multiple-choice quiz."""
    id: Optional[int] = Field(default=None, primary_key=True)
    teacher_id: int = Field(foreign_key='teacher.id', index=True)
    title: str
    subject: str
    description: str = ""
    duration: int = 30
    class_grade: str = Field(index=True)
    total_questions: int = 10
    max_score: int = 100
    status: str = "active"
    created_at: datetime = Field(default_factory=_utcnow)
    questions: List['QuizQuestion'] = Relationship(back_populates='quiz')


class QuizQuestion(SQLModel, table=True):
    """A question with four options; `correct_answer` is one of A-D."""
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key='quiz.id', index=True)
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: str
    points: int = 10
    quiz: Optional[Quiz] = Relationship(back_populates='questions')


class QuizAttempt(SQLModel, table=True):
    """A student's attempt at a quiz.

    `completed_at` is the only terminal marker: once set, the attempt can
    neither be restarted nor resubmitted.
    """
    __table_args__ = (UniqueConstraint('student_id', 'quiz_id'),)
    id: Optional[int] = Field(default=None, primary_key=True)
    student_id: int = Field(foreign_key='student.id', index=True)
    quiz_id: int = Field(foreign_key='quiz.id', index=True)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    time_taken: Optional[int] = None
    score: int = 0
    total_questions: int = 0
    correct_answers: int = 0
    created_at: datetime = Field(default_factory=_utcnow)
    answers: List['QuizAnswer'] = Relationship(back_populates='attempt')


class QuizAnswer(SQLModel, table=True):
    """A graded answer inside a `QuizAttempt`. Append-only, one per question."""
    __table_args__ = (UniqueConstraint('attempt_id', 'question_id'),)
    id: Optional[int] = Field(default=None, primary_key=True)
    attempt_id: int = Field(foreign_key='quizattempt.id', index=True)
    question_id: int = Field(foreign_key='quizquestion.id')
    selected_answer: Optional[str] = None
    is_correct: bool = False
    attempt: Optional[QuizAttempt] = Relationship(back_populates='answers')


class Notification(SQLModel, table=True):
    """An inbox message for a student or a teacher.

    `recipient_kind` is either `student` or `teacher`; `related_id` points
    at the assignment or quiz the message is about.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    recipient_id: int = Field(index=True)
    recipient_kind: str = "student"
    title: str
    message: str
    type: str
    related_id: Optional[int] = None
    is_read: bool = False
    created_at: datetime = Field(default_factory=_utcnow)
