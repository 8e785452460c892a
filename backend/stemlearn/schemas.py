"""Pydantic request/response schemas used by the API.

Schemas keep API input/output shapes stable and provide validation for
controller handlers and tests.
"""

from datetime import date
from pydantic import BaseModel, Field
from typing import List, Optional


class StudentRegisterIn(BaseModel):
    """Payload for student registration."""
    full_name: str
    email: str
    password: str
    grade: str
    school: Optional[str] = None
    profile_picture: Optional[str] = None


class StudentLoginIn(BaseModel):
    email: str
    password: str


class TeacherRegisterIn(BaseModel):
    """Payload for teacher registration."""
    full_name: str
    teacher_code: str
    email: str
    password: str
    subject: str
    phone: Optional[str] = None
    school: Optional[str] = None
    profile_picture: Optional[str] = None


class TeacherLoginIn(BaseModel):
    teacher_code: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token and the profile."""
    access_token: str
    user: dict


class GameResultIn(BaseModel):
    """A finished (or abandoned) game play reported by the client."""
    game_name: str
    score: float = Field(allow_inf_nan=False)
    time_taken: int = 0
    completed: bool = True


class QuizQuestionIn(BaseModel):
    """One question of a quiz being created; `correct_answer` is A-D."""
    question_text: str
    option_a: str
    option_b: str
    option_c: str
    option_d: str
    correct_answer: str
    points: int = Field(default=10, ge=0)


class QuizCreateIn(BaseModel):
    title: str
    subject: str
    class_grade: str
    description: str = ""
    duration: int = 30
    questions: List[QuizQuestionIn]


class QuizStartIn(BaseModel):
    quiz_id: int


class QuizAnswerIn(BaseModel):
    """Single submitted answer; `selected_answer` is an option letter."""
    question_id: int
    selected_answer: Optional[str] = None


class QuizSubmission(BaseModel):
    """Request model for grading an attempt."""
    quiz_id: int
    attempt_id: int
    answers: List[QuizAnswerIn]


class AssignmentCreateIn(BaseModel):
    title: str
    subject: str
    due_date: date
    class_grade: str
    topic: str = ""
    description: str = ""
    attachment: Optional[str] = None


class AssignmentSubmitIn(BaseModel):
    assignment_id: int
    attachment: Optional[str] = None
