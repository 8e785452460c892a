"""Authentication helpers and FastAPI security dependencies.

This module decodes JWT bearer tokens and provides the dependencies
`get_current_student` and `get_current_teacher`, which validate the
token, check the account kind and return the model instance from the
database.

Token verification raises HTTPExceptions on failure so the helpers can
be used directly inside route dependencies.
"""

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import get_session
from . import models, repositories

bearer_scheme = HTTPBearer()


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def _account_id(credentials: HTTPAuthorizationCredentials, kind: str) -> int:
    payload = decode_token(credentials.credentials)
    account_id = payload.get('account_id')
    if not account_id or payload.get('kind') != kind:
        raise HTTPException(status_code=401, detail='invalid token payload')
    return account_id


def get_current_student(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
                        db: Session = Depends(get_session)) -> models.Student:
    """FastAPI dependency that returns the authenticated student."""
    student = repositories.StudentRepository(db).get(_account_id(credentials, 'student'))
    if not student:
        raise HTTPException(status_code=401, detail='user not found')
    return student


def get_current_teacher(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
                        db: Session = Depends(get_session)) -> models.Teacher:
    """FastAPI dependency that returns the authenticated teacher."""
    teacher = repositories.TeacherRepository(db).get(_account_id(credentials, 'teacher'))
    if not teacher:
        raise HTTPException(status_code=401, detail='teacher not found')
    return teacher
