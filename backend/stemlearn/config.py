"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    DATABASE_URL: str
    LOG_LEVEL: str
    DEFAULT_SCHOOL: str
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    DEFER_SIDE_EFFECTS: bool
    GAME_LEADERBOARD_LIMIT: int

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'stem_learn.db'}")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.DEFAULT_SCHOOL = os.getenv("DEFAULT_SCHOOL", "Odisha Public School")
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        # progress/streak/leaderboard updates run after the response is sent
        self.DEFER_SIDE_EFFECTS = os.getenv("DEFER_SIDE_EFFECTS", "true").lower() == "true"
        self.GAME_LEADERBOARD_LIMIT = int(os.getenv("GAME_LEADERBOARD_LIMIT", "10"))
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.GAME_LEADERBOARD_LIMIT <= 0:
            raise RuntimeError("GAME_LEADERBOARD_LIMIT must be positive")


settings = Settings()
