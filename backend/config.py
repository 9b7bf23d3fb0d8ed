# config.py
"""Settings loaded from environment variables (+ optional .env)."""
import os
from dataclasses import dataclass
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv

# Carrega .env em ambiente local; variaveis reais do ambiente tem prioridade.
load_dotenv(override=False)


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_optional(name: str) -> Optional[str]:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip()


@dataclass(frozen=True)
class Settings:
    database_url: str = "sqlite:///./todo.db"
    redis_url: Optional[str] = None

    secret_key: str = "change-this"
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 60
    session_cookie_name: str = "session"

    active_user_days: int = 30
    max_failed_logins: int = 5
    lockout_minutes: int = 5
    min_password_length: int = 6

    cache_ttl_seconds: int = 60

    admin_email: Optional[str] = None
    admin_password: Optional[str] = None

    log_level: str = "INFO"
    log_dir: Optional[str] = None


def load_settings() -> Settings:
    return Settings(
        database_url=os.getenv("DATABASE_URL", "sqlite:///./todo.db"),
        redis_url=_env_optional("REDIS_URL"),
        secret_key=os.getenv("SECRET_KEY", "change-this"),
        algorithm=os.getenv("ALGORITHM", "HS256"),
        access_token_expire_minutes=_env_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60),
        session_cookie_name=os.getenv("SESSION_COOKIE_NAME", "session"),
        active_user_days=_env_int("ACTIVE_USER_DAYS", 30),
        max_failed_logins=_env_int("MAX_FAILED_LOGINS", 5),
        lockout_minutes=_env_int("LOCKOUT_MINUTES", 5),
        min_password_length=_env_int("MIN_PASSWORD_LENGTH", 6),
        cache_ttl_seconds=_env_int("CACHE_TTL_SECONDS", 60),
        admin_email=_env_optional("ADMIN_EMAIL"),
        admin_password=_env_optional("ADMIN_PASSWORD"),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        log_dir=_env_optional("LOG_DIR"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Settings unicos da aplicacao (lidos uma vez)."""
    return load_settings()
