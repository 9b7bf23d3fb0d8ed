"""
Provedor de autenticacao: hash de senha, verificacao de credenciais com
bloqueio por tentativas e sessoes assinadas (JWT) registradas no banco.
"""
import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional

from jose import JWTError, jwt
from sqlalchemy.orm import Session
from werkzeug.security import check_password_hash, generate_password_hash

import backend.crud as crud
from backend.config import Settings, get_settings
from backend.models import User, UserSession, utcnow


logger = logging.getLogger(__name__)


@dataclass
class SignInResult:
    succeeded: bool
    user: Optional[User] = None
    is_locked_out: bool = False


@dataclass
class IssuedSession:
    token: str
    csrf_token: str
    expires_at: datetime


@dataclass
class SessionClaims:
    user_id: str
    jti: str
    csrf_token: str


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    return check_password_hash(password_hash, password)


def verify_credentials(
    db: Session,
    email: str,
    password: str,
    settings: Optional[Settings] = None,
) -> SignInResult:
    settings = settings or get_settings()
    user = crud.get_user_by_email(db, email)
    if not user:
        return SignInResult(succeeded=False)

    now = utcnow()
    if user.is_locked_out(now):
        return SignInResult(succeeded=False, user=user, is_locked_out=True)

    if not verify_password(password, user.password_hash):
        user.failed_login_count += 1
        locked = user.failed_login_count >= settings.max_failed_logins
        if locked:
            user.lockout_end = now + timedelta(minutes=settings.lockout_minutes)
            user.failed_login_count = 0
        db.commit()
        return SignInResult(succeeded=False, user=user, is_locked_out=locked)

    if user.failed_login_count or user.lockout_end:
        user.failed_login_count = 0
        user.lockout_end = None
        db.commit()

    return SignInResult(succeeded=True, user=user)


def issue_session(db: Session, user: User, settings: Optional[Settings] = None) -> IssuedSession:
    settings = settings or get_settings()
    jti = str(uuid.uuid4())
    csrf_token = secrets.token_urlsafe(32)
    expires_at = utcnow() + timedelta(minutes=settings.access_token_expire_minutes)

    token = jwt.encode(
        {"sub": user.id, "jti": jti, "csrf": csrf_token, "exp": expires_at},
        settings.secret_key,
        algorithm=settings.algorithm,
    )

    db.add(UserSession(jti=jti, user_id=user.id, created_at=utcnow(), expires_at=expires_at))
    db.commit()
    return IssuedSession(token=token, csrf_token=csrf_token, expires_at=expires_at)


def decode_session(
    token: str,
    settings: Optional[Settings] = None,
    verify_exp: bool = True,
) -> Optional[SessionClaims]:
    settings = settings or get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.algorithm],
            options={"verify_exp": verify_exp},
        )
    except JWTError:
        return None

    user_id = payload.get("sub")
    jti = payload.get("jti")
    if not user_id or not jti:
        return None
    return SessionClaims(user_id=user_id, jti=jti, csrf_token=payload.get("csrf", ""))


def resolve_session(db: Session, token: str, settings: Optional[Settings] = None) -> Optional[User]:
    claims = decode_session(token, settings)
    if claims is None:
        return None

    session = db.get(UserSession, claims.jti)
    if session is None or session.user_id != claims.user_id or session.expires_at <= utcnow():
        return None
    return session.user


def destroy_session(db: Session, token: Optional[str], settings: Optional[Settings] = None) -> None:
    if not token:
        return
    claims = decode_session(token, settings, verify_exp=False)
    if claims is None:
        return

    deleted = db.query(UserSession).filter(UserSession.jti == claims.jti).delete()
    db.commit()
    if deleted:
        logger.info("Session %s of user %s destroyed", claims.jti, claims.user_id)
