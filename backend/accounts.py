"""
Fluxo de contas: login, cadastro, perfil e logout sobre o provedor de
autenticacao e o repositorio de usuarios.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import backend.crud as crud
from backend import auth
from backend.config import Settings, get_settings
from backend.models import ROLES, USER_ROLE, User
from backend.results import ErrorKind, ServiceResult
from backend.schemas import ChangePasswordIn, ProfileIn, RegisterIn


logger = logging.getLogger(__name__)

INVALID_LOGIN_MESSAGE = "Invalid email or password."
LOCKED_OUT_MESSAGE = "Account is locked out. Please try again later."


@dataclass
class SignedIn:
    user: User
    session: auth.IssuedSession


def ensure_roles_exist(db: Session) -> None:
    for role in crud.ensure_roles_exist(db, ROLES):
        logger.info("Created role: %s", role)


def login(db: Session, email: str, password: str, settings: Optional[Settings] = None) -> ServiceResult:
    try:
        result = auth.verify_credentials(db, email, password, settings)

        if result.succeeded:
            logger.info("User %s logged in successfully", email)
            crud.update_last_login(db, result.user.id)
            session = auth.issue_session(db, result.user, settings)
            return ServiceResult.ok(SignedIn(user=result.user, session=session))

        if result.is_locked_out:
            logger.warning("User %s account locked out", email)
            return ServiceResult.fail(ErrorKind.ACCESS_DENIED, LOCKED_OUT_MESSAGE)

        logger.warning("Failed login attempt for %s", email)
        return ServiceResult.fail(ErrorKind.VALIDATION, INVALID_LOGIN_MESSAGE)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error during login for %s", email)
        return ServiceResult.fail(
            ErrorKind.UNEXPECTED,
            "An error occurred during login. Please try again.",
        )


def _password_errors(password: str, settings: Settings) -> list:
    errors = []
    if len(password) < settings.min_password_length:
        errors.append(f"Passwords must be at least {settings.min_password_length} characters.")
    return errors


def register(db: Session, data: RegisterIn, settings: Optional[Settings] = None) -> ServiceResult:
    """
    Cria a conta com o papel User e ja abre a sessao (sem novo login).
    """
    settings = settings or get_settings()
    email = crud.normalize_email(str(data.email))

    errors = []
    if data.password != data.confirm_password:
        errors.append("The password and confirmation password do not match.")
    errors.extend(_password_errors(data.password, settings))

    try:
        if crud.email_exists(db, email):
            errors.append(f"Email '{email}' is already taken.")

        if errors:
            return ServiceResult.fail(ErrorKind.VALIDATION, errors[0], errors)

        user = crud.create_user(
            db,
            email=email,
            password_hash=auth.hash_password(data.password),
            first_name=data.first_name,
            last_name=data.last_name,
        )
        logger.info("User %s created successfully", email)

        ensure_roles_exist(db)
        crud.add_user_to_role(db, user, USER_ROLE)

        session = auth.issue_session(db, user, settings)
        logger.info("User %s signed in after registration", email)
        return ServiceResult.ok(SignedIn(user=user, session=session))
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error during registration for %s", email)
        return ServiceResult.fail(
            ErrorKind.UNEXPECTED,
            "An error occurred during registration. Please try again.",
        )


def logout(db: Session, token: Optional[str]) -> None:
    try:
        auth.destroy_session(db, token)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error while destroying session")
    logger.info("User logged out")


def update_profile(db: Session, user: User, data: ProfileIn) -> ServiceResult:
    email = crud.normalize_email(str(data.email))

    try:
        if email != user.email and crud.email_exists(db, email):
            return ServiceResult.fail(ErrorKind.VALIDATION, f"Email '{email}' is already taken.")

        user.first_name = data.first_name
        user.last_name = data.last_name
        user.email = email
        user.username = email
        updated = crud.update_user(db, user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error updating profile for user %s", user.id)
        return ServiceResult.fail(
            ErrorKind.UNEXPECTED,
            "An error occurred while updating your profile.",
        )

    logger.info("Profile of user %s updated", user.id)
    return ServiceResult.ok(updated)


def change_password(
    db: Session,
    user: User,
    data: ChangePasswordIn,
    settings: Optional[Settings] = None,
) -> ServiceResult:
    settings = settings or get_settings()

    if not auth.verify_password(data.current_password, user.password_hash):
        return ServiceResult.fail(ErrorKind.VALIDATION, "Incorrect password.")

    errors = _password_errors(data.new_password, settings)
    if errors:
        return ServiceResult.fail(ErrorKind.VALIDATION, errors[0], errors)

    try:
        user.password_hash = auth.hash_password(data.new_password)
        crud.update_user(db, user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error changing password for user %s", user.id)
        return ServiceResult.fail(
            ErrorKind.UNEXPECTED,
            "An error occurred while changing your password.",
        )

    logger.info("Password of user %s changed", user.id)
    return ServiceResult.ok(user)
