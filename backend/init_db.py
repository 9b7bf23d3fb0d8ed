# init_db.py
import logging

from backend import auth
import backend.crud as crud
from backend.config import get_settings
from backend.db import Base, SessionLocal, engine
from backend.logging_setup import setup_logging
from backend.models import ADMIN_ROLE, ROLES, USER_ROLE


logger = logging.getLogger(__name__)


def seed_admin(db, email: str, password: str) -> None:
    """Cria (ou promove) o administrador configurado no ambiente."""
    user = crud.get_user_by_email(db, email)
    if user is None:
        user = crud.create_user(
            db,
            email=email,
            password_hash=auth.hash_password(password),
            first_name="System",
            last_name="Administrator",
        )
        logger.info("Created administrator %s", email)

    crud.add_user_to_role(db, user, USER_ROLE)
    crud.add_user_to_role(db, user, ADMIN_ROLE)


def init_db() -> None:
    settings = get_settings()
    Base.metadata.create_all(bind=engine)

    db = SessionLocal()
    try:
        for role in crud.ensure_roles_exist(db, ROLES):
            logger.info("Created role: %s", role)
        if settings.admin_email and settings.admin_password:
            seed_admin(db, settings.admin_email, settings.admin_password)
    finally:
        db.close()


if __name__ == "__main__":
    setup_logging(get_settings().log_level)
    logger.info("Criando tabelas...")
    init_db()
    logger.info("Pronto.")
