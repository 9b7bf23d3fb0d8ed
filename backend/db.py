# db.py
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import NullPool

from backend.config import get_settings

# Em producao use sempre DATABASE_URL.
# O fallback para SQLite fica apenas para desenvolvimento local mais simples.
DATABASE_URL = get_settings().database_url

is_sqlite = DATABASE_URL.startswith("sqlite")

# NullPool evita reter conexoes em ambiente serverless. pool_pre_ping detecta conexoes quebradas.
pool_args = {"pool_pre_ping": True}
connect_args = {"check_same_thread": False} if is_sqlite else {}
if not is_sqlite:
    pool_args["poolclass"] = NullPool

engine = create_engine(DATABASE_URL, connect_args=connect_args, **pool_args)

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

Base = declarative_base()


@event.listens_for(Engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    """SQLite so respeita ON DELETE CASCADE com foreign_keys ligado."""
    if type(dbapi_connection).__module__.startswith("sqlite3"):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def get_db():
    """Dependencia para pegar sessao (FastAPI)."""
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
