from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from backend.models import (
    ADMIN_ROLE,
    ROLES,
    Role,
    Task,
    TaskPriority,
    TaskStatus,
    User,
    utcnow,
)


def _newest_first(query):
    return query.order_by(Task.created_at.desc(), Task.id.desc())


# ---- Usuarios ----

def get_user(db: Session, user_id: str) -> Optional[User]:
    return db.get(User, user_id)


def normalize_email(email: str) -> str:
    """Email e o login: guardado e comparado sempre em minusculas."""
    return email.strip().lower()


def get_user_by_email(db: Session, email: str) -> Optional[User]:
    return db.query(User).filter(func.lower(User.email) == normalize_email(email)).first()


def user_exists(db: Session, user_id: str) -> bool:
    return db.query(User.id).filter(User.id == user_id).first() is not None


def email_exists(db: Session, email: str) -> bool:
    return db.query(User.id).filter(func.lower(User.email) == normalize_email(email)).first() is not None


def create_user(
    db: Session,
    email: str,
    password_hash: str,
    first_name: str,
    last_name: str,
) -> User:
    email = normalize_email(email)
    user = User(
        email=email,
        username=email,
        password_hash=password_hash,
        first_name=first_name,
        last_name=last_name,
        created_at=utcnow(),
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def update_user(db: Session, user: User) -> User:
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def update_last_login(db: Session, user_id: str) -> bool:
    user = get_user(db, user_id)
    if not user:
        return False
    user.last_login_at = utcnow()
    db.commit()
    return True


def delete_user(db: Session, user: User) -> None:
    db.delete(user)
    db.commit()


def list_users(db: Session) -> List[User]:
    return db.query(User).order_by(User.last_name, User.first_name).all()


def search_users(db: Session, term: Optional[str]) -> List[User]:
    if not term:
        return list_users(db)

    return (
        db.query(User)
        .filter(
            or_(
                User.first_name.icontains(term, autoescape=True),
                User.last_name.icontains(term, autoescape=True),
                User.email.icontains(term, autoescape=True),
            )
        )
        .order_by(User.last_name, User.first_name)
        .all()
    )


def recent_users(db: Session, limit: int = 5) -> List[User]:
    return db.query(User).order_by(User.created_at.desc()).limit(limit).all()


def count_users(db: Session) -> int:
    return db.query(func.count(User.id)).scalar()


def count_active_users(db: Session, days: int = 30, now: Optional[datetime] = None) -> int:
    cutoff = (now or utcnow()) - timedelta(days=days)
    return (
        db.query(func.count(User.id))
        .filter(User.last_login_at.isnot(None), User.last_login_at >= cutoff)
        .scalar()
    )


def get_users_in_role(db: Session, role_name: str) -> List[User]:
    return db.query(User).filter(User.roles.any(Role.name == role_name)).all()


def count_tasks_for_user(db: Session, user_id: str) -> int:
    return db.query(func.count(Task.id)).filter(Task.user_id == user_id).scalar()


# ---- Papeis ----

def get_role(db: Session, name: str) -> Optional[Role]:
    return db.query(Role).filter(Role.name == name).first()


def ensure_roles_exist(db: Session, names: Iterable[str] = ROLES) -> List[str]:
    """
    Cria os papeis que ainda nao existem. Retorna os nomes criados.
    """
    created = []
    for name in names:
        if get_role(db, name) is None:
            db.add(Role(name=name))
            created.append(name)
    if created:
        db.commit()
    return created


def add_user_to_role(db: Session, user: User, role_name: str) -> User:
    role = get_role(db, role_name)
    if role is None:
        raise ValueError(f"Role '{role_name}' does not exist.")
    if role not in user.roles:
        user.roles.append(role)
        db.commit()
        db.refresh(user)
    return user


def set_user_roles(db: Session, user: User, role_names: Iterable[str]) -> User:
    roles = db.query(Role).filter(Role.name.in_(list(role_names))).all()
    user.roles = roles
    db.commit()
    db.refresh(user)
    return user


def count_admins(db: Session) -> int:
    return len(get_users_in_role(db, ADMIN_ROLE))


# ---- Tarefas ----

def add_task(db: Session, task: Task) -> Task:
    db.add(task)
    db.commit()
    db.refresh(task)
    return task


def save_task(db: Session, task: Task) -> Task:
    db.commit()
    db.refresh(task)
    return task


def get_task(db: Session, task_id: int) -> Optional[Task]:
    return db.get(Task, task_id)


def get_task_for_user(db: Session, task_id: int, user_id: str) -> Optional[Task]:
    return (
        db.query(Task)
        .filter(Task.id == task_id, Task.user_id == user_id)
        .first()
    )


def task_exists(db: Session, task_id: int) -> bool:
    return db.query(Task.id).filter(Task.id == task_id).first() is not None


def task_exists_for_user(db: Session, task_id: int, user_id: str) -> bool:
    return get_task_for_user(db, task_id, user_id) is not None


def list_tasks(db: Session) -> List[Task]:
    return _newest_first(db.query(Task)).all()


def list_tasks_for_user(db: Session, user_id: str) -> List[Task]:
    return _newest_first(db.query(Task).filter(Task.user_id == user_id)).all()


def list_tasks_by_status(
    db: Session,
    status: TaskStatus,
    user_id: Optional[str] = None,
) -> List[Task]:
    query = db.query(Task).filter(Task.status == status)
    if user_id is not None:
        query = query.filter(Task.user_id == user_id)
    return _newest_first(query).all()


def list_tasks_by_priority(
    db: Session,
    priority: TaskPriority,
    user_id: Optional[str] = None,
) -> List[Task]:
    query = db.query(Task).filter(Task.priority == priority)
    if user_id is not None:
        query = query.filter(Task.user_id == user_id)
    return _newest_first(query).all()


def search_tasks(db: Session, term: Optional[str], user_id: Optional[str] = None) -> List[Task]:
    """
    Busca por substring no titulo ou na descricao (sem diferenciar maiusculas).
    user_id None busca em todas as tarefas.
    """
    query = db.query(Task)

    if user_id is not None:
        query = query.filter(Task.user_id == user_id)

    if term:
        query = query.filter(
            or_(
                Task.title.icontains(term, autoescape=True),
                Task.description.icontains(term, autoescape=True),
            )
        )

    return _newest_first(query).all()


def recent_tasks(db: Session, limit: int = 10) -> List[Task]:
    return _newest_first(db.query(Task)).limit(limit).all()


def delete_task(db: Session, task_id: int) -> bool:
    """
    Deleta uma tarefa pelo ID.
    Retorna True se deletou, False se nao encontrou.
    """
    task = get_task(db, task_id)
    if not task:
        return False

    db.delete(task)
    db.commit()
    return True


def delete_task_for_user(db: Session, task_id: int, user_id: str) -> bool:
    task = get_task_for_user(db, task_id, user_id)
    if not task:
        return False

    db.delete(task)
    db.commit()
    return True
