import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import backend.crud as crud
from backend import task_service
from backend.models import ADMIN_ROLE, ROLES, Task, TaskStatus, User, utcnow
from backend.results import ErrorKind, ServiceResult


logger = logging.getLogger(__name__)

RECENT_USERS_LIMIT = 5
RECENT_ACTIVITY_LIMIT = 10


@dataclass
class UserSummary:
    id: str
    first_name: str
    last_name: str
    email: str
    created_at: datetime
    last_login_at: Optional[datetime]
    roles: List[str]
    task_count: int
    is_locked_out: bool

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def last_login_display(self) -> str:
        if self.last_login_at is None:
            return "Never"
        return self.last_login_at.strftime("%b %d, %Y")


@dataclass
class TaskActivity:
    task_id: int
    task_title: str
    user_name: str
    action: str
    timestamp: datetime
    status: TaskStatus


@dataclass
class AdminDashboard:
    total_users: int
    active_users: int
    admin_users: int
    system_task_statistics: task_service.TaskStatistics
    recent_users: List[UserSummary] = field(default_factory=list)
    recent_task_activity: List[TaskActivity] = field(default_factory=list)


def summarize_user(db: Session, user: User, now: Optional[datetime] = None) -> UserSummary:
    return UserSummary(
        id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        created_at=user.created_at,
        last_login_at=user.last_login_at,
        roles=user.role_names,
        task_count=crud.count_tasks_for_user(db, user.id),
        is_locked_out=user.is_locked_out(now or utcnow()),
    )


def task_activity(task: Task) -> TaskActivity:
    if task.completed_at is not None:
        action, timestamp = "Completed", task.completed_at
    else:
        action, timestamp = "Created", task.created_at

    return TaskActivity(
        task_id=task.id,
        task_title=task.title,
        user_name=task.user.full_name if task.user else "",
        action=action,
        timestamp=timestamp,
        status=task.status,
    )


def build_dashboard(db: Session, active_days: int = 30) -> AdminDashboard:
    now = utcnow()
    return AdminDashboard(
        total_users=crud.count_users(db),
        active_users=crud.count_active_users(db, active_days, now=now),
        admin_users=crud.count_admins(db),
        system_task_statistics=task_service.get_system_statistics(db),
        recent_users=[summarize_user(db, u, now) for u in crud.recent_users(db, RECENT_USERS_LIMIT)],
        recent_task_activity=[task_activity(t) for t in crud.recent_tasks(db, RECENT_ACTIVITY_LIMIT)],
    )


def list_users(db: Session, term: Optional[str] = None) -> List[UserSummary]:
    now = utcnow()
    return [summarize_user(db, u, now) for u in crud.search_users(db, term)]


def get_user_detail(db: Session, user_id: str) -> Optional[tuple]:
    """Resumo do usuario e suas tarefas (mais novas primeiro)."""
    user = crud.get_user(db, user_id)
    if user is None:
        return None
    return summarize_user(db, user), crud.list_tasks_for_user(db, user_id)


def edit_user_roles(db: Session, user_id: str, roles: List[str], acting_user_id: str) -> ServiceResult:
    unknown = sorted(set(roles) - set(ROLES))
    if unknown:
        return ServiceResult.fail(ErrorKind.VALIDATION, f"Unknown roles: {', '.join(unknown)}")

    if user_id == acting_user_id and ADMIN_ROLE not in roles:
        return ServiceResult.fail(ErrorKind.VALIDATION, "You cannot remove your own Admin role.")

    user = crud.get_user(db, user_id)
    if user is None:
        return ServiceResult.fail(ErrorKind.NOT_FOUND, "User not found")

    try:
        crud.ensure_roles_exist(db, ROLES)
        updated = crud.set_user_roles(db, user, roles)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error updating roles for user %s", user_id)
        return ServiceResult.fail(ErrorKind.UNEXPECTED, "An error occurred while updating user roles.")

    logger.info("Roles of user %s set to %s", user_id, updated.role_names)
    return ServiceResult.ok(summarize_user(db, updated))


def delete_user(db: Session, user_id: str, acting_user_id: str) -> ServiceResult:
    """Remove o usuario; tarefas e sessoes vao junto (cascade)."""
    if user_id == acting_user_id:
        return ServiceResult.fail(ErrorKind.VALIDATION, "You cannot delete your own account.")

    user = crud.get_user(db, user_id)
    if user is None:
        return ServiceResult.fail(ErrorKind.NOT_FOUND, "User not found")

    try:
        crud.delete_user(db, user)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Error deleting user %s", user_id)
        return ServiceResult.fail(ErrorKind.UNEXPECTED, "An error occurred while deleting the user.")

    logger.info("User %s deleted by admin %s", user_id, acting_user_id)
    return ServiceResult.ok(user_id)
