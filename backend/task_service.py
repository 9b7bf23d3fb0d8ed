"""
Regras de negocio das tarefas: posse, validacao, transicoes de status e
estatisticas. As funcoes recebem a sessao do banco e a identidade de quem
chama (user_id, is_admin) explicitamente.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Iterable, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

import backend.crud as crud
from backend.models import Task, TaskPriority, TaskStatus, utcnow
from backend.results import ErrorKind, ServiceResult
from backend.schemas import TaskIn


logger = logging.getLogger(__name__)

MAX_TITLE_LENGTH = 200
MAX_DESCRIPTION_LENGTH = 1000

INVALID_TASK_MESSAGE = "Provide the correct details of the task"
NOT_FOUND_OR_DENIED_MESSAGE = "Task not found or access denied"


@dataclass
class TaskStatistics:
    total_tasks: int = 0
    pending_tasks: int = 0
    in_progress_tasks: int = 0
    completed_tasks: int = 0
    cancelled_tasks: int = 0
    overdue_tasks: int = 0
    high_priority_tasks: int = 0

    @property
    def completion_rate(self) -> float:
        if self.total_tasks == 0:
            return 0.0
        return self.completed_tasks / self.total_tasks * 100


def _naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def _missing_or_denied(db: Session, task_id: int, is_admin: bool) -> ServiceResult:
    if not is_admin and crud.task_exists(db, task_id):
        return ServiceResult.fail(ErrorKind.ACCESS_DENIED, NOT_FOUND_OR_DENIED_MESSAGE)
    return ServiceResult.fail(ErrorKind.NOT_FOUND, NOT_FOUND_OR_DENIED_MESSAGE)


# ---- Validacao e estatisticas ----

def validate_task_data(task, today: Optional[date] = None) -> bool:
    """
    Titulo obrigatorio (ate 200), descricao opcional (ate 1000) e prazo que
    nao pode ser anterior a data de hoje (compara so a data).
    """
    if not task.title:
        return False

    if len(task.title) > MAX_TITLE_LENGTH:
        return False

    if task.description and len(task.description) > MAX_DESCRIPTION_LENGTH:
        return False

    due_date = _naive_utc(task.due_date)
    if due_date is not None:
        today = today or utcnow().date()
        if due_date.date() < today:
            return False

    return True


def calculate_statistics(tasks: Iterable[Task], now: Optional[datetime] = None) -> TaskStatistics:
    now = now or utcnow()
    stats = TaskStatistics()

    for task in tasks:
        stats.total_tasks += 1

        if task.status == TaskStatus.COMPLETED:
            stats.completed_tasks += 1
        elif task.status == TaskStatus.IN_PROGRESS:
            stats.in_progress_tasks += 1
        elif task.status == TaskStatus.PENDING:
            stats.pending_tasks += 1
        elif task.status == TaskStatus.CANCELLED:
            stats.cancelled_tasks += 1

        due_date = _naive_utc(task.due_date)
        if due_date is not None and due_date < now and task.status != TaskStatus.COMPLETED:
            stats.overdue_tasks += 1

        if task.priority in (TaskPriority.HIGH, TaskPriority.CRITICAL):
            stats.high_priority_tasks += 1

    return stats


def get_user_statistics(db: Session, user_id: str) -> TaskStatistics:
    return calculate_statistics(crud.list_tasks_for_user(db, user_id))


def get_system_statistics(db: Session) -> TaskStatistics:
    return calculate_statistics(crud.list_tasks(db))


# ---- Leitura ----

def can_user_access_task(db: Session, task_id: int, user_id: str) -> bool:
    return crud.task_exists_for_user(db, task_id, user_id)


def get_task_by_id(db: Session, task_id: int, user_id: str, is_admin: bool = False) -> Optional[Task]:
    if is_admin:
        return crud.get_task(db, task_id)
    return crud.get_task_for_user(db, task_id, user_id)


def get_user_tasks(db: Session, user_id: str) -> List[Task]:
    return crud.list_tasks_for_user(db, user_id)


def get_all_tasks(db: Session) -> List[Task]:
    return crud.list_tasks(db)


def search_tasks(db: Session, term: Optional[str], user_id: str, is_admin: bool = False) -> List[Task]:
    return crud.search_tasks(db, term, None if is_admin else user_id)


def get_tasks_by_status(
    db: Session,
    status: TaskStatus,
    user_id: str,
    is_admin: bool = False,
) -> List[Task]:
    return crud.list_tasks_by_status(db, status, None if is_admin else user_id)


def get_tasks_by_priority(
    db: Session,
    priority: TaskPriority,
    user_id: str,
    is_admin: bool = False,
) -> List[Task]:
    return crud.list_tasks_by_priority(db, priority, None if is_admin else user_id)


# ---- Escrita ----

def create_task(db: Session, data: TaskIn, user_id: str) -> ServiceResult:
    if not crud.user_exists(db, user_id):
        return ServiceResult.fail(ErrorKind.NOT_FOUND, "User not found")

    if not validate_task_data(data):
        return ServiceResult.fail(ErrorKind.VALIDATION, INVALID_TASK_MESSAGE)

    task = Task(
        user_id=user_id,
        title=data.title,
        description=data.description,
        status=data.status,
        priority=data.priority,
        due_date=_naive_utc(data.due_date),
        created_at=utcnow(),
        completed_at=None,
    )

    try:
        created = crud.add_task(db, task)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to create task for user %s", user_id)
        return ServiceResult.fail(ErrorKind.UNEXPECTED, "Failed to create task")

    logger.info("Task %s created by user %s", created.id, user_id)
    return ServiceResult.ok(created)


def update_task(
    db: Session,
    task_id: int,
    data: TaskIn,
    user_id: str,
    is_admin: bool = False,
) -> ServiceResult:
    """
    Substitui os campos editaveis da tarefa. Dono e created_at ficam os do
    registro salvo.

    completed_at e recalculado a cada gravacao: recebe agora so quando o
    status passa para Completed; em qualquer outro caso volta a None, mesmo
    quando a tarefa ja estava Completed e o status nao mudou.
    """
    existing = get_task_by_id(db, task_id, user_id, is_admin)
    if existing is None:
        return _missing_or_denied(db, task_id, is_admin)

    if not validate_task_data(data):
        return ServiceResult.fail(ErrorKind.VALIDATION, INVALID_TASK_MESSAGE)

    if data.status == TaskStatus.COMPLETED and existing.status != TaskStatus.COMPLETED:
        completed_at = utcnow()
    else:
        completed_at = None

    existing.title = data.title
    existing.description = data.description
    existing.status = data.status
    existing.priority = data.priority
    existing.due_date = _naive_utc(data.due_date)
    existing.completed_at = completed_at

    try:
        updated = crud.save_task(db, existing)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to update task %s for user %s", task_id, user_id)
        return ServiceResult.fail(ErrorKind.UNEXPECTED, "An error occurred while updating the task")

    logger.info("Task %s updated by user %s (admin=%s)", task_id, user_id, is_admin)
    return ServiceResult.ok(updated)


def delete_task(db: Session, task_id: int, user_id: str, is_admin: bool = False) -> ServiceResult:
    """Em caso de sucesso o valor e o id do dono da tarefa removida."""
    task = get_task_by_id(db, task_id, user_id, is_admin)
    if task is None:
        return _missing_or_denied(db, task_id, is_admin)

    owner_id = task.user_id
    try:
        if is_admin:
            deleted = crud.delete_task(db, task_id)
        else:
            deleted = crud.delete_task_for_user(db, task_id, user_id)
    except SQLAlchemyError:
        db.rollback()
        logger.exception("Failed to delete task %s for user %s", task_id, user_id)
        return ServiceResult.fail(ErrorKind.UNEXPECTED, "Failed to delete task")

    if not deleted:
        return ServiceResult.fail(ErrorKind.NOT_FOUND, "Task not found")

    logger.info("Task %s deleted by user %s (admin=%s)", task_id, user_id, is_admin)
    return ServiceResult.ok(owner_id)


def _change_status(db: Session, task_id: int, user_id: str, status: TaskStatus) -> ServiceResult:
    task = crud.get_task_for_user(db, task_id, user_id)
    if task is None:
        return ServiceResult.fail(ErrorKind.NOT_FOUND, "Task not found")

    data = TaskIn(
        title=task.title,
        description=task.description,
        status=status,
        priority=task.priority,
        due_date=task.due_date,
    )
    return update_task(db, task_id, data, user_id)


def mark_task_completed(db: Session, task_id: int, user_id: str) -> ServiceResult:
    return _change_status(db, task_id, user_id, TaskStatus.COMPLETED)


def mark_task_in_progress(db: Session, task_id: int, user_id: str) -> ServiceResult:
    return _change_status(db, task_id, user_id, TaskStatus.IN_PROGRESS)
