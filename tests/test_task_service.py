# tests/test_task_service.py

import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy.exc import SQLAlchemyError

from backend import task_service
import backend.crud as crud
from backend.models import Task, TaskPriority, TaskStatus, utcnow
from backend.results import ErrorKind
from backend.schemas import TaskIn


def _today_at_midnight() -> datetime:
    today = utcnow().date()
    return datetime(today.year, today.month, today.day)


@pytest.fixture()
def alice(make_user):
    return make_user("alice@example.com", "Alice", "Anders")


@pytest.fixture()
def bob(make_user):
    return make_user("bob@example.com", "Bob", "Brown")


@pytest.fixture()
def root(make_user):
    return make_user("root@example.com", "Root", "Admin", admin=True)


def _create(db, user, **fields):
    result = task_service.create_task(db, TaskIn(**fields), user.id)
    assert result.success, result.message
    return result.value


# ---- validate_task_data ----

@pytest.mark.parametrize(
    "fields",
    [
        {"title": ""},
        {"title": "x" * 201},
        {"title": "ok", "description": "d" * 1001},
        {"title": "ok", "due_date": _today_at_midnight() - timedelta(days=1)},
    ],
)
def test_validate_task_data_rejects(fields):
    assert task_service.validate_task_data(TaskIn(**fields)) is False


def test_validate_task_data_accepts_minimal_task_due_today():
    assert task_service.validate_task_data(TaskIn(title="Buy milk", due_date=_today_at_midnight()))
    assert task_service.validate_task_data(TaskIn(title="Buy milk"))


def test_validate_task_data_accepts_limits():
    assert task_service.validate_task_data(TaskIn(title="x" * 200, description="d" * 1000))


# ---- calculate_statistics ----

def _task(status=TaskStatus.PENDING, priority=TaskPriority.MEDIUM, due_date=None):
    return Task(title="t", status=status, priority=priority, due_date=due_date)


def test_statistics_of_empty_list():
    stats = task_service.calculate_statistics([])

    assert stats.total_tasks == 0
    assert stats.completion_rate == 0


def test_statistics_counts():
    yesterday = utcnow() - timedelta(days=1)
    tasks = [
        _task(TaskStatus.PENDING, TaskPriority.HIGH, due_date=yesterday),
        _task(TaskStatus.IN_PROGRESS, TaskPriority.CRITICAL),
        _task(TaskStatus.COMPLETED, TaskPriority.LOW, due_date=yesterday),
        _task(TaskStatus.CANCELLED, TaskPriority.MEDIUM),
    ]

    stats = task_service.calculate_statistics(tasks)

    assert stats.total_tasks == 4
    assert stats.pending_tasks == 1
    assert stats.in_progress_tasks == 1
    assert stats.completed_tasks == 1
    assert stats.cancelled_tasks == 1
    assert stats.overdue_tasks == 1
    assert stats.high_priority_tasks == 2
    assert stats.completion_rate == 25.0


def test_completing_an_overdue_task_removes_it_from_overdue():
    task = _task(TaskStatus.IN_PROGRESS, due_date=utcnow() - timedelta(hours=2))
    assert task_service.calculate_statistics([task]).overdue_tasks == 1

    task.status = TaskStatus.COMPLETED
    stats = task_service.calculate_statistics([task])
    assert stats.overdue_tasks == 0
    assert stats.completion_rate == 100.0


# ---- create ----

def test_create_stamps_owner_and_timestamps(db, alice):
    before = utcnow()
    task = _create(db, alice, title="Write report", priority=TaskPriority.HIGH)
    after = utcnow()

    assert task.id is not None
    assert task.user_id == alice.id
    assert before <= task.created_at <= after
    assert task.completed_at is None
    assert task.status == TaskStatus.PENDING


def test_create_for_unknown_user(db):
    result = task_service.create_task(db, TaskIn(title="Orphan"), "no-such-user")

    assert not result.success
    assert result.error == ErrorKind.NOT_FOUND


def test_create_rejects_invalid_task_without_persisting(db, alice):
    result = task_service.create_task(db, TaskIn(title=""), alice.id)

    assert not result.success
    assert result.error == ErrorKind.VALIDATION
    assert task_service.get_user_tasks(db, alice.id) == []


# ---- update ----

def test_update_by_other_user_is_denied_and_row_untouched(db, alice, bob):
    task = _create(db, alice, title="Mine")

    result = task_service.update_task(db, task.id, TaskIn(title="Hijacked"), bob.id)

    assert not result.success
    assert result.error == ErrorKind.ACCESS_DENIED
    db.refresh(task)
    assert task.title == "Mine"
    assert task.user_id == alice.id


def test_update_missing_task(db, alice):
    result = task_service.update_task(db, 999, TaskIn(title="Nope"), alice.id)

    assert result.error == ErrorKind.NOT_FOUND


def test_admin_can_update_any_task_but_owner_is_kept(db, alice, root):
    task = _create(db, alice, title="Mine")
    created_at = task.created_at

    result = task_service.update_task(
        db, task.id, TaskIn(title="Fixed by admin", status=TaskStatus.CANCELLED), root.id, is_admin=True
    )

    assert result.success
    assert result.value.title == "Fixed by admin"
    assert result.value.user_id == alice.id
    assert result.value.created_at == created_at


def test_update_with_invalid_data_does_not_mutate(db, alice):
    task = _create(db, alice, title="Keep me")

    result = task_service.update_task(db, task.id, TaskIn(title="y" * 201), alice.id)

    assert result.error == ErrorKind.VALIDATION
    db.refresh(task)
    assert task.title == "Keep me"


def test_resaving_completed_task_clears_completed_at(db, alice):
    task = _create(db, alice, title="Write report", priority=TaskPriority.HIGH)

    before = utcnow()
    done = task_service.mark_task_completed(db, task.id, alice.id)
    assert done.success
    assert done.value.status == TaskStatus.COMPLETED
    assert done.value.completed_at >= before

    unchanged = TaskIn(
        title="Write report",
        status=TaskStatus.COMPLETED,
        priority=TaskPriority.HIGH,
    )
    again = task_service.update_task(db, task.id, unchanged, alice.id)

    assert again.success
    assert again.value.status == TaskStatus.COMPLETED
    assert again.value.completed_at is None


def test_mark_in_progress_clears_completion(db, alice):
    task = _create(db, alice, title="Flip")
    task_service.mark_task_completed(db, task.id, alice.id)

    result = task_service.mark_task_in_progress(db, task.id, alice.id)

    assert result.success
    assert result.value.status == TaskStatus.IN_PROGRESS
    assert result.value.completed_at is None


def test_mark_completed_is_scoped_to_owner(db, alice, bob):
    task = _create(db, alice, title="Mine")

    result = task_service.mark_task_completed(db, task.id, bob.id)

    assert result.error == ErrorKind.NOT_FOUND


# ---- delete ----

def test_delete_rules(db, alice, bob, root):
    first = _create(db, alice, title="First")
    second = _create(db, alice, title="Second")

    denied = task_service.delete_task(db, first.id, bob.id)
    assert denied.error == ErrorKind.ACCESS_DENIED

    own = task_service.delete_task(db, first.id, alice.id)
    assert own.success
    assert own.value == alice.id

    by_admin = task_service.delete_task(db, second.id, root.id, is_admin=True)
    assert by_admin.success

    missing = task_service.delete_task(db, second.id, alice.id)
    assert missing.error == ErrorKind.NOT_FOUND
    assert task_service.get_all_tasks(db) == []


# ---- leitura ----

def test_search_is_scoped_unless_admin(db, alice, bob):
    report = _create(db, alice, title="Write report")
    notes = _create(db, alice, title="Notes", description="numbers for the report")
    _create(db, alice, title="Buy milk")
    other = _create(db, bob, title="Quarterly report")

    mine = task_service.search_tasks(db, "report", alice.id, is_admin=False)
    everyone = task_service.search_tasks(db, "report", alice.id, is_admin=True)

    assert {t.id for t in mine} == {report.id, notes.id}
    assert {t.id for t in everyone} == {report.id, notes.id, other.id}


def test_filters_by_status_and_priority(db, alice, bob):
    urgent = _create(db, alice, title="Urgent", priority=TaskPriority.CRITICAL)
    _create(db, alice, title="Later", priority=TaskPriority.LOW)
    _create(db, bob, title="Bob urgent", priority=TaskPriority.CRITICAL)
    task_service.mark_task_in_progress(db, urgent.id, alice.id)

    critical = task_service.get_tasks_by_priority(db, TaskPriority.CRITICAL, alice.id)
    in_progress = task_service.get_tasks_by_status(db, TaskStatus.IN_PROGRESS, alice.id)
    all_critical = task_service.get_tasks_by_priority(db, TaskPriority.CRITICAL, alice.id, is_admin=True)

    assert [t.id for t in critical] == [urgent.id]
    assert [t.id for t in in_progress] == [urgent.id]
    assert len(all_critical) == 2


def test_get_by_id_and_access_check(db, alice, bob):
    task = _create(db, alice, title="Private")

    assert task_service.can_user_access_task(db, task.id, alice.id)
    assert not task_service.can_user_access_task(db, task.id, bob.id)
    assert task_service.get_task_by_id(db, task.id, bob.id) is None
    assert task_service.get_task_by_id(db, task.id, bob.id, is_admin=True).id == task.id


def test_user_statistics(db, alice, bob):
    done = _create(db, alice, title="Done")
    _create(db, alice, title="Open")
    _create(db, bob, title="Not mine")
    task_service.mark_task_completed(db, done.id, alice.id)

    stats = task_service.get_user_statistics(db, alice.id)

    assert stats.total_tasks == 2
    assert stats.completed_tasks == 1
    assert stats.completion_rate == 50.0
    assert task_service.get_system_statistics(db).total_tasks == 3


# ---- falhas do banco ----

def _broken_store(*args, **kwargs):
    raise SQLAlchemyError("disk I/O error at /var/lib/tasks.db")


def test_create_store_failure_is_generic_and_logged(db, alice, monkeypatch, caplog):
    monkeypatch.setattr(crud, "add_task", _broken_store)

    with caplog.at_level(logging.ERROR, logger="backend.task_service"):
        result = task_service.create_task(db, TaskIn(title="Lost"), alice.id)

    assert result.error == ErrorKind.UNEXPECTED
    assert result.message == "Failed to create task"
    assert "disk I/O" not in result.message
    assert any(
        r.levelno == logging.ERROR and f"Failed to create task for user {alice.id}" in r.getMessage()
        for r in caplog.records
    )


def test_update_store_failure_rolls_back(db, alice, monkeypatch, caplog):
    task = _create(db, alice, title="Original")
    monkeypatch.setattr(crud, "save_task", _broken_store)

    with caplog.at_level(logging.ERROR, logger="backend.task_service"):
        result = task_service.update_task(db, task.id, TaskIn(title="Changed"), alice.id)

    assert result.error == ErrorKind.UNEXPECTED
    assert result.message == "An error occurred while updating the task"
    assert any(f"Failed to update task {task.id}" in r.getMessage() for r in caplog.records)

    monkeypatch.undo()
    assert task_service.get_task_by_id(db, task.id, alice.id).title == "Original"
