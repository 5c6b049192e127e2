"""
Cleaning task lifecycle.

PENDING -> IN_PROGRESS -> COMPLETED, with PENDING -> COMPLETED allowed directly
and PENDING/IN_PROGRESS -> OVERDUE applied by the read-time sweep. COMPLETED is
terminal; managers may still annotate it.

Start and complete are single conditional UPDATE statements keyed on the
expected source status, so a second concurrent completion finds no row.
"""
import uuid
from datetime import datetime
from typing import Dict, List, Optional

import structlog
from sqlalchemy import select, update
from sqlalchemy.orm import Session, joinedload

from ..models.models import CleaningTask, ServicePoint, TaskStatus, User, UserRole
from .assignment_service import assigned_point_ids, assignment_exists
from .errors import NotFound, ValidationFailed
from .task_generator import (
    OPEN_STATUSES,
    generate_for_cleaner,
    generate_for_company,
    sweep_overdue_for_cleaner,
    sweep_overdue_for_company,
)
from .time_rules import day_window, utcnow


logger = structlog.get_logger(__name__)

HISTORY_LIMIT = 50

DELETABLE_STATUSES = (TaskStatus.PENDING.value, TaskStatus.OVERDUE.value)

STATUS_PRIORITY = {
    TaskStatus.OVERDUE.value: 0,
    TaskStatus.IN_PROGRESS.value: 1,
    TaskStatus.PENDING.value: 2,
    TaskStatus.COMPLETED.value: 3,
}


def _task_query(db: Session):
    return db.query(CleaningTask).options(
        joinedload(CleaningTask.service_point).joinedload(ServicePoint.company),
        joinedload(CleaningTask.cleaner),
    )


def load_task(db: Session, task_id: uuid.UUID) -> CleaningTask:
    task = _task_query(db).filter(CleaningTask.id == task_id).first()
    if not task:
        raise NotFound("Task not found")
    return task


def _company_points(company_id: uuid.UUID):
    return select(ServicePoint.id).where(ServicePoint.company_id == company_id)


def get_company_task(db: Session, task_id: uuid.UUID, company_id: uuid.UUID) -> CleaningTask:
    task = (
        _task_query(db)
        .filter(CleaningTask.id == task_id, CleaningTask.service_point_id.in_(_company_points(company_id)))
        .first()
    )
    if not task:
        raise NotFound("Task not found or not in your company")
    return task


def sort_for_cleaner(tasks: List[CleaningTask]) -> List[CleaningTask]:
    """Soonest scheduled first; unscheduled last; ties broken by status priority."""
    return sorted(
        tasks,
        key=lambda t: (
            t.scheduled_at is None,
            t.scheduled_at or datetime.max,
            STATUS_PRIORITY.get(t.status, len(STATUS_PRIORITY)),
        ),
    )


# ---- Cleaner views ----

def list_cleaner_tasks(db: Session, cleaner_id: uuid.UUID, now: Optional[datetime] = None) -> List[CleaningTask]:
    """
    The cleaner's actionable tasks for today.

    Args:
        db: Database session
        cleaner_id: Cleaner
        now: Naive UTC instant (defaults to now)

    Returns:
        Today's PENDING/IN_PROGRESS/OVERDUE tasks for currently assigned points,
        after the overdue sweep and on-demand generation have run.
    """
    now = now or utcnow()
    sweep_overdue_for_cleaner(db, cleaner_id, now)
    point_ids = assigned_point_ids(db, cleaner_id)
    if not point_ids:
        return []
    generate_for_cleaner(db, cleaner_id, now)
    _, start, end = day_window(now)
    tasks = (
        _task_query(db)
        .filter(
            CleaningTask.cleaner_id == cleaner_id,
            CleaningTask.service_point_id.in_(point_ids),
            CleaningTask.scheduled_at >= start,
            CleaningTask.scheduled_at < end,
            CleaningTask.status.in_(OPEN_STATUSES + (TaskStatus.OVERDUE.value,)),
        )
        .all()
    )
    return sort_for_cleaner(tasks)


def cleaner_history(db: Session, cleaner_id: uuid.UUID) -> List[CleaningTask]:
    return (
        _task_query(db)
        .filter(CleaningTask.cleaner_id == cleaner_id)
        .order_by(CleaningTask.updated_at.desc())
        .limit(HISTORY_LIMIT)
        .all()
    )


def start_task(db: Session, task_id: uuid.UUID, cleaner_id: uuid.UUID, now: Optional[datetime] = None) -> CleaningTask:
    now = now or utcnow()
    result = db.execute(
        update(CleaningTask)
        .where(
            CleaningTask.id == task_id,
            CleaningTask.cleaner_id == cleaner_id,
            CleaningTask.status == TaskStatus.PENDING.value,
        )
        .values(status=TaskStatus.IN_PROGRESS.value, updated_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        raise NotFound("Task not found or already started")
    db.commit()
    logger.info("task_started", task_id=str(task_id), cleaner_id=str(cleaner_id))
    return load_task(db, task_id)


def _complete(db: Session, task_id: uuid.UUID, cleaner_id: uuid.UUID, notes: Optional[str],
              photos: Dict[str, str], now: datetime) -> bool:
    values = {
        "status": TaskStatus.COMPLETED.value,
        "completed_at": now,
        "updated_at": now,
        "notes": notes or None,
    }
    # Omitted photo slots keep their previous value
    values.update({slot: key for slot, key in photos.items() if key})
    result = db.execute(
        update(CleaningTask)
        .where(
            CleaningTask.id == task_id,
            CleaningTask.cleaner_id == cleaner_id,
            CleaningTask.status.in_(OPEN_STATUSES),
        )
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount > 0


def find_open_task(db: Session, task_id: uuid.UUID, cleaner_id: uuid.UUID) -> CleaningTask:
    task = (
        db.query(CleaningTask)
        .filter(
            CleaningTask.id == task_id,
            CleaningTask.cleaner_id == cleaner_id,
            CleaningTask.status.in_(OPEN_STATUSES),
        )
        .first()
    )
    if not task:
        raise NotFound("Task not found or already completed")
    return task


def complete_task(db: Session, task_id: uuid.UUID, cleaner_id: uuid.UUID, notes: Optional[str] = None,
                  photos: Optional[Dict[str, str]] = None, now: Optional[datetime] = None) -> CleaningTask:
    """
    Complete a PENDING or IN_PROGRESS task owned by the cleaner.

    Args:
        db: Database session
        task_id: Task to complete
        cleaner_id: Must own the task
        notes: Cleaner notes; empty becomes NULL
        photos: Slot name (photo_before/photo_after/photo_damage) -> stored path
        now: Completion instant (defaults to now)

    Returns:
        The completed task

    Raises:
        NotFound: the task is missing, owned by someone else, or not open (OVERDUE included)
    """
    now = now or utcnow()
    if not _complete(db, task_id, cleaner_id, notes, photos or {}, now):
        db.rollback()
        raise NotFound("Task not found or already completed")
    db.commit()
    logger.info("task_completed", task_id=str(task_id), cleaner_id=str(cleaner_id), photos=len(photos or {}))
    return load_task(db, task_id)


def find_or_create_today_task(db: Session, service_point_id: uuid.UUID, cleaner_id: uuid.UUID,
                              now: Optional[datetime] = None) -> CleaningTask:
    """
    Today's open task for (point, cleaner), creating a PENDING one when none is open.

    The created task carries no generation day, so it never collides with a
    generator-created row for the same day. A new row is only flushed; the
    caller commits it together with the completion.
    """
    now = now or utcnow()
    if db.query(ServicePoint.id).filter(ServicePoint.id == service_point_id).first() is None:
        raise NotFound("Service point not found")
    _, start, end = day_window(now)
    task = (
        db.query(CleaningTask)
        .filter(
            CleaningTask.service_point_id == service_point_id,
            CleaningTask.cleaner_id == cleaner_id,
            CleaningTask.scheduled_at >= start,
            CleaningTask.scheduled_at < end,
            CleaningTask.status.in_(OPEN_STATUSES),
        )
        .order_by(CleaningTask.created_at.asc())
        .first()
    )
    if task:
        return task
    task = CleaningTask(
        service_point_id=service_point_id,
        cleaner_id=cleaner_id,
        status=TaskStatus.PENDING.value,
        scheduled_at=start,
        generation_day=None,
        created_at=now,
        updated_at=now,
    )
    db.add(task)
    db.flush()
    logger.info("task_created_for_completion", task_id=str(task.id), service_point_id=str(service_point_id))
    return task


# ---- Manager operations ----

def list_company_tasks(db: Session, company_id: uuid.UUID, now: Optional[datetime] = None) -> List[CleaningTask]:
    now = now or utcnow()
    sweep_overdue_for_company(db, company_id, now)
    generate_for_company(db, company_id, now)
    return (
        _task_query(db)
        .filter(CleaningTask.service_point_id.in_(_company_points(company_id)))
        .order_by(CleaningTask.updated_at.desc())
        .all()
    )


def add_manager_comment(db: Session, task_id: uuid.UUID, company_id: uuid.UUID, manager_notes: str) -> CleaningTask:
    task = get_company_task(db, task_id, company_id)
    task.manager_notes = manager_notes
    task.updated_at = utcnow()
    db.commit()
    logger.info("task_commented", task_id=str(task_id))
    return load_task(db, task_id)


def _get_cleaner(db: Session, cleaner_id: uuid.UUID) -> User:
    cleaner = (
        db.query(User)
        .filter(User.id == cleaner_id, User.role == UserRole.CLEANER.value)
        .first()
    )
    if not cleaner:
        raise NotFound("Cleaner not found")
    return cleaner


def _get_company_point(db: Session, point_id: uuid.UUID, company_id: uuid.UUID) -> ServicePoint:
    point = (
        db.query(ServicePoint)
        .filter(ServicePoint.id == point_id, ServicePoint.company_id == company_id)
        .first()
    )
    if not point:
        raise NotFound("Service Point not found in your company")
    return point


def create_manager_task(db: Session, company_id: uuid.UUID, service_point_id: uuid.UUID,
                        cleaner_id: uuid.UUID, scheduled_at: Optional[datetime] = None) -> CleaningTask:
    """
    Create an ad hoc PENDING task. The point must already be assigned to the cleaner.
    Ad hoc tasks are not unique per day and may sit beside a generated one.
    """
    _get_company_point(db, service_point_id, company_id)
    _get_cleaner(db, cleaner_id)
    if not assignment_exists(db, cleaner_id, service_point_id):
        raise ValidationFailed(
            "This Service Point is not assigned to the selected cleaner. Please assign it first."
        )
    task = CleaningTask(
        service_point_id=service_point_id,
        cleaner_id=cleaner_id,
        status=TaskStatus.PENDING.value,
        scheduled_at=scheduled_at,
        generation_day=None,
    )
    db.add(task)
    db.commit()
    logger.info("task_created_by_manager", task_id=str(task.id), cleaner_id=str(cleaner_id))
    return load_task(db, task.id)


def update_manager_task(db: Session, task_id: uuid.UUID, company_id: uuid.UUID,
                        fields: Dict[str, object]) -> CleaningTask:
    """
    Partial update of a company task.

    Args:
        db: Database session
        task_id: Task to update
        company_id: Manager's company; the task's point must belong to it
        fields: Supplied keys only, from service_point_id, cleaner_id, scheduled_at, status

    Returns:
        The updated task
    """
    task = get_company_task(db, task_id, company_id)
    point_id = fields.get("service_point_id")
    cleaner_id = fields.get("cleaner_id")

    if point_id is not None:
        _get_company_point(db, point_id, company_id)
    if cleaner_id is not None:
        _get_cleaner(db, cleaner_id)
    if point_id is not None and cleaner_id is not None and (
        point_id != task.service_point_id or cleaner_id != task.cleaner_id
    ):
        if not assignment_exists(db, cleaner_id, point_id):
            raise ValidationFailed("This Service Point is not assigned to the selected cleaner")

    new_status = fields.get("status")
    status_changed = new_status is not None and new_status != task.status
    if status_changed and task.status == TaskStatus.COMPLETED.value:
        raise ValidationFailed("Completed tasks cannot change status")

    moved = (point_id is not None and point_id != task.service_point_id) or (
        cleaner_id is not None and cleaner_id != task.cleaner_id
    )
    if point_id is not None:
        task.service_point_id = point_id
    if cleaner_id is not None:
        task.cleaner_id = cleaner_id
    if moved:
        # A moved task is ad hoc; the new pair may already hold today's generated task
        task.generation_day = None
    if "scheduled_at" in fields:
        task.scheduled_at = fields["scheduled_at"]

    if status_changed:
        task.status = new_status
        if new_status == TaskStatus.COMPLETED.value and task.completed_at is None:
            task.completed_at = utcnow()

    task.updated_at = utcnow()
    db.commit()
    logger.info("task_updated_by_manager", task_id=str(task_id), fields=sorted(fields.keys()))
    db.expire_all()
    return load_task(db, task_id)


def delete_manager_task(db: Session, task_id: uuid.UUID, company_id: uuid.UUID) -> None:
    task = (
        db.query(CleaningTask)
        .filter(
            CleaningTask.id == task_id,
            CleaningTask.service_point_id.in_(_company_points(company_id)),
            CleaningTask.status.in_(DELETABLE_STATUSES),
        )
        .first()
    )
    if not task:
        raise NotFound(
            "Task not found, not in your company, or cannot be deleted "
            "(only PENDING and OVERDUE tasks can be deleted)"
        )
    db.delete(task)
    db.commit()
    logger.info("task_deleted", task_id=str(task_id))
