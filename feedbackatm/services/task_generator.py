"""
Daily task generation and the read-time overdue sweep.

Generation guarantees one task per (cleaner, assigned point) for today and is
safe to run repeatedly or concurrently: existing tasks are skipped, and the
insert itself ignores rows that collide on (cleaner, point, generation day).
"""
import uuid
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models.models import CleanerAssignment, CleaningTask, ServicePoint, TaskStatus
from .common import insert_ignore_duplicates
from .time_rules import day_window, utcnow


logger = structlog.get_logger(__name__)

OPEN_STATUSES = (TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value)


def _generate(db: Session, pairs: Dict[uuid.UUID, List[uuid.UUID]], now: Optional[datetime]) -> int:
    if not pairs:
        return 0
    day, start, end = day_window(now)
    created_at = now or utcnow()
    rows = []
    for cleaner_id, point_ids in pairs.items():
        if not point_ids:
            continue
        covered = {
            r[0]
            for r in db.query(CleaningTask.service_point_id)
            .filter(
                CleaningTask.cleaner_id == cleaner_id,
                CleaningTask.service_point_id.in_(point_ids),
                CleaningTask.scheduled_at >= start,
                CleaningTask.scheduled_at < end,
            )
            .all()
        }
        for pid in point_ids:
            if pid in covered:
                continue
            rows.append({
                "id": uuid.uuid4(),
                "service_point_id": pid,
                "cleaner_id": cleaner_id,
                "status": TaskStatus.PENDING.value,
                "scheduled_at": start,
                "generation_day": day,
                "created_at": created_at,
                "updated_at": created_at,
            })
    return insert_ignore_duplicates(
        db, CleaningTask, rows, index_elements=["cleaner_id", "service_point_id", "generation_day"]
    )


def _group_assignments(rows: Iterable) -> Dict[uuid.UUID, List[uuid.UUID]]:
    pairs: Dict[uuid.UUID, List[uuid.UUID]] = {}
    for cleaner_id, point_id in rows:
        pairs.setdefault(cleaner_id, []).append(point_id)
    return pairs


def generate_for_cleaner(db: Session, cleaner_id: uuid.UUID, now: Optional[datetime] = None) -> int:
    """
    Ensure today's tasks exist for one cleaner's assignments.

    Args:
        db: Database session (committed here)
        cleaner_id: Cleaner to generate for
        now: Naive UTC instant used for the day window (defaults to now)

    Returns:
        Number of tasks created; 0 when the cleaner has no assignments
    """
    rows = (
        db.query(CleanerAssignment.cleaner_id, CleanerAssignment.service_point_id)
        .filter(CleanerAssignment.cleaner_id == cleaner_id)
        .all()
    )
    created = _generate(db, _group_assignments(rows), now)
    db.commit()
    if created:
        logger.info("tasks_generated_for_cleaner", cleaner_id=str(cleaner_id), created=created)
    return created


def generate_for_company(db: Session, company_id: uuid.UUID, now: Optional[datetime] = None) -> int:
    """Ensure today's tasks exist for every assignment whose point belongs to the company."""
    rows = (
        db.query(CleanerAssignment.cleaner_id, CleanerAssignment.service_point_id)
        .join(ServicePoint, ServicePoint.id == CleanerAssignment.service_point_id)
        .filter(ServicePoint.company_id == company_id)
        .all()
    )
    created = _generate(db, _group_assignments(rows), now)
    db.commit()
    if created:
        logger.info("tasks_generated_for_company", company_id=str(company_id), created=created)
    return created


def generate_daily_tasks(db: Session, now: Optional[datetime] = None) -> int:
    """Global run: today's tasks for every cleaner with assignments."""
    rows = db.query(CleanerAssignment.cleaner_id, CleanerAssignment.service_point_id).all()
    pairs = _group_assignments(rows)
    created = _generate(db, pairs, now)
    db.commit()
    logger.info("daily_task_generation_completed", cleaners=len(pairs), created=created)
    return created


def _sweep(db: Session, query, now: Optional[datetime]) -> int:
    now = now or utcnow()
    count = query.filter(
        CleaningTask.status.in_(OPEN_STATUSES),
        CleaningTask.scheduled_at < now,
    ).update(
        {CleaningTask.status: TaskStatus.OVERDUE.value, CleaningTask.updated_at: now},
        synchronize_session=False,
    )
    db.commit()
    return count


def sweep_overdue_for_cleaner(db: Session, cleaner_id: uuid.UUID, now: Optional[datetime] = None) -> int:
    """Flip the cleaner's PENDING/IN_PROGRESS tasks scheduled before now to OVERDUE."""
    q = db.query(CleaningTask).filter(CleaningTask.cleaner_id == cleaner_id)
    return _sweep(db, q, now)


def sweep_overdue_for_company(db: Session, company_id: uuid.UUID, now: Optional[datetime] = None) -> int:
    point_ids = select(ServicePoint.id).where(ServicePoint.company_id == company_id)
    q = db.query(CleaningTask).filter(CleaningTask.service_point_id.in_(point_ids))
    return _sweep(db, q, now)
