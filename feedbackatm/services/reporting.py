"""
Read-only dashboard statistics.

Everything is recomputed from the task table on each call; "today" is the
[start, end) window of the current day in the task timezone.
"""
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import func, select
from sqlalchemy.orm import Session, joinedload

from ..models.models import CleanerAssignment, CleaningTask, ServicePoint, TaskStatus, User, UserRole
from .serializers import company_summary, serialize_service_point, serialize_task, user_summary
from .time_rules import day_window


def _scoped_tasks(db: Session, company_id: Optional[uuid.UUID]):
    q = db.query(CleaningTask)
    if company_id is not None:
        q = q.filter(
            CleaningTask.service_point_id.in_(
                select(ServicePoint.id).where(ServicePoint.company_id == company_id)
            )
        )
    return q


def dashboard_stats(db: Session, company_id: Optional[uuid.UUID] = None,
                    now: Optional[datetime] = None) -> Dict[str, Any]:
    """
    Today's dashboard.

    Args:
        db: Database session
        company_id: Restrict to one company; None for the global (admin) view
        now: Naive UTC instant (defaults to now)

    Returns:
        Dict with "service_points" (each with today_task, status, assigned_cleaners),
        "cleaners" (each with today_tasks) and "stats" counters.
    """
    _, start, end = day_window(now)

    point_q = db.query(ServicePoint).options(
        joinedload(ServicePoint.company),
        joinedload(ServicePoint.assignments).joinedload(CleanerAssignment.cleaner),
    )
    if company_id is not None:
        point_q = point_q.filter(ServicePoint.company_id == company_id)
    points = point_q.order_by(ServicePoint.name.asc()).all()

    today_tasks = (
        _scoped_tasks(db, company_id)
        .options(
            joinedload(CleaningTask.service_point).joinedload(ServicePoint.company),
            joinedload(CleaningTask.cleaner),
        )
        .filter(CleaningTask.scheduled_at >= start, CleaningTask.scheduled_at < end)
        .order_by(CleaningTask.created_at.desc())
        .all()
    )
    latest_by_point: Dict[uuid.UUID, CleaningTask] = {}
    by_cleaner: Dict[uuid.UUID, List[CleaningTask]] = {}
    for t in today_tasks:
        latest_by_point.setdefault(t.service_point_id, t)
        by_cleaner.setdefault(t.cleaner_id, []).append(t)

    service_points = []
    for p in points:
        latest = latest_by_point.get(p.id)
        payload = serialize_service_point(p)
        payload["today_task"] = serialize_task(latest) if latest else None
        payload["status"] = latest.status if latest else TaskStatus.PENDING.value
        payload["assigned_cleaners"] = [user_summary(a.cleaner) for a in p.assignments if a.cleaner]
        service_points.append(payload)

    cleaner_q = db.query(User).options(joinedload(User.company)).filter(User.role == UserRole.CLEANER.value)
    if company_id is not None:
        cleaner_q = cleaner_q.filter(User.company_id == company_id)
    cleaners = [
        {
            "id": str(c.id),
            "username": c.username,
            "company": company_summary(c.company),
            "today_tasks": [serialize_task(t) for t in by_cleaner.get(c.id, [])],
        }
        for c in cleaner_q.order_by(User.username.asc()).all()
    ]

    total = len(today_tasks)
    completed = sum(1 for t in today_tasks if t.status == TaskStatus.COMPLETED.value)
    return {
        "service_points": service_points,
        "cleaners": cleaners,
        "stats": {
            "total_points": len(points),
            "today_total_tasks": total,
            "today_completed_tasks": completed,
            "today_pending_tasks": total - completed,
        },
    }


def company_stats(db: Session, company_id: uuid.UUID) -> Dict[str, Any]:
    """All-time counters for one company."""
    total_points = db.query(func.count(ServicePoint.id)).filter(ServicePoint.company_id == company_id).scalar() or 0
    tasks = _scoped_tasks(db, company_id)
    total_tasks = tasks.count()
    completed = tasks.filter(CleaningTask.status == TaskStatus.COMPLETED.value).count()
    pending = _scoped_tasks(db, company_id).filter(
        CleaningTask.status.in_((TaskStatus.PENDING.value, TaskStatus.IN_PROGRESS.value))
    ).count()
    rate = round(completed / total_tasks * 100, 1) if total_tasks else 0.0
    return {
        "total_points": total_points,
        "total_tasks": total_tasks,
        "completed_tasks": completed,
        "pending_tasks": pending,
        "completion_rate": rate,
    }
