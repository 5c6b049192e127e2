import uuid

import structlog
from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy import func
from sqlalchemy.orm import Session

from ..auth.security import CurrentUser, require_roles
from ..db import get_db
from ..models.models import CleaningTask, ServicePoint, User, UserRole
from ..reports.export import XLSX_MEDIA_TYPE, build_tasks_csv, build_tasks_xlsx, report_filename, tasks_for_export
from ..schemas.tasks import ManagerTaskCreate, ManagerTaskUpdate, TaskCommentRequest
from ..services.common import parse_id
from ..services.errors import ValidationFailed
from ..services.reporting import company_stats, dashboard_stats
from ..services.serializers import serialize_service_point, serialize_task
from ..services.time_rules import as_naive_utc
from ..services.task_service import (
    add_manager_comment,
    create_manager_task,
    delete_manager_task,
    list_company_tasks,
    update_manager_task,
)


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/manager", tags=["manager"])

R = UserRole
TASK_VIEWERS = (
    R.MANAGER.value, R.OPERATIONS_MANAGER.value, R.PROJECT_LEAD.value,
    R.ADMIN.value, R.SUPERVISOR.value, R.OBSERVER.value,
)
STAFF = (R.MANAGER.value, R.OPERATIONS_MANAGER.value, R.PROJECT_LEAD.value, R.ADMIN.value, R.SUPERVISOR.value)
DASHBOARD_VIEWERS = (
    R.MANAGER.value, R.OPERATIONS_MANAGER.value, R.PROJECT_LEAD.value,
    R.SUPERVISOR.value, R.OBSERVER.value,
)
MANAGER_ONLY = (R.MANAGER.value,)


def require_company(me: CurrentUser) -> uuid.UUID:
    if me.company_id is None:
        raise ValidationFailed("Manager not assigned to a company")
    return me.company_id


def is_companyless_admin(me: CurrentUser) -> bool:
    return me.company_id is None and me.role == R.ADMIN.value


@router.get("/tasks")
def company_tasks(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*TASK_VIEWERS))):
    company_id = require_company(me)
    return {"tasks": [serialize_task(t) for t in list_company_tasks(db, company_id)]}


@router.get("/tasks/export")
def export_tasks(
    format: str = Query(default="excel"),
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(*STAFF)),
):
    if is_companyless_admin(me):
        company_id = None
    else:
        company_id = require_company(me)
    tasks = tasks_for_export(db, company_id)
    if format.lower() == "csv":
        content, media_type, ext = build_tasks_csv(tasks), "text/csv; charset=utf-8", "csv"
    else:
        content, media_type, ext = build_tasks_xlsx(tasks), XLSX_MEDIA_TYPE, "xlsx"
    filename = report_filename(ext, prefix="tasks")
    logger.info("tasks_exported", format=ext, rows=len(tasks))
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )


@router.put("/tasks/{task_id}/comment")
def comment_task(
    task_id: str,
    body: TaskCommentRequest,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(*MANAGER_ONLY)),
):
    company_id = require_company(me)
    task = add_manager_comment(db, parse_id(task_id, "task id"), company_id, body.manager_notes)
    return {"task": serialize_task(task)}


@router.post("/tasks", status_code=status.HTTP_201_CREATED)
def create_task(
    body: ManagerTaskCreate,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(*MANAGER_ONLY)),
):
    company_id = require_company(me)
    task = create_manager_task(
        db,
        company_id,
        parse_id(body.service_point_id, "service point id"),
        parse_id(body.cleaner_id, "cleaner id"),
        scheduled_at=as_naive_utc(body.scheduled_at),
    )
    return {"task": serialize_task(task)}


@router.put("/tasks/{task_id}")
def update_task(
    task_id: str,
    body: ManagerTaskUpdate,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(*MANAGER_ONLY)),
):
    company_id = require_company(me)
    supplied = body.model_fields_set
    fields = {}
    if "service_point_id" in supplied and body.service_point_id:
        fields["service_point_id"] = parse_id(body.service_point_id, "service point id")
    if "cleaner_id" in supplied and body.cleaner_id:
        fields["cleaner_id"] = parse_id(body.cleaner_id, "cleaner id")
    if "scheduled_at" in supplied:
        fields["scheduled_at"] = as_naive_utc(body.scheduled_at)
    if "status" in supplied and body.status is not None:
        fields["status"] = body.status.value
    task = update_manager_task(db, parse_id(task_id, "task id"), company_id, fields)
    return {"task": serialize_task(task)}


@router.delete("/tasks/{task_id}")
def delete_task(task_id: str, db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*MANAGER_ONLY))):
    company_id = require_company(me)
    delete_manager_task(db, parse_id(task_id, "task id"), company_id)
    return {"message": "Task deleted successfully"}


@router.get("/cleaners")
def company_cleaners(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*STAFF))):
    q = db.query(User).filter(User.role == R.CLEANER.value)
    if not is_companyless_admin(me):
        q = q.filter(User.company_id == require_company(me))
    cleaners = q.order_by(User.username.asc()).all()
    return {"cleaners": [{"id": str(c.id), "username": c.username} for c in cleaners]}


@router.get("/service-points")
def company_service_points(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*MANAGER_ONLY))):
    company_id = require_company(me)
    points = (
        db.query(ServicePoint)
        .filter(ServicePoint.company_id == company_id)
        .order_by(ServicePoint.name.asc())
        .all()
    )
    counts = dict(
        db.query(CleaningTask.service_point_id, func.count(CleaningTask.id))
        .filter(CleaningTask.service_point_id.in_([p.id for p in points]))
        .group_by(CleaningTask.service_point_id)
        .all()
    ) if points else {}
    out = []
    for p in points:
        payload = serialize_service_point(p, include_company=False)
        payload["task_count"] = counts.get(p.id, 0)
        out.append(payload)
    return {"service_points": out}


@router.get("/stats")
def stats(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*MANAGER_ONLY))):
    return {"stats": company_stats(db, require_company(me))}


@router.get("/dashboard-stats")
def manager_dashboard_stats(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*DASHBOARD_VIEWERS))):
    return dashboard_stats(db, require_company(me))
