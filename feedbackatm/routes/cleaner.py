from typing import Optional

import structlog
from fastapi import APIRouter, Depends, File, Form, UploadFile
from sqlalchemy.orm import Session

from ..auth.security import CurrentUser, require_roles
from ..db import get_db
from ..models.models import UserRole
from ..services.assignment_service import list_assigned_points
from ..services.common import parse_id
from ..services.errors import NotFound
from ..services.serializers import serialize_service_point, serialize_task
from ..services.task_service import (
    cleaner_history,
    complete_task,
    find_open_task,
    find_or_create_today_task,
    list_cleaner_tasks,
    start_task,
)
from ..services.uploads import discard_photos, read_photo_uploads, save_photos
from ..storage.local_provider import LocalStorageProvider, get_storage


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/cleaner", tags=["cleaner"])

require_cleaner = require_roles(UserRole.CLEANER.value, provision=True)


@router.get("/tasks")
def my_tasks(db: Session = Depends(get_db), me: CurrentUser = Depends(require_cleaner)):
    tasks = list_cleaner_tasks(db, me.id)
    return {"tasks": [serialize_task(t) for t in tasks]}


@router.put("/tasks/{task_id}/start")
def start(task_id: str, db: Session = Depends(get_db), me: CurrentUser = Depends(require_cleaner)):
    task = start_task(db, parse_id(task_id, "task id"), me.id)
    return {"task": serialize_task(task)}


def _complete_with_photos(db: Session, storage: LocalStorageProvider, me: CurrentUser, locate,
                          notes: Optional[str], photo_before, photo_after, photo_damage):
    # Validate every upload before touching storage or the task row
    pending = read_photo_uploads({
        "photo_before": photo_before,
        "photo_after": photo_after,
        "photo_damage": photo_damage,
    })
    task = locate()
    try:
        saved = save_photos(storage, pending)
    except OSError:
        # Drops a task created by locate() that was never committed
        db.rollback()
        raise
    try:
        return complete_task(db, task.id, me.id, notes=notes, photos=saved)
    except NotFound:
        discard_photos(storage, saved)
        raise


@router.put("/tasks/{task_id}/complete")
def complete(
    task_id: str,
    notes: Optional[str] = Form(default=None),
    photoBefore: Optional[UploadFile] = File(default=None),
    photoAfter: Optional[UploadFile] = File(default=None),
    photoDamage: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_cleaner),
    storage: LocalStorageProvider = Depends(get_storage),
):
    tid = parse_id(task_id, "task id")
    task = _complete_with_photos(
        db, storage, me,
        lambda: find_open_task(db, tid, me.id),
        notes, photoBefore, photoAfter, photoDamage,
    )
    return {"task": serialize_task(task)}


@router.put("/complete-by-point/{service_point_id}")
def complete_by_point(
    service_point_id: str,
    notes: Optional[str] = Form(default=None),
    photoBefore: Optional[UploadFile] = File(default=None),
    photoAfter: Optional[UploadFile] = File(default=None),
    photoDamage: Optional[UploadFile] = File(default=None),
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_cleaner),
    storage: LocalStorageProvider = Depends(get_storage),
):
    pid = parse_id(service_point_id, "service point id")
    task = _complete_with_photos(
        db, storage, me,
        lambda: find_or_create_today_task(db, pid, me.id),
        notes, photoBefore, photoAfter, photoDamage,
    )
    return {"task": serialize_task(task)}


@router.get("/history")
def history(db: Session = Depends(get_db), me: CurrentUser = Depends(require_cleaner)):
    return {"tasks": [serialize_task(t) for t in cleaner_history(db, me.id)]}


@router.get("/assigned-points")
def assigned_points(db: Session = Depends(get_db), me: CurrentUser = Depends(require_cleaner)):
    points = [serialize_service_point(p) for p in list_assigned_points(db, me.id)]
    return {"service_points": points, "atms": points}
