"""
Cleaner assignment management.

An assignment is the standing fact "this cleaner is responsible for this point".
Writes always replace a cleaner's whole set; there is no incremental add/remove.
"""
import uuid
from datetime import datetime
from typing import Iterable, List, Set

import structlog
from sqlalchemy.orm import Session, joinedload

from ..models.models import CleanerAssignment, ServicePoint, User, UserRole
from .common import insert_ignore_duplicates
from .errors import NotFound, ValidationFailed


logger = structlog.get_logger(__name__)


def assigned_point_ids(db: Session, cleaner_id: uuid.UUID) -> List[uuid.UUID]:
    rows = (
        db.query(CleanerAssignment.service_point_id)
        .filter(CleanerAssignment.cleaner_id == cleaner_id)
        .all()
    )
    return [r[0] for r in rows]


def assignment_exists(db: Session, cleaner_id: uuid.UUID, service_point_id: uuid.UUID) -> bool:
    return (
        db.query(CleanerAssignment)
        .filter(
            CleanerAssignment.cleaner_id == cleaner_id,
            CleanerAssignment.service_point_id == service_point_id,
        )
        .first()
        is not None
    )


def replace_assignments(db: Session, cleaner_id: uuid.UUID, point_ids: Iterable[uuid.UUID]) -> int:
    """
    Make the cleaner's assignment set exactly equal to point_ids.

    Args:
        db: Session; the caller commits
        cleaner_id: Cleaner whose set is replaced
        point_ids: Desired full set (duplicates are ignored)

    Returns:
        Number of assignment rows inserted
    """
    db.flush()
    db.query(CleanerAssignment).filter(CleanerAssignment.cleaner_id == cleaner_id).delete(
        synchronize_session=False
    )
    now = datetime.utcnow()
    rows = [
        {"cleaner_id": cleaner_id, "service_point_id": pid, "created_at": now}
        for pid in dict.fromkeys(point_ids)
    ]
    inserted = insert_ignore_duplicates(
        db, CleanerAssignment, rows, index_elements=["cleaner_id", "service_point_id"]
    )
    db.expire_all()
    return inserted


def drop_assignments_unless_cleaner(db: Session, user: User) -> None:
    """Only cleaners hold assignments; clear them after a role change. The caller commits."""
    if user.role == UserRole.CLEANER.value:
        return
    if assigned_point_ids(db, user.id):
        replace_assignments(db, user.id, [])
        logger.info("cleaner_assignments_dropped", user_id=str(user.id), role=user.role)


def get_cleaner(db: Session, cleaner_id: uuid.UUID) -> User:
    user = db.query(User).filter(User.id == cleaner_id).first()
    if not user:
        raise NotFound("User not found")
    if user.role != UserRole.CLEANER.value:
        raise ValidationFailed("Can only assign points to cleaners")
    return user


def ensure_points_exist(db: Session, point_ids: List[uuid.UUID]) -> None:
    if not point_ids:
        return
    found: Set[uuid.UUID] = {
        r[0] for r in db.query(ServicePoint.id).filter(ServicePoint.id.in_(point_ids)).all()
    }
    if found != set(point_ids):
        raise ValidationFailed("Some service points not found")


def assign_points_to_cleaner(db: Session, cleaner_id: uuid.UUID, point_ids: List[uuid.UUID]) -> User:
    """
    Replace a cleaner's assignments with the given point set and commit.

    Args:
        db: Database session
        cleaner_id: Target user; must exist and have role CLEANER
        point_ids: Full desired point set; every id must refer to an existing point

    Returns:
        The cleaner, with assignments reloaded
    """
    get_cleaner(db, cleaner_id)
    ensure_points_exist(db, point_ids)
    replace_assignments(db, cleaner_id, point_ids)
    db.commit()
    logger.info("cleaner_assignments_replaced", cleaner_id=str(cleaner_id), points=len(point_ids))
    return (
        db.query(User)
        .options(joinedload(User.assignments).joinedload(CleanerAssignment.service_point))
        .filter(User.id == cleaner_id)
        .first()
    )


def list_assigned_points(db: Session, cleaner_id: uuid.UUID) -> List[ServicePoint]:
    return (
        db.query(ServicePoint)
        .join(CleanerAssignment, CleanerAssignment.service_point_id == ServicePoint.id)
        .options(joinedload(ServicePoint.company))
        .filter(CleanerAssignment.cleaner_id == cleaner_id)
        .order_by(ServicePoint.name.asc())
        .all()
    )
