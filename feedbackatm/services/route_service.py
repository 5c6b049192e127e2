"""
Route management.

A route is an ordered, named grouping of service points for one cleaner. The
route's company is a listing scope only; member points may come from any company.
Every write to a route's point list rewrites the cleaner's assignments from it.
"""
import uuid
from typing import List, Optional

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session, joinedload

from ..models.models import Route, RoutePoint, ServicePoint, User, UserRole
from .assignment_service import ensure_points_exist, replace_assignments
from .errors import NotFound, ValidationFailed


logger = structlog.get_logger(__name__)


class RouteScope:
    """Which routes a caller may see: one company, or everything for a company-less admin."""

    def __init__(self, company_id: Optional[uuid.UUID], unrestricted: bool = False):
        self.company_id = company_id
        self.unrestricted = unrestricted


def _route_query(db: Session):
    return db.query(Route).options(
        joinedload(Route.cleaner),
        joinedload(Route.route_points).joinedload(RoutePoint.service_point).joinedload(ServicePoint.company),
    )


def _get_cleaner(db: Session, cleaner_id: uuid.UUID) -> User:
    cleaner = (
        db.query(User)
        .filter(User.id == cleaner_id, User.role == UserRole.CLEANER.value)
        .first()
    )
    if not cleaner:
        raise NotFound("Cleaner not found")
    return cleaner


def _next_order_num(db: Session, company_id: Optional[uuid.UUID]) -> int:
    q = db.query(func.max(Route.order_num))
    if company_id is None:
        q = q.filter(Route.company_id.is_(None))
    else:
        q = q.filter(Route.company_id == company_id)
    current = q.scalar()
    return (current or 0) + 1


def _sync_assignments_from_route(db: Session, cleaner_id: uuid.UUID, point_ids: List[uuid.UUID]) -> None:
    # One-directional: route writes overwrite assignments; direct assignment edits never touch routes.
    replace_assignments(db, cleaner_id, point_ids)


def get_route(db: Session, route_id: uuid.UUID, scope: RouteScope) -> Route:
    q = _route_query(db).filter(Route.id == route_id)
    if not scope.unrestricted:
        q = q.filter(Route.company_id == scope.company_id)
    route = q.first()
    if not route:
        raise NotFound("Route not found")
    return route


def list_routes(db: Session, scope: RouteScope) -> List[Route]:
    q = _route_query(db)
    if not scope.unrestricted:
        q = q.filter(Route.company_id == scope.company_id)
    return q.order_by(Route.order_num.asc(), Route.created_at.asc()).all()


def create_route(
    db: Session,
    scope: RouteScope,
    name: str,
    cleaner_id: uuid.UUID,
    point_ids: List[uuid.UUID],
) -> Route:
    """
    Create a route and make the cleaner's assignments equal to its points.

    Args:
        db: Database session
        scope: Caller scope; the route is stored under scope.company_id (may be None)
        name: Route name (trimmed, non-empty)
        cleaner_id: Must refer to a CLEANER
        point_ids: Ordered point ids; all must exist, any company

    Returns:
        The created route with cleaner and ordered points loaded
    """
    name = (name or "").strip()
    if not name:
        raise ValidationFailed("Route name is required")
    _get_cleaner(db, cleaner_id)
    ensure_points_exist(db, point_ids)

    route = Route(
        name=name,
        company_id=scope.company_id,
        cleaner_id=cleaner_id,
        order_num=_next_order_num(db, scope.company_id),
    )
    db.add(route)
    db.flush()
    for position, pid in enumerate(point_ids):
        db.add(RoutePoint(route_id=route.id, service_point_id=pid, position=position))
    _sync_assignments_from_route(db, cleaner_id, point_ids)
    db.commit()
    logger.info("route_created", route_id=str(route.id), cleaner_id=str(cleaner_id), points=len(point_ids))
    return get_route(db, route.id, RouteScope(None, unrestricted=True))


def update_route(
    db: Session,
    route_id: uuid.UUID,
    scope: RouteScope,
    name: Optional[str] = None,
    cleaner_id: Optional[uuid.UUID] = None,
    point_ids: Optional[List[uuid.UUID]] = None,
) -> Route:
    """
    Update a route. When point_ids is given the point list is rebuilt and the
    effective cleaner's assignments are rewritten from the points that still exist.
    """
    route = get_route(db, route_id, scope)

    if name is not None and name.strip():
        route.name = name.strip()
    if cleaner_id is not None:
        _get_cleaner(db, cleaner_id)
        route.cleaner_id = cleaner_id

    if point_ids is not None:
        db.query(RoutePoint).filter(RoutePoint.route_id == route.id).delete(synchronize_session=False)
        existing = {
            r[0] for r in db.query(ServicePoint.id).filter(ServicePoint.id.in_(point_ids)).all()
        } if point_ids else set()
        kept = [pid for pid in point_ids if pid in existing]
        for position, pid in enumerate(kept):
            db.add(RoutePoint(route_id=route.id, service_point_id=pid, position=position))
        _sync_assignments_from_route(db, route.cleaner_id, kept)

    db.commit()
    logger.info("route_updated", route_id=str(route_id))
    db.expire_all()
    return get_route(db, route_id, RouteScope(None, unrestricted=True))


def delete_route(db: Session, route_id: uuid.UUID, scope: RouteScope) -> None:
    """Delete the route and its points. Cleaner assignments are left as they are."""
    route = get_route(db, route_id, scope)
    db.delete(route)
    db.commit()
    logger.info("route_deleted", route_id=str(route_id))
