from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ..auth.security import CurrentUser, require_roles
from ..db import get_db
from ..schemas.cleaning_routes import RouteCreate, RouteUpdate
from ..services.common import parse_id, parse_ids
from ..services.errors import ValidationFailed
from ..services.route_service import RouteScope, create_route, delete_route, list_routes, update_route
from ..services.serializers import serialize_route
from .manager import STAFF, is_companyless_admin


router = APIRouter(prefix="/api/manager/routes", tags=["routes"])


def _scope(me: CurrentUser) -> RouteScope:
    if is_companyless_admin(me):
        return RouteScope(None, unrestricted=True)
    if me.company_id is None:
        raise ValidationFailed("Manager not assigned to a company")
    return RouteScope(me.company_id)


@router.get("")
def get_routes(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*STAFF))):
    return {"routes": [serialize_route(r) for r in list_routes(db, _scope(me))]}


@router.post("", status_code=status.HTTP_201_CREATED)
def post_route(body: RouteCreate, db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*STAFF))):
    scope = _scope(me)
    route = create_route(
        db,
        scope,
        name=body.name,
        cleaner_id=parse_id(body.cleaner_id, "cleaner id"),
        point_ids=parse_ids(body.service_point_ids, "service point id"),
    )
    return {"route": serialize_route(route)}


@router.put("/{route_id}")
def put_route(
    route_id: str,
    body: RouteUpdate,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(*STAFF)),
):
    scope = _scope(me)
    route = update_route(
        db,
        parse_id(route_id, "route id"),
        scope,
        name=body.name,
        cleaner_id=parse_id(body.cleaner_id, "cleaner id") if body.cleaner_id else None,
        point_ids=parse_ids(body.service_point_ids, "service point id") if body.service_point_ids is not None else None,
    )
    return {"route": serialize_route(route)}


@router.delete("/{route_id}")
def remove_route(route_id: str, db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(*STAFF))):
    delete_route(db, parse_id(route_id, "route id"), _scope(me))
    return {"message": "Route deleted"}
