import uuid
from typing import Optional

import structlog
from fastapi import APIRouter, BackgroundTasks, Depends, Query, Response, status
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, joinedload

from ..auth.security import CurrentUser, get_password_hash, require_roles
from ..db import get_db
from ..models.models import CleanerAssignment, CleaningTask, Company, ServicePoint, User, UserRole
from ..reports.export import (
    XLSX_MEDIA_TYPE,
    build_report_pdf,
    build_report_zip,
    build_tasks_xlsx,
    report_filename,
    todays_tasks,
)
from ..schemas.admin import (
    AssignPointsRequest,
    CompanyCreate,
    CompanyUpdate,
    ServicePointCreate,
    ServicePointUpdate,
    UserCreate,
    UserUpdate,
)
from ..services.assignment_service import (
    assign_points_to_cleaner,
    drop_assignments_unless_cleaner,
    list_assigned_points,
)
from ..services.common import parse_id, parse_ids, parse_optional_id
from ..services.errors import Conflict, NotFound, ValidationFailed
from ..services.identity import IdentityProviderClient, get_identity_client
from ..services.reporting import dashboard_stats
from ..services.serializers import serialize_company, serialize_service_point, serialize_user
from ..storage.local_provider import LocalStorageProvider, get_storage


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])

ADMIN = UserRole.ADMIN.value
PROJECT_LEAD = UserRole.PROJECT_LEAD.value


def _get_user(db: Session, user_id: str) -> User:
    user = (
        db.query(User)
        .options(joinedload(User.company), joinedload(User.assignments).joinedload(CleanerAssignment.service_point))
        .filter(User.id == parse_id(user_id, "user id"))
        .first()
    )
    if not user:
        raise NotFound("User not found")
    return user


def _ensure_company(db: Session, company_id: Optional[uuid.UUID]) -> None:
    if company_id is not None and db.query(Company.id).filter(Company.id == company_id).first() is None:
        raise NotFound("Company not found")


# ---- Users ----

@router.get("/users")
def list_users(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(ADMIN))):
    users = (
        db.query(User)
        .options(joinedload(User.company), joinedload(User.assignments).joinedload(CleanerAssignment.service_point))
        .order_by(User.created_at.desc())
        .all()
    )
    return {"users": [serialize_user(u, include_assigned_points=True) for u in users]}


@router.post("/users", status_code=status.HTTP_201_CREATED)
def create_user(
    body: UserCreate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(ADMIN, PROJECT_LEAD)),
    identity: IdentityProviderClient = Depends(get_identity_client),
):
    company_id = parse_optional_id(body.company_id, "company id")
    _ensure_company(db, company_id)
    user = User(
        username=body.username.strip(),
        email=body.email,
        password_hash=get_password_hash(body.password),
        role=body.role.value,
        company_id=company_id,
    )
    db.add(user)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Username already exists")
    logger.info("user_created", user_id=str(user.id), username=user.username, role=user.role)
    background_tasks.add_task(
        identity.create_user,
        username=user.username,
        password=body.password,
        role=user.role,
        email=user.email,
        token=me.token,
    )
    return {"user": serialize_user(_get_user(db, str(user.id)))}


@router.put("/users/{user_id}")
def update_user(
    user_id: str,
    body: UserUpdate,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(ADMIN, PROJECT_LEAD)),
    identity: IdentityProviderClient = Depends(get_identity_client),
):
    user = _get_user(db, user_id)
    supplied = body.model_fields_set
    if "username" in supplied and body.username:
        user.username = body.username.strip()
    if "email" in supplied:
        user.email = body.email
    if "role" in supplied and body.role is not None:
        user.role = body.role.value
    if "company_id" in supplied:
        company_id = parse_optional_id(body.company_id, "company id")
        _ensure_company(db, company_id)
        user.company_id = company_id
    try:
        drop_assignments_unless_cleaner(db, user)
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Username already exists")
    logger.info("user_updated", user_id=user_id, fields=sorted(supplied))
    if "email" in supplied or "role" in supplied:
        background_tasks.add_task(
            identity.update_user,
            username=user.username,
            email=body.email if "email" in supplied else None,
            role=body.role.value if body.role is not None else None,
            token=me.token,
        )
    return {"user": serialize_user(_get_user(db, user_id))}


@router.delete("/users/{user_id}")
def delete_user(
    user_id: str,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(ADMIN, PROJECT_LEAD)),
    identity: IdentityProviderClient = Depends(get_identity_client),
):
    user = _get_user(db, user_id)
    username = user.username
    db.delete(user)
    db.commit()
    logger.info("user_deleted", user_id=user_id, username=username)
    background_tasks.add_task(identity.delete_user, username=username, token=me.token)
    return {"message": "User deleted successfully"}


@router.post("/users/{user_id}/assign-points")
def assign_points(
    user_id: str,
    body: AssignPointsRequest,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(ADMIN)),
):
    point_ids = parse_ids(body.point_ids, "service point id")
    user = assign_points_to_cleaner(db, parse_id(user_id, "user id"), point_ids)
    return {"user": serialize_user(user, include_assigned_points=True)}


@router.get("/users/{user_id}/assigned-points")
def get_assigned_points(user_id: str, db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(ADMIN))):
    user = _get_user(db, user_id)
    points = list_assigned_points(db, user.id)
    return {"service_points": [serialize_service_point(p) for p in points]}


# ---- Companies ----

@router.get("/companies")
def list_companies(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(ADMIN, PROJECT_LEAD))):
    companies = (
        db.query(Company)
        .options(
            joinedload(Company.service_points),
            joinedload(Company.users).joinedload(User.assignments).joinedload(CleanerAssignment.service_point),
        )
        .order_by(Company.name.asc())
        .all()
    )
    return {"companies": [serialize_company(c, detailed=True) for c in companies]}


@router.post("/companies", status_code=status.HTTP_201_CREATED)
def create_company(body: CompanyCreate, db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(ADMIN))):
    company = Company(name=body.name.strip(), description=body.description, address=body.address)
    db.add(company)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Company name already exists")
    db.refresh(company)
    logger.info("company_created", company_id=str(company.id), name=company.name)
    return {"company": serialize_company(company)}


def _get_company(db: Session, company_id: str) -> Company:
    company = db.query(Company).filter(Company.id == parse_id(company_id, "company id")).first()
    if not company:
        raise NotFound("Company not found")
    return company


@router.put("/companies/{company_id}")
def update_company(
    company_id: str,
    body: CompanyUpdate,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(ADMIN)),
):
    company = _get_company(db, company_id)
    supplied = body.model_fields_set
    if "name" in supplied and body.name:
        company.name = body.name.strip()
    if "description" in supplied:
        company.description = body.description
    if "address" in supplied:
        company.address = body.address
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise Conflict("Company name already exists")
    db.refresh(company)
    return {"company": serialize_company(company)}


@router.delete("/companies/{company_id}")
def delete_company(company_id: str, db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(ADMIN))):
    company = _get_company(db, company_id)
    db.delete(company)
    db.commit()
    logger.info("company_deleted", company_id=company_id)
    return {"message": "Company deleted successfully"}


# ---- Service points ----

@router.get("/service-points")
def list_service_points(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(ADMIN, PROJECT_LEAD))):
    points = (
        db.query(ServicePoint)
        .options(joinedload(ServicePoint.company))
        .order_by(ServicePoint.name.asc())
        .all()
    )
    counts = dict(
        db.query(CleaningTask.service_point_id, func.count(CleaningTask.id))
        .group_by(CleaningTask.service_point_id)
        .all()
    )
    out = []
    for p in points:
        payload = serialize_service_point(p)
        payload["task_count"] = counts.get(p.id, 0)
        out.append(payload)
    return {"service_points": out}


@router.post("/service-points", status_code=status.HTTP_201_CREATED)
def create_service_point(
    body: ServicePointCreate,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(ADMIN)),
):
    company_id = parse_id(body.company_id, "company id")
    _ensure_company(db, company_id)
    point = ServicePoint(
        name=body.name.strip(),
        type=body.type.value,
        address=body.address.strip(),
        latitude=body.latitude,
        longitude=body.longitude,
        company_id=company_id,
    )
    db.add(point)
    db.commit()
    db.refresh(point)
    logger.info("service_point_created", service_point_id=str(point.id), company_id=str(company_id))
    return {"service_point": serialize_service_point(point)}


def _get_point(db: Session, point_id: str) -> ServicePoint:
    point = (
        db.query(ServicePoint)
        .options(joinedload(ServicePoint.company))
        .filter(ServicePoint.id == parse_id(point_id, "service point id"))
        .first()
    )
    if not point:
        raise NotFound("Service point not found")
    return point


@router.put("/service-points/{point_id}")
def update_service_point(
    point_id: str,
    body: ServicePointUpdate,
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(ADMIN)),
):
    point = _get_point(db, point_id)
    supplied = body.model_fields_set
    if "name" in supplied and body.name:
        point.name = body.name.strip()
    if "type" in supplied and body.type is not None:
        point.type = body.type.value
    if "address" in supplied and body.address:
        point.address = body.address.strip()
    if "latitude" in supplied and body.latitude is not None:
        point.latitude = body.latitude
    if "longitude" in supplied and body.longitude is not None:
        point.longitude = body.longitude
    if "company_id" in supplied and body.company_id:
        company_id = parse_id(body.company_id, "company id")
        _ensure_company(db, company_id)
        point.company_id = company_id
    db.commit()
    return {"service_point": serialize_service_point(_get_point(db, point_id))}


@router.delete("/service-points/{point_id}")
def delete_service_point(point_id: str, db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(ADMIN))):
    point = _get_point(db, point_id)
    db.delete(point)
    db.commit()
    logger.info("service_point_deleted", service_point_id=point_id)
    return {"message": "Service point deleted successfully"}


# ---- Dashboard and reports ----

@router.get("/dashboard-stats")
def admin_dashboard_stats(db: Session = Depends(get_db), me: CurrentUser = Depends(require_roles(ADMIN))):
    return dashboard_stats(db)


@router.get("/reports/export")
def export_report(
    format: str = Query(default="excel"),
    company_id: Optional[str] = Query(default=None),
    db: Session = Depends(get_db),
    me: CurrentUser = Depends(require_roles(ADMIN)),
    storage: LocalStorageProvider = Depends(get_storage),
):
    fmt = format.lower()
    scope = parse_optional_id(company_id, "company id")
    company_name = None
    if scope is not None:
        company_name = _get_company(db, str(scope)).name

    if fmt in ("excel", "xlsx"):
        content, media_type, ext = build_tasks_xlsx(todays_tasks(db, scope)), XLSX_MEDIA_TYPE, "xlsx"
    elif fmt == "pdf":
        content, media_type, ext = build_report_pdf(db, storage, scope), "application/pdf", "pdf"
    elif fmt == "zip":
        content, media_type, ext = build_report_zip(db, storage, scope), "application/zip", "zip"
    else:
        raise ValidationFailed("Invalid format. Use excel, pdf, or zip")

    filename = report_filename(ext, company_name=company_name)
    logger.info("report_exported", format=ext, company_id=company_id, size=len(content))
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
