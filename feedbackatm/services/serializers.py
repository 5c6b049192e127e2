import json
from datetime import date, datetime
from typing import Any, Dict, List, Optional

from ..models.models import CleaningTask, Company, Route, ServicePoint, User


def _iso(value: Optional[datetime | date]) -> Optional[str]:
    return value.isoformat() if value else None


def _sid(value) -> Optional[str]:
    return str(value) if value else None


def decode_legacy_photos(raw: Optional[str]) -> List[str]:
    if not raw:
        return []
    try:
        data = json.loads(raw)
    except ValueError:
        return []
    return [str(x) for x in data] if isinstance(data, list) else []


def company_summary(company: Optional[Company]) -> Optional[Dict[str, Any]]:
    if company is None:
        return None
    return {"id": str(company.id), "name": company.name}


def user_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    if user is None:
        return None
    return {"id": str(user.id), "username": user.username}


def serialize_user(user: User, include_assigned_points: bool = False) -> Dict[str, Any]:
    payload = {
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "company_id": _sid(user.company_id),
        "company": company_summary(user.company),
        "created_at": _iso(user.created_at),
    }
    if include_assigned_points:
        payload["assigned_points"] = [
            serialize_service_point(a.service_point, include_company=False)
            for a in user.assignments
            if a.service_point is not None
        ]
    return payload


def serialize_service_point(point: ServicePoint, include_company: bool = True) -> Dict[str, Any]:
    payload = {
        "id": str(point.id),
        "name": point.name,
        "type": point.type,
        "address": point.address,
        "latitude": point.latitude,
        "longitude": point.longitude,
        "company_id": _sid(point.company_id),
        "created_at": _iso(point.created_at),
    }
    if include_company:
        payload["company"] = company_summary(point.company)
    return payload


def serialize_company(company: Company, detailed: bool = False) -> Dict[str, Any]:
    payload = {
        "id": str(company.id),
        "name": company.name,
        "description": company.description,
        "address": company.address,
        "created_at": _iso(company.created_at),
        "updated_at": _iso(company.updated_at),
    }
    if detailed:
        payload["counts"] = {
            "service_points": len(company.service_points),
            "users": len(company.users),
        }
        payload["service_points"] = [
            serialize_service_point(p, include_company=False) for p in company.service_points
        ]
        payload["users"] = [
            {
                "id": str(u.id),
                "username": u.username,
                "role": u.role,
                "assigned_points": [
                    {"id": str(a.service_point_id), "name": a.service_point.name if a.service_point else None}
                    for a in u.assignments
                ],
            }
            for u in company.users
        ]
    return payload


def serialize_task(task: CleaningTask) -> Dict[str, Any]:
    return {
        "id": str(task.id),
        "service_point_id": str(task.service_point_id),
        "cleaner_id": str(task.cleaner_id),
        "status": task.status,
        "scheduled_at": _iso(task.scheduled_at),
        "generation_day": _iso(task.generation_day),
        "completed_at": _iso(task.completed_at),
        "photo_before": task.photo_before,
        "photo_after": task.photo_after,
        "photo_damage": task.photo_damage,
        "photos": decode_legacy_photos(task.photos),
        "notes": task.notes,
        "manager_notes": task.manager_notes,
        "created_at": _iso(task.created_at),
        "updated_at": _iso(task.updated_at),
        "service_point": serialize_service_point(task.service_point) if task.service_point else None,
        "cleaner": user_summary(task.cleaner),
    }


def serialize_route(route: Route) -> Dict[str, Any]:
    return {
        "id": str(route.id),
        "name": route.name,
        "company_id": _sid(route.company_id),
        "cleaner_id": str(route.cleaner_id),
        "order_num": route.order_num,
        "cleaner": user_summary(route.cleaner),
        "points": [
            {
                "id": str(rp.id),
                "position": rp.position,
                "service_point": serialize_service_point(rp.service_point) if rp.service_point else None,
            }
            for rp in route.route_points
        ],
        "created_at": _iso(route.created_at),
        "updated_at": _iso(route.updated_at),
    }
