import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..db import get_db
from ..schemas.auth import LoginRequest
from ..services.assignment_service import drop_assignments_unless_cleaner
from ..services.identity import IdentityProviderClient, IdentityProviderError, get_identity_client
from ..services.serializers import serialize_user
from .security import CurrentUser, get_current_user, provision_user


logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/login")
def login(req: LoginRequest, identity: IdentityProviderClient = Depends(get_identity_client)):
    try:
        result = identity.login(req.username, req.password)
    except IdentityProviderError:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail="Failed to connect to authentication service")

    if not result.ok:
        detail = result.body.get("detail") or "Invalid credentials"
        logger.info("login_rejected", username=req.username, status=result.status_code)
        return JSONResponse(status_code=result.status_code, content={"detail": detail})

    body = dict(result.body)
    body["user"] = body.get("user") or {"username": req.username}
    response = JSONResponse(content=body)
    for cookie in result.set_cookies:
        response.headers.append("set-cookie", cookie)
    logger.info("login_succeeded", username=req.username, cookies=len(result.set_cookies))
    return response


@router.get("/verify")
def verify(db: Session = Depends(get_db), me: CurrentUser = Depends(get_current_user)):
    if me.user is None:
        user = provision_user(db, me)
    else:
        user = me.user
        if me.external_role and me.external_role != user.role:
            logger.info("user_role_synced", username=user.username, old=user.role, new=me.external_role)
            user.role = me.external_role
            drop_assignments_unless_cleaner(db, user)
            db.commit()
            db.refresh(user)
    payload = serialize_user(user)
    # "admin" mirrors "user" for older portal clients
    return {"admin": payload, "user": payload}


@router.get("/me")
def me(current: CurrentUser = Depends(get_current_user)):
    if current.user is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return serialize_user(current.user)
