import uuid
from typing import Optional

import jwt
import structlog
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from passlib.context import CryptContext
from sqlalchemy.orm import Session

from ..config import settings
from ..db import get_db
from ..models.models import User
from ..services.identity import (
    IdentityProviderClient,
    get_identity_client,
    resolve_effective_role,
    role_from_claims,
)


logger = structlog.get_logger(__name__)

pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
http_bearer = HTTPBearer(auto_error=False)


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


class CurrentUser:
    """Authenticated caller: token identity, effective role and the local row (if provisioned)."""

    def __init__(self, username: str, role: str, token: str, user: Optional[User] = None,
                 external_role: Optional[str] = None):
        self.username = username
        self.role = role
        self.token = token
        self.user = user
        self.external_role = external_role

    @property
    def id(self) -> Optional[uuid.UUID]:
        return self.user.id if self.user is not None else None

    @property
    def company_id(self) -> Optional[uuid.UUID]:
        return self.user.company_id if self.user is not None else None


def decode_token(token: str) -> dict:
    try:
        return jwt.decode(token, settings.jwt_secret, algorithms=[settings.jwt_algorithm])
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid or expired token")


def get_token_from_request(
    request: Request,
    creds: Optional[HTTPAuthorizationCredentials] = Depends(http_bearer),
) -> Optional[str]:
    if creds is not None and creds.credentials:
        return creds.credentials
    return request.cookies.get(settings.session_cookie_name)


def get_current_user(
    token: Optional[str] = Depends(get_token_from_request),
    db: Session = Depends(get_db),
    identity: IdentityProviderClient = Depends(get_identity_client),
) -> CurrentUser:
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Access token required")
    payload = decode_token(token)
    token_type = payload.get("type")
    if token_type and token_type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type. Access token required.",
        )
    username = payload.get("sub") or payload.get("username")
    if not username:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Invalid token: no username")
    username = str(username)

    external_role = identity.fetch_external_role(username)
    user = db.query(User).filter(User.username == username).first()
    role = resolve_effective_role(
        username,
        stored_role=user.role if user is not None else None,
        external_role=external_role,
        claim_role=role_from_claims(payload),
    )
    return CurrentUser(username=username, role=role, token=token, user=user, external_role=external_role)


def provision_user(db: Session, current: CurrentUser) -> User:
    """
    Ensure the caller has a local user row.

    Args:
        db: Database session
        current: Authenticated caller

    Returns:
        The existing or newly created User. The password is left unset because
        credentials are owned by the identity provider.
    """
    if current.user is not None:
        return current.user
    user = User(username=current.username, role=current.role, password_hash=None, company_id=None)
    db.add(user)
    db.commit()
    db.refresh(user)
    logger.info("user_auto_provisioned", username=user.username, role=user.role)
    current.user = user
    return user


def require_roles(*allowed_roles: str, provision: bool = False):
    def _dep(current: CurrentUser = Depends(get_current_user), db: Session = Depends(get_db)):
        if current.role not in allowed_roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        if provision:
            provision_user(db, current)
        return current

    return _dep
