"""
Identity provider client

Authentication lives in the external identity provider (MintAuth). This module
talks to it over HTTP for three things:
- looking up a user's current project role (time-boxed, failures mean "unknown")
- proxying password logins
- mirroring admin user CRUD (best effort, never raises)
"""
from typing import Optional, Dict, List, Any

import httpx
import structlog

from ..config import settings
from ..models.models import UserRole


logger = structlog.get_logger(__name__)

KNOWN_ROLES = {r.value for r in UserRole}


class IdentityProviderError(Exception):
    """The identity provider could not be reached."""


class LoginResult:
    def __init__(self, status_code: int, body: Dict[str, Any], set_cookies: List[str]):
        self.status_code = status_code
        self.body = body
        self.set_cookies = set_cookies

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300


class IdentityProviderClient:
    """Client for interacting with the identity provider API"""

    def __init__(self, base_url: Optional[str] = None, project_name: Optional[str] = None):
        self.base_url = (base_url or settings.identity_provider_url).rstrip("/")
        self.project_name = project_name or settings.identity_project_name

    def _request(self, method: str, endpoint: str, token: Optional[str] = None,
                 timeout: Optional[float] = None, **kwargs) -> httpx.Response:
        """Make HTTP request to the identity provider; raises httpx errors on transport failure"""
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        headers = kwargs.pop("headers", {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        with httpx.Client(timeout=timeout or settings.identity_admin_timeout_s) as client:
            return client.request(method, url, headers=headers, **kwargs)

    # ---- Role lookup ----

    def fetch_external_role(self, username: str) -> Optional[str]:
        """
        Look up the user's role for this project.

        Args:
            username: Identity provider username (the token subject)

        Returns:
            "ADMIN" for provider admins, the project role if the user is a member,
            otherwise None. Any transport or decoding failure also yields None.
        """
        try:
            resp = self._request(
                "GET",
                "/auth/user-projects",
                params={"username": username},
                timeout=settings.identity_timeout_s,
            )
            if resp.status_code != 200:
                return None
            data = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("identity_role_lookup_failed", username=username, error=str(e))
            return None

        if not isinstance(data, dict):
            return None
        if data.get("is_admin") is True:
            return UserRole.ADMIN.value
        for project in data.get("projects") or []:
            if isinstance(project, dict) and project.get("project_name") == self.project_name:
                role = project.get("role")
                return role if role in KNOWN_ROLES else None
        return None

    # ---- Login proxy ----

    def login(self, username: str, password: str) -> LoginResult:
        try:
            resp = self._request(
                "POST",
                "/auth/login",
                json={"username": username, "password": password},
            )
        except httpx.HTTPError as e:
            logger.error("identity_login_unreachable", username=username, error=str(e))
            raise IdentityProviderError(str(e)) from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}
        return LoginResult(resp.status_code, body, resp.headers.get_list("set-cookie"))

    # ---- Mirroring ----

    def _find_user_id(self, username: str, token: str) -> Optional[Any]:
        resp = self._request("GET", "/admin/users", token=token, params={"limit": 1000})
        if resp.status_code != 200:
            logger.warning("identity_user_list_failed", status=resp.status_code)
            return None
        users = resp.json()
        if not isinstance(users, list):
            return None
        for u in users:
            if isinstance(u, dict) and u.get("username") == username:
                return u.get("id")
        logger.warning("identity_user_not_found", username=username)
        return None

    def create_user(self, username: str, password: str, role: str,
                    email: Optional[str] = None, token: Optional[str] = None) -> None:
        if not token:
            logger.warning("identity_mirror_skipped", action="create", username=username)
            return
        is_admin = role == UserRole.ADMIN.value
        payload = {
            "username": username,
            "password": password,
            "email": email,
            "is_admin": is_admin,
            "is_active": True,
            "projects": [] if is_admin else [{"project_name": self.project_name, "role": role}],
        }
        try:
            resp = self._request("POST", "/admin/users", token=token, json=payload)
            if resp.status_code >= 400:
                logger.error("identity_mirror_failed", action="create", username=username,
                             status=resp.status_code, body=resp.text[:500])
                return
            logger.info("identity_mirror_ok", action="create", username=username)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("identity_mirror_failed", action="create", username=username, error=str(e))

    def update_user(self, username: str, email: Optional[str] = None, role: Optional[str] = None,
                    token: Optional[str] = None) -> None:
        if not token:
            logger.warning("identity_mirror_skipped", action="update", username=username)
            return
        try:
            user_id = self._find_user_id(username, token)
            if user_id is None:
                return
            update: Dict[str, Any] = {}
            if email is not None:
                update["email"] = email
            if role is not None:
                is_admin = role == UserRole.ADMIN.value
                update["is_admin"] = is_admin
                if not is_admin:
                    self._request(
                        "PUT",
                        f"/admin/users/{user_id}/projects",
                        token=token,
                        json={"projects": [{"project_name": self.project_name, "role": role}]},
                    )
            if not update:
                return
            resp = self._request("PUT", f"/admin/users/{user_id}", token=token, json=update)
            if resp.status_code >= 400:
                logger.error("identity_mirror_failed", action="update", username=username,
                             status=resp.status_code, body=resp.text[:500])
                return
            logger.info("identity_mirror_ok", action="update", username=username)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("identity_mirror_failed", action="update", username=username, error=str(e))

    def delete_user(self, username: str, token: Optional[str] = None) -> None:
        if not token:
            logger.warning("identity_mirror_skipped", action="delete", username=username)
            return
        try:
            user_id = self._find_user_id(username, token)
            if user_id is None:
                return
            resp = self._request("DELETE", f"/admin/users/{user_id}", token=token)
            if resp.status_code >= 400:
                logger.error("identity_mirror_failed", action="delete", username=username,
                             status=resp.status_code, body=resp.text[:500])
                return
            logger.info("identity_mirror_ok", action="delete", username=username)
        except (httpx.HTTPError, ValueError) as e:
            logger.error("identity_mirror_failed", action="delete", username=username, error=str(e))


def get_identity_client() -> IdentityProviderClient:
    return IdentityProviderClient()


def default_role_for(username: str) -> str:
    return UserRole.ADMIN.value if username == "admin" else UserRole.CLEANER.value


def role_from_claims(payload: Dict[str, Any]) -> Optional[str]:
    if payload.get("is_admin") is True:
        return UserRole.ADMIN.value
    role = payload.get("role")
    return role if role in KNOWN_ROLES else None


def resolve_effective_role(
    username: str,
    stored_role: Optional[str],
    external_role: Optional[str],
    claim_role: Optional[str] = None,
) -> str:
    """
    Pick the role a request acts with.

    Args:
        username: Token subject
        stored_role: Role on the local user row, if the user exists
        external_role: Role returned by the provider lookup, None if unknown
        claim_role: Role decoded from the token itself

    Returns:
        The first known value of external, claim, stored, then the default
        for the username.
    """
    return external_role or claim_role or stored_role or default_role_for(username)
