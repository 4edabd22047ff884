import logging
import secrets
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from app.settings import settings

logger = logging.getLogger(__name__)


@dataclass
class AdminIdentity:
    username: str


security = HTTPBasic(auto_error=False)


def _build_auth_exception(detail: str = "Invalid authentication") -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


def _authenticate_credentials(credentials: HTTPBasicCredentials | None) -> AdminIdentity:
    username = settings.admin_basic_username
    password = settings.admin_basic_password
    if not username or not password:
        logger.warning("admin_auth_unconfigured", extra={"extra": {"path": "/v1/admin", "method": "BASIC"}})
        raise _build_auth_exception()
    if not credentials:
        raise _build_auth_exception()
    if secrets.compare_digest(credentials.username, username) and secrets.compare_digest(
        credentials.password, password
    ):
        return AdminIdentity(username=credentials.username)
    raise _build_auth_exception()


async def require_admin(
    request: Request, credentials: HTTPBasicCredentials | None = Depends(security)
) -> AdminIdentity:
    cached: AdminIdentity | None = getattr(request.state, "admin_identity", None)
    if cached:
        return cached
    identity = _authenticate_credentials(credentials)
    request.state.admin_identity = identity
    return identity
