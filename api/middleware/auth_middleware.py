from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from typing import Optional
from utils.dependencies import get_session_auth, get_settings

DEFAULT_COOKIE_NAME = "openclaw_manager_session"

security = HTTPBearer(auto_error=False)


def cookie_name(settings: dict) -> str:
    return (settings.get("auth") or {}).get("cookie_name") or DEFAULT_COOKIE_NAME


def is_authenticated(request: Request, session_auth, settings, bearer=None) -> bool:
    if not session_auth.enabled:
        return True
    if session_auth.verify(request.cookies.get(cookie_name(settings))):
        return True
    return bool(bearer) and session_auth.verify_bearer(bearer)


async def require_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session_auth=Depends(get_session_auth),
    settings=Depends(get_settings),
) -> Optional[str]:
    """
    Gate a route behind the manager session.

    Accepts the session cookie set by /auth/login, or an Authorization
    header carrying either the access token or a session value.

    Args:
        request: The FastAPI request object
        credentials: HTTP Authorization credentials from Bearer token

    Returns:
        "operator" if authenticated, None if auth is disabled

    Raises:
        HTTPException: 401 if auth is enabled and no valid session is presented
    """
    if not session_auth.enabled:
        return None

    bearer = credentials.credentials if credentials else None
    if not is_authenticated(request, session_auth, settings, bearer):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return "operator"
