from fastapi import APIRouter, Depends, Request, Response
from fastapi.security import HTTPAuthorizationCredentials
from pydantic import BaseModel
from typing import Optional
from api.middleware.auth_middleware import cookie_name, is_authenticated, security
from utils.dependencies import get_logger, get_session_auth, get_settings
from utils.errors import AuthError, RateLimitError

DEFAULT_COOKIE_MAX_AGE = 30 * 24 * 3600

auth_router = APIRouter()


class LoginRequest(BaseModel):
    """Login request body"""

    token: str = ""


class AuthStatusResponse(BaseModel):
    """Auth status response"""

    enabled: bool
    authenticated: bool


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


@auth_router.post("/login")
def login(
    body: LoginRequest,
    request: Request,
    response: Response,
    session_auth=Depends(get_session_auth),
    settings=Depends(get_settings),
    logger=Depends(get_logger),
):
    """
    Exchange the access token for a session cookie.

    Args:
        body: Login request carrying the access token

    Returns:
        {"ok": true} with the session cookie set

    Raises:
        RateLimitError: 429 when the client is locked out
        AuthError: 401 when the token does not match
    """
    if not session_auth.enabled:
        return {"ok": True, "enabled": False}

    ip = client_ip(request)
    try:
        session_value = session_auth.login(body.token, ip)
    except RateLimitError:
        logger.warning(f"Login rate limited for {ip}")
        raise
    except AuthError:
        logger.warning(f"Failed login attempt from {ip}")
        raise

    auth_settings = settings.get("auth") or {}
    response.set_cookie(
        key=cookie_name(settings),
        value=session_value,
        max_age=auth_settings.get("cookie_max_age", DEFAULT_COOKIE_MAX_AGE),
        httponly=True,
        samesite="strict",
        path="/",
    )
    logger.info(f"Login from {ip}")
    return {"ok": True}


@auth_router.post("/logout")
def logout(response: Response, settings=Depends(get_settings)):
    response.delete_cookie(key=cookie_name(settings), path="/")
    return {"ok": True}


@auth_router.get("/status", response_model=AuthStatusResponse)
def get_auth_status(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    session_auth=Depends(get_session_auth),
    settings=Depends(get_settings),
):
    """
    Report whether auth is enabled and whether this client holds a session.

    Returns:
        AuthStatusResponse with current auth status
    """
    bearer = credentials.credentials if credentials else None
    return AuthStatusResponse(
        enabled=session_auth.enabled,
        authenticated=is_authenticated(request, session_auth, settings, bearer),
    )
