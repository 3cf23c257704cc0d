from __future__ import annotations

import asyncio
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header, Path, Response

from accountkernel.api.error_handling import error_response
from accountkernel.api.schemas import (
    Envelope,
    LoginRequest,
    MessageResponse,
    PasswordChangeRequest,
    PasswordResetConfirm,
    PasswordResetRequest,
    RefreshTokenBody,
    RegisterRequest,
    RegisterResponse,
    ResendCodeRequest,
    SessionResponse,
    UserSummary,
    VerifyCodeRequest,
)
from accountkernel.config import Settings
from accountkernel.logging import get_logger
from accountkernel.service.outcomes import AuthContext, FlowResult, SessionGrant
from accountkernel.service.runtime import get_runtime

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")

ACCESS_COOKIE = "accessToken"
REFRESH_COOKIE = "refreshToken"


def _apply_session_cookies(response: Response, grant: SessionGrant, settings: Settings) -> None:
    # Each cookie lives as long as the token inside it
    response.set_cookie(
        ACCESS_COOKIE,
        grant.access_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=settings.access_token_ttl_minutes * 60,
        path="/",
    )
    response.set_cookie(
        REFRESH_COOKIE,
        grant.refresh_token,
        httponly=True,
        secure=settings.cookie_secure,
        samesite="lax",
        max_age=settings.refresh_token_ttl_days * 24 * 60 * 60,
        path="/",
    )


def _clear_session_cookies(response: Response, settings: Settings) -> None:
    for name in (ACCESS_COOKIE, REFRESH_COOKIE):
        response.delete_cookie(name, path="/", secure=settings.cookie_secure, samesite="lax")


def _session_envelope(grant: SessionGrant) -> Envelope:
    return Envelope(
        status="ok",
        data=SessionResponse(
            message=grant.message,
            warnings=grant.warnings,
            token=grant.access_token,
            access_token=grant.access_token,
            refresh_token=grant.refresh_token,
            user=UserSummary(**grant.account.to_dict()),
        ),
    )


def _message_envelope(result: FlowResult) -> Envelope:
    return Envelope(
        status="ok",
        data=MessageResponse(message=result.message, warnings=result.warnings),
    )


def _extract_bearer(header: Optional[str]) -> Optional[str]:
    if not header:
        return None
    if not header.lower().startswith("bearer "):
        return None
    return header.split(" ", 1)[1].strip()


async def get_principal(
    authorization: Optional[str] = Header(None),
    access_cookie: Optional[str] = Cookie(None, alias=ACCESS_COOKIE),
) -> AuthContext:
    token = _extract_bearer(authorization) or access_cookie
    return get_runtime().kernel.authenticate(token).unwrap()


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    """Create an unverified account and mail its verification code.

    Raises:
        400: If email or password is missing or malformed
        409: If the email is already registered
    """
    runtime = get_runtime()
    result = (
        await asyncio.to_thread(
            runtime.kernel.register, body.email, body.password, name=body.name
        )
    ).unwrap()
    return Envelope(
        status="ok",
        data=RegisterResponse(
            message=result.message,
            warnings=result.warnings,
            user=UserSummary(**result.account.to_dict()),
        ),
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest, response: Response):
    """Authenticate with email and password and set the session cookies.

    Raises:
        401: If credentials are invalid
        403: If the email address is not verified yet
    """
    runtime = get_runtime()
    grant = (
        await asyncio.to_thread(runtime.kernel.login, body.email, body.password)
    ).unwrap()
    _apply_session_cookies(response, grant, runtime.settings)
    return _session_envelope(grant)


@router.post("/auth/logout", response_model=Envelope, tags=["auth"])
async def logout(
    response: Response,
    body: Optional[RefreshTokenBody] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
):
    runtime = get_runtime()
    token = refresh_cookie or (body.refresh_token if body else None)
    outcome = runtime.kernel.logout(token)
    # Cookies are cleared whatever happened to the stored token
    if not outcome.ok:
        error = outcome.error
        failed = error_response(
            error.status_code, error.message, error.detail or None, code=error.error_code
        )
        _clear_session_cookies(failed, runtime.settings)
        return failed
    _clear_session_cookies(response, runtime.settings)
    result = outcome.value
    return Envelope(status="ok", data=MessageResponse(message=result.message))


@router.post("/auth/refresh", response_model=Envelope, tags=["auth"])
async def refresh(
    response: Response,
    body: Optional[RefreshTokenBody] = None,
    refresh_cookie: Optional[str] = Cookie(None, alias=REFRESH_COOKIE),
):
    runtime = get_runtime()
    token = refresh_cookie or (body.refresh_token if body else None)
    grant = runtime.kernel.refresh(token).unwrap()
    _apply_session_cookies(response, grant, runtime.settings)
    return _session_envelope(grant)


@router.post("/auth/verify-code", response_model=Envelope, tags=["auth"])
async def verify_code(body: VerifyCodeRequest, response: Response):
    """Confirm the emailed code; success also logs the user in."""
    runtime = get_runtime()
    grant = (
        await asyncio.to_thread(runtime.kernel.verify_email, body.email, body.code)
    ).unwrap()
    _apply_session_cookies(response, grant, runtime.settings)
    return _session_envelope(grant)


@router.post("/auth/resend-code", response_model=Envelope, tags=["auth"])
async def resend_code(body: ResendCodeRequest):
    runtime = get_runtime()
    # Mail goes out over blocking SMTP
    result = (
        await asyncio.to_thread(runtime.kernel.resend_verification, body.email)
    ).unwrap()
    return _message_envelope(result)


@router.post("/auth/reset/request", response_model=Envelope, tags=["auth"])
async def request_reset(body: PasswordResetRequest):
    runtime = get_runtime()
    result = (
        await asyncio.to_thread(runtime.kernel.request_password_reset, body.email)
    ).unwrap()
    return _message_envelope(result)


@router.post("/auth/reset/{token}", response_model=Envelope, tags=["auth"])
async def reset_password(
    body: PasswordResetConfirm,
    token: str = Path(..., max_length=256),
):
    runtime = get_runtime()
    result = (
        await asyncio.to_thread(runtime.kernel.reset_password, token, body.password)
    ).unwrap()
    return _message_envelope(result)


@router.post("/auth/password/change", response_model=Envelope, tags=["auth"])
async def change_password(
    body: PasswordChangeRequest,
    principal: AuthContext = Depends(get_principal),
):
    """Change the signed-in user's password; the current password is required."""
    runtime = get_runtime()
    result = (
        await asyncio.to_thread(
            runtime.kernel.change_password,
            principal.account_id,
            body.old_password,
            body.new_password,
        )
    ).unwrap()
    return _message_envelope(result)
