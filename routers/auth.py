"""
Auth router for handling session issuance, rotation and revocation endpoints.
"""

import logfire

from fastapi import APIRouter, Body, Depends, Request, Response, status

from typing import Annotated, Optional

from schema.security import (
    AuthResponse,
    AuthResult,
    ExternalIdentityRequest,
    MessageResponse,
    RefreshTokenRequest,
)
from schema.users import (
    LoginRequest,
    OnboardingRequest,
    OnboardingResponse,
    RegisterRequest,
    UserRecord,
    UserSummary,
)
from security.helpers import (
    ACCESS_TOKEN_COOKIE,
    REFRESH_TOKEN_COOKIE,
    get_client_ip,
    get_current_user,
    get_settings,
)
from services.sessions import SessionManager, get_session_manager
from utils.config import Settings

router = APIRouter(
    prefix="/api/v1/auth",
    tags=["Auth"],
)


def _cookie_policy(settings: Settings) -> dict:
    # Plain HTTP local development cannot carry Secure cookies
    if settings.is_production:
        return {"httponly": True, "secure": True, "samesite": "strict", "path": "/"}
    return {"httponly": True, "secure": False, "samesite": "lax", "path": "/"}


def set_auth_cookies(response: Response, result: AuthResult, settings: Settings) -> None:
    """Deliver the issued tokens as cookies in addition to the response body."""
    policy = _cookie_policy(settings)

    response.set_cookie(
        ACCESS_TOKEN_COOKIE,
        result.access_token,
        max_age=settings.access_token_ttl_seconds,
        **policy,
    )
    if result.refresh_token:
        response.set_cookie(
            REFRESH_TOKEN_COOKIE,
            result.refresh_token,
            max_age=settings.refresh_token_ttl_seconds,
            **policy,
        )


def clear_auth_cookies(response: Response, settings: Settings) -> None:
    policy = _cookie_policy(settings)
    response.delete_cookie(ACCESS_TOKEN_COOKIE, **policy)
    response.delete_cookie(REFRESH_TOKEN_COOKIE, **policy)


def to_auth_response(result: AuthResult, settings: Settings) -> AuthResponse:
    return AuthResponse(
        user=result.user,
        access_token=result.access_token,
        refresh_token=result.refresh_token,
        expires_in=settings.access_token_ttl_seconds,
    )


def _presented_refresh_token(
    request: Request, payload: Optional[RefreshTokenRequest]
) -> Optional[str]:
    # An explicit body token wins over the cookie
    if payload and payload.refresh_token:
        return payload.refresh_token
    return request.cookies.get(REFRESH_TOKEN_COOKIE)


@router.post(
    "/register",
    status_code=status.HTTP_201_CREATED,
    response_model=AuthResponse,
)
async def register(
    payload: RegisterRequest,
    response: Response,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Create a student account and sign it in.

    ## Possible Errors
    - 409 Conflict: If a user with the provided email already exists.
    - 422 Unprocessable Entity: If the password does not meet the password policy.

    ## Error response structure
    ```json
    {
        "detail": "Sample error message"
    }
    ```
    """
    result = await sessions.register(payload)
    set_auth_cookies(response, result, settings)
    return to_auth_response(result, settings)


@router.post("/login", response_model=AuthResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Login endpoint that returns both access and refresh tokens.

    ## Possible Errors
    - 401 Unauthorized: If the email or password is wrong.
    - 403 Forbidden: If the account has been deactivated.
    - 429 Too Many Requests: If the client exhausted its login attempts. The body
      carries `retry_after` in seconds, mirrored in the `Retry-After` header.
    """
    result = await sessions.login(payload, get_client_ip(request))
    set_auth_cookies(response, result, settings)
    return to_auth_response(result, settings)


@router.post("/refresh", response_model=AuthResponse)
async def refresh_access_token(
    request: Request,
    response: Response,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
    payload: Annotated[Optional[RefreshTokenRequest], Body()] = None,
):
    """Exchange a refresh token for a new token pair.

    The refresh token is read from the body, or from the `refreshToken` cookie
    when the body carries none. Each refresh token can be exchanged once.
    """
    result = await sessions.refresh(_presented_refresh_token(request, payload))
    set_auth_cookies(response, result, settings)
    return to_auth_response(result, settings)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
    payload: Annotated[Optional[RefreshTokenRequest], Body()] = None,
):
    """Logout endpoint that revokes the presented refresh token and clears cookies."""
    await sessions.logout(_presented_refresh_token(request, payload))
    clear_auth_cookies(response, settings)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all_devices(
    response: Response,
    current_user: Annotated[UserRecord, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Logout from all devices by revoking all refresh tokens for the user."""
    await sessions.logout_everywhere(current_user)
    clear_auth_cookies(response, settings)
    return MessageResponse(message="Logged out from all devices")


@router.post("/callback", response_model=AuthResponse)
async def exchange_external_identity(
    payload: ExternalIdentityRequest,
    response: Response,
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Sign in with an identity assertion issued by the trusted identity provider.

    An account is created on first sign-in and reused afterwards.

    ## Possible Errors
    - 401 Unauthorized: If the assertion is invalid, expired or external sign-in
      is not configured.
    - 403 Forbidden: If the matching account has been deactivated.
    """
    result = await sessions.exchange_external_identity(payload.assertion)
    set_auth_cookies(response, result, settings)
    return to_auth_response(result, settings)


@router.get("/me", response_model=UserSummary)
async def get_me(current_user: Annotated[UserRecord, Depends(get_current_user)]):
    """Get the summary of the authenticated user."""
    return UserSummary.from_record(current_user)


@router.post("/onboarding", response_model=OnboardingResponse)
async def complete_onboarding(
    payload: OnboardingRequest,
    current_user: Annotated[UserRecord, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Complete the second signup step with academic details."""
    profile = await sessions.complete_onboarding(current_user, payload)
    logfire.info(f"Onboarding completed for user {current_user.id}")
    return OnboardingResponse(profile=profile)
