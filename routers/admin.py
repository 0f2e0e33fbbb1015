"""Admin router for account moderation and rate limit maintenance."""

from fastapi import APIRouter, Depends, Path

from typing import Annotated

from schema.security import MessageResponse
from schema.users import UpdateAccountStatusRequest, UserRecord, UserSummary
from security.helpers import require_admin
from services.sessions import SessionManager, get_session_manager

router = APIRouter(
    prefix="/api/v1/admin",
    tags=["Admin"],
)


@router.patch("/users/{user_id}", response_model=UserSummary)
async def update_account_status(
    user_id: Annotated[str, Path(min_length=1, max_length=64)],
    payload: UpdateAccountStatusRequest,
    admin: Annotated[UserRecord, Depends(require_admin)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Activate or deactivate an account, or change its role.

    Deactivated accounts lose all their sessions immediately.

    ## Possible Errors
    - 403 Forbidden: If the caller is not an admin.
    - 404 Not Found: If the account does not exist.
    """
    return await sessions.set_account_status(user_id, payload)


@router.post("/rate-limits/{client_ip}/reset", response_model=MessageResponse)
async def reset_login_rate_limit(
    client_ip: Annotated[str, Path(min_length=1, max_length=64)],
    admin: Annotated[UserRecord, Depends(require_admin)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
):
    """Clear the login attempt budget of a client IP."""
    await sessions.reset_login_attempts(client_ip)
    return MessageResponse(message=f"Login attempts reset for {client_ip}")
