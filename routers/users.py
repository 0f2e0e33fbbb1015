""" User router for account credential changes.
"""

from fastapi import APIRouter, Depends, Response

from typing import Annotated

from schema.security import AuthResponse, MessageResponse
from schema.users import ChangeEmailRequest, ChangePasswordRequest, UserRecord
from security.helpers import get_current_user, get_settings
from services.sessions import SessionManager, get_session_manager
from utils.config import Settings

from .auth import clear_auth_cookies, set_auth_cookies, to_auth_response

router = APIRouter(
    prefix="/api/v1/users",
    tags=["Users"],
)


@router.patch("/me/password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    response: Response,
    current_user: Annotated[UserRecord, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Change the password of the authenticated user.

    Every session of the user is revoked, so all devices have to log in again.

    ## Possible Errors
    - 401 Unauthorized: If the current password is wrong.
    - 422 Unprocessable Entity: If the new password does not meet the password policy.
    """
    await sessions.change_password(current_user, payload)
    clear_auth_cookies(response, settings)
    return MessageResponse(message="Password changed. Please log in again.")


@router.patch("/me/email", response_model=AuthResponse)
async def change_email(
    payload: ChangeEmailRequest,
    response: Response,
    current_user: Annotated[UserRecord, Depends(get_current_user)],
    sessions: Annotated[SessionManager, Depends(get_session_manager)],
    settings: Annotated[Settings, Depends(get_settings)],
):
    """Change the email address of the authenticated user.

    Existing sessions stay signed in; a new access token carrying the new
    address is returned.

    ## Possible Errors
    - 401 Unauthorized: If the password is wrong.
    - 409 Conflict: If the new email is already used by another account.
    """
    result = await sessions.change_email(current_user, payload)
    set_auth_cookies(response, result, settings)
    return to_auth_response(result, settings)
