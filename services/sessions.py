"""Service orchestrating every credential flow of the auth API."""

import logfire

from datetime import datetime, timezone

from fastapi import Request
from passlib.context import CryptContext
from starlette.concurrency import run_in_threadpool

from typing import Optional

from models.users import StudentProfile
from repositories.base import UserRepository
from schema.security import AccessClaims, AuthResult
from schema.users import (
    ChangeEmailRequest,
    ChangePasswordRequest,
    LoginRequest,
    OnboardingRequest,
    ProfileSummary,
    RegisterRequest,
    UpdateAccountStatusRequest,
    UserRecord,
    UserSummary,
)
from security.helpers import get_password_hash, verify_password
from security.refresh_token import RefreshTokenStore
from security.tokens import TokenCodec
from utils.config import Settings
from utils.errors import (
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    RateLimitedError,
    UnauthorizedError,
)

from .rate_limiter import RateLimiter


class SessionManager:
    """Issues, rotates and revokes sessions.

    Every successful flow ends with a fresh access token; flows that start a
    session also mint a refresh token and persist it in the refresh token store.
    """

    def __init__(
        self,
        repository: UserRepository,
        codec: TokenCodec,
        store: RefreshTokenStore,
        login_limiter: RateLimiter,
        settings: Settings,
        pwd_context: CryptContext,
    ):
        self.repository = repository
        self.codec = codec
        self.store = store
        self.login_limiter = login_limiter
        self.settings = settings
        self.pwd_context = pwd_context

    async def _hash_password(self, password: str) -> str:
        return await run_in_threadpool(get_password_hash, password, self.pwd_context)

    async def _verify_password(self, password: str, password_hash: Optional[str]) -> bool:
        if not password_hash:
            # Burn the same time as a real check so unknown accounts are not observable
            await run_in_threadpool(self.pwd_context.dummy_verify)
            return False
        return await run_in_threadpool(
            verify_password, password, password_hash, self.pwd_context
        )

    def _issue_access(self, user: UserRecord) -> str:
        return self.codec.issue_access(
            AccessClaims(subject_id=user.id, email=user.email, role=user.role)
        )

    async def _start_session(self, user: UserRecord) -> AuthResult:
        access_token = self._issue_access(user)
        refresh_token = self.codec.issue_refresh(user.id)
        await self.store.persist(refresh_token, user.id, self.codec.refresh_expires_at())

        return AuthResult(
            user=UserSummary.from_record(user),
            access_token=access_token,
            refresh_token=refresh_token,
        )

    async def register(self, payload: RegisterRequest) -> AuthResult:
        """Create an account with a default student profile and sign it in.

        Raises:
            ConflictError: Raised when the email is already registered.
        """
        email = str(payload.email).lower()

        with logfire.span(f"Registering new user: {email}"):
            if await self.repository.get_user_by_email(email):
                logfire.warning(f"Attempt to register duplicate user: {email}")
                raise ConflictError("User already exists")

            password_hash = await self._hash_password(payload.password)

            user = await self.repository.create_user(
                email=email,
                password_hash=password_hash,
                profile=StudentProfile(full_name=payload.full_name),
            )
            logfire.info(f"Created new user {user.id} with email: {email}")

            return await self._start_session(user)

    async def login(self, payload: LoginRequest, client_ip: str) -> AuthResult:
        """Authenticate with email and password.

        The login budget of `client_ip` is consulted before any credential is
        looked at, and cleared after a successful login.

        Raises:
            RateLimitedError: Raised when the IP exhausted its login budget.
            InvalidCredentialsError: Raised when the email or password is wrong.
            ForbiddenError: Raised when the account is deactivated or, if
                required, the email is not verified yet.
        """
        limit = await self.login_limiter.consume(client_ip)
        if not limit.allowed:
            logfire.warning(f"Login rate limit exceeded for {client_ip}")
            raise RateLimitedError(
                limit.retry_after_seconds,
                "Too many login attempts. Please try again in 15 minutes.",
            )

        email = str(payload.email).lower()
        user = await self.repository.get_user_by_email(email)

        password_ok = await self._verify_password(
            payload.password, user.password_hash if user else None
        )
        if user is None or not password_ok:
            logfire.info(f"Failed login attempt from {client_ip}")
            raise InvalidCredentialsError()

        if not user.is_active:
            logfire.warning(f"Login attempt on deactivated account {user.id}")
            raise ForbiddenError()

        if self.settings.require_email_verification and not user.email_verified:
            raise ForbiddenError("Please verify your email before logging in.")

        user = await self.repository.update_user(
            user.id, last_login_at=datetime.now(timezone.utc)
        )
        result = await self._start_session(user)

        await self.login_limiter.reset(client_ip)
        logfire.info(f"User {user.id} logged in successfully")

        return result

    async def refresh(self, refresh_token: Optional[str]) -> AuthResult:
        """Exchange a refresh token for a new access and refresh token pair.

        The presented token is consumed: it can never be exchanged again.

        Raises:
            UnauthorizedError: Raised when the token is missing, invalid, expired,
                revoked or already used, or when its user can no longer sign in.
        """
        if not refresh_token:
            raise UnauthorizedError("Refresh token required")

        subject_id = await self.store.is_valid(refresh_token)
        if subject_id is None:
            raise UnauthorizedError("Invalid or expired refresh token")

        if not await self.store.consume(refresh_token):
            # Another request rotated this token between validation and now
            logfire.warning(f"Concurrent reuse of a refresh token for user {subject_id}")
            raise UnauthorizedError("Invalid or expired refresh token")

        user = await self.repository.get_user_by_id(subject_id)
        if user is None or not user.is_active:
            raise UnauthorizedError("User not found")

        logfire.info(f"Tokens refreshed for user {user.id}")
        return await self._start_session(user)

    async def logout(self, refresh_token: Optional[str]) -> None:
        """Revoke the presented refresh token. Succeeds even if it is already gone."""
        if refresh_token:
            await self.store.revoke(refresh_token)

    async def logout_everywhere(self, user: UserRecord) -> int:
        """Revoke every refresh token of `user`."""
        revoked = await self.store.revoke_all(user.id)
        logfire.info(f"All devices logged out for user {user.id}")
        return revoked

    async def change_password(self, user: UserRecord, payload: ChangePasswordRequest) -> None:
        """Replace the password of `user` and end all of their sessions.

        Raises:
            InvalidCredentialsError: Raised when the current password is wrong.
        """
        if not await self._verify_password(payload.current_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect")

        password_hash = await self._hash_password(payload.new_password)
        await self.repository.update_user(user.id, password_hash=password_hash)
        await self.store.revoke_all(user.id)

        logfire.info(f"Password changed for user {user.id}")

    async def change_email(self, user: UserRecord, payload: ChangeEmailRequest) -> AuthResult:
        """Move `user` to a new email address.

        Existing sessions stay valid. A new access token is issued because the
        current one still names the old address.

        Raises:
            InvalidCredentialsError: Raised when the password is wrong.
            ConflictError: Raised when the new email belongs to another account.
        """
        if not await self._verify_password(payload.password, user.password_hash):
            raise InvalidCredentialsError("Password is incorrect")

        new_email = str(payload.new_email).lower()
        if new_email != user.email:
            if await self.repository.get_user_by_email(new_email):
                raise ConflictError("Email is already in use")
            user = await self.repository.update_user(
                user.id, email=new_email, email_verified=False
            )
            logfire.info(f"Email changed for user {user.id}")

        return AuthResult(
            user=UserSummary.from_record(user), access_token=self._issue_access(user)
        )

    async def exchange_external_identity(self, assertion: str) -> AuthResult:
        """Sign in with an identity already verified by the external provider.

        Raises:
            UnauthorizedError: Raised when the assertion does not verify.
            ForbiddenError: Raised when the matching account is deactivated.
        """
        identity = self.codec.verify_external_identity(assertion)
        if identity is None:
            raise UnauthorizedError("Invalid identity assertion")

        email = str(identity.email).lower()

        with logfire.span(f"Exchanging external identity for: {email}"):
            user, created = await self.repository.find_or_create_user(
                email,
                StudentProfile(full_name=identity.full_name),
                email_verified=identity.email_verified,
            )
            if created:
                logfire.info(f"Created user {user.id} from external identity")

            if not user.is_active:
                logfire.warning(f"External sign-in on deactivated account {user.id}")
                raise ForbiddenError()

            updates = {"last_login_at": datetime.now(timezone.utc)}
            if identity.email_verified and not user.email_verified:
                updates["email_verified"] = True
            user = await self.repository.update_user(user.id, **updates)

            return await self._start_session(user)

    async def complete_onboarding(
        self, user: UserRecord, payload: OnboardingRequest
    ) -> ProfileSummary:
        """Store the academic details collected in the second signup step."""
        changes = payload.model_dump(exclude_unset=True)
        if "goals" in changes and changes["goals"] is None:
            changes["goals"] = []

        profile = user.profile.model_copy(update=changes)
        user = await self.repository.update_user(user.id, profile=profile)
        return ProfileSummary(**user.profile.model_dump())

    async def set_account_status(
        self, user_id: str, payload: UpdateAccountStatusRequest
    ) -> UserSummary:
        """Change the role or active flag of an account.

        Deactivating an account also revokes all of its refresh tokens.

        Raises:
            NotFoundError: Raised when no account has id `user_id`.
        """
        changes = payload.model_dump(exclude_none=True)

        user = await self.repository.get_user_by_id(user_id)
        if user is None:
            raise NotFoundError("User not found")

        if changes:
            user = await self.repository.update_user(user_id, **changes)
            logfire.info(f"Account {user_id} updated by admin: {changes}")

        if changes.get("is_active") is False:
            await self.store.revoke_all(user_id)

        return UserSummary.from_record(user)

    async def reset_login_attempts(self, client_ip: str) -> None:
        """Clear the login budget of `client_ip`."""
        await self.login_limiter.reset(client_ip)
        logfire.info(f"Login attempts reset for {client_ip}")


def get_session_manager(request: Request) -> SessionManager:
    """Build a session manager from the collaborators chosen at startup."""
    state = request.app.state
    return SessionManager(
        repository=state.repository,
        codec=state.token_codec,
        store=RefreshTokenStore(state.repository, state.token_codec),
        login_limiter=state.login_limiter,
        settings=state.settings,
        pwd_context=state.pwd_context,
    )
