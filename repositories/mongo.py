"""MongoDB repository backed by Beanie documents."""

import logfire

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from beanie import PydanticObjectId
from bson import ObjectId
from pydantic import BaseModel
from pymongo.errors import DuplicateKeyError

from models.helpers import UserRole
from models.security import RefreshToken
from models.users import StudentProfile, User
from schema.security import RefreshTokenRecord
from schema.users import UserRecord
from utils.errors import ConflictError, NotFoundError

from .base import UserRepository


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # Mongo hands back naive datetimes unless the client is tz aware
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _to_user_record(user: User) -> UserRecord:
    return UserRecord(
        id=str(user.id),
        email=user.email,
        password_hash=user.password_hash,
        role=user.role,
        is_active=user.is_active,
        email_verified=user.email_verified,
        last_login_at=_as_utc(user.last_login_at),
        created_at=_as_utc(user.created_at),
        profile=user.profile,
    )


def _to_token_record(record: RefreshToken) -> RefreshTokenRecord:
    return RefreshTokenRecord(
        token=record.token,
        user_id=record.user_id,
        expires_at=_as_utc(record.expires_at),
    )


class MongoUserRepository(UserRepository):
    """Repository used in deployments. Requires `init_beanie` to have run."""

    async def _get_document(self, user_id: str) -> Optional[User]:
        if not ObjectId.is_valid(user_id):
            return None
        return await User.get(PydanticObjectId(user_id))

    async def get_user_by_email(self, email: str) -> Optional[UserRecord]:
        user = await User.find_one(User.email == email)
        return _to_user_record(user) if user else None

    async def get_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        user = await self._get_document(user_id)
        return _to_user_record(user) if user else None

    async def create_user(
        self,
        email: str,
        password_hash: Optional[str],
        profile: StudentProfile,
        role: UserRole = UserRole.STUDENT,
        email_verified: bool = False,
    ) -> UserRecord:
        new_user = User(
            email=email,
            password_hash=password_hash,
            role=role,
            email_verified=email_verified,
            profile=profile,
        )
        try:
            await new_user.insert()
        except DuplicateKeyError:
            logfire.warning(f"Attempt to create duplicate user: {email}")
            raise ConflictError("User already exists")
        return _to_user_record(new_user)

    async def update_user(self, user_id: str, **fields) -> UserRecord:
        user = await self._get_document(user_id)
        if user is None:
            raise NotFoundError("User not found")

        changes = {}
        for name, value in fields.items():
            if isinstance(value, BaseModel) and name == "profile":
                value = StudentProfile(**value.model_dump())
            changes[name] = value

        if not changes:
            return _to_user_record(user)

        # Field-level $set, untouched fields keep their stored values
        try:
            await user.set(changes)
        except DuplicateKeyError:
            raise ConflictError("Email is already in use")
        return _to_user_record(user)

    async def find_or_create_user(
        self, email: str, profile: StudentProfile, email_verified: bool = False
    ) -> Tuple[UserRecord, bool]:
        existing = await User.find_one(User.email == email)
        if existing:
            return _to_user_record(existing), False

        try:
            return await self.create_user(
                email, None, profile, email_verified=email_verified
            ), True
        except ConflictError:
            # Lost a race against a concurrent callback for the same identity
            existing = await User.find_one(User.email == email)
            if existing is None:
                raise
            return _to_user_record(existing), False

    async def add_refresh_token(
        self, token: str, user_id: str, expires_at: datetime
    ) -> RefreshTokenRecord:
        record = RefreshToken(token=token, user_id=user_id, expires_at=expires_at)
        try:
            await record.insert()
        except DuplicateKeyError:
            raise ConflictError("Refresh token already exists")
        return _to_token_record(record)

    async def get_refresh_token(self, token: str) -> Optional[RefreshTokenRecord]:
        record = await RefreshToken.find_one(RefreshToken.token == token)
        return _to_token_record(record) if record else None

    async def delete_refresh_token(self, token: str) -> bool:
        # The unique index on `token` makes deleted_count an atomic claim
        result = await RefreshToken.find(RefreshToken.token == token).delete()
        return bool(result and result.deleted_count)

    async def delete_user_refresh_tokens(self, user_id: str) -> int:
        result = await RefreshToken.find(RefreshToken.user_id == user_id).delete()
        return result.deleted_count if result else 0

    async def list_user_refresh_tokens(self, user_id: str) -> List[RefreshTokenRecord]:
        records = await RefreshToken.find(RefreshToken.user_id == user_id).to_list()
        return [_to_token_record(record) for record in records]
