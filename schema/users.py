"""Contains the schema definition for requests and responses related to users
"""

import re

from datetime import datetime

from pydantic import BaseModel, Field, EmailStr, computed_field, field_validator
from typing import Annotated, List, Optional

from models.helpers import UserRole, EducationLevel
from models.users import StudentProfile

# Fields that count towards profile completion
PROFILE_COMPLETION_FIELDS = (
    "full_name",
    "avatar_url",
    "bio",
    "education_level",
    "university",
    "graduation_year",
    "major",
    "country",
    "cv_url",
)

PASSWORD_MIN_LENGTH = 10


def validate_password_strength(password: str) -> str:
    """Enforce the password policy shared by registration and password change.

    Raises:
        ValueError: When the password misses one of the required character classes.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    if not re.search(r"[A-Z]", password):
        raise ValueError("Password must contain at least one uppercase letter")
    if not re.search(r"\d", password):
        raise ValueError("Password must contain at least one number")
    if not re.search(r"[^A-Za-z0-9]", password):
        raise ValueError("Password must contain at least one special character")
    return password


class UserRecord(BaseModel):
    """Account as returned by the persistence layer."""

    id: str
    email: str
    password_hash: Optional[str] = None
    role: UserRole = UserRole.STUDENT
    is_active: bool = True
    email_verified: bool = False
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    profile: StudentProfile = Field(default_factory=StudentProfile)


class ProfileSummary(StudentProfile):
    """Profile as exposed to clients, with its completion percentage."""

    @computed_field
    @property
    def completion(self) -> int:
        filled = [
            field
            for field in PROFILE_COMPLETION_FIELDS
            if getattr(self, field) not in (None, "")
        ]
        return round(len(filled) / len(PROFILE_COMPLETION_FIELDS) * 100)


class UserSummary(BaseModel):
    """Normalized user summary returned by every successful auth action."""

    id: str
    email: EmailStr
    role: UserRole
    profile: ProfileSummary

    @classmethod
    def from_record(cls, user: UserRecord) -> "UserSummary":
        return cls(
            id=user.id,
            email=user.email,
            role=user.role,
            profile=ProfileSummary(**user.profile.model_dump()),
        )


class RegisterRequest(BaseModel):
    """Describes the structure of the registration request."""

    email: Annotated[EmailStr, Field(max_length=254)]
    password: Annotated[str, Field(max_length=128)]
    full_name: Annotated[str, Field(min_length=2, max_length=100)]

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        return validate_password_strength(v)


class LoginRequest(BaseModel):
    """Describes the structure of the login request."""

    email: Annotated[EmailStr, Field(max_length=254)]
    password: Annotated[str, Field(min_length=1, max_length=128)]


class ChangePasswordRequest(BaseModel):
    current_password: Annotated[str, Field(min_length=1, max_length=128)]
    new_password: Annotated[str, Field(max_length=128)]

    @field_validator("new_password")
    @classmethod
    def validate_new_password(cls, v: str) -> str:
        return validate_password_strength(v)


class ChangeEmailRequest(BaseModel):
    password: Annotated[str, Field(min_length=1, max_length=128)]
    new_email: Annotated[EmailStr, Field(max_length=254)]


class OnboardingRequest(BaseModel):
    """Second registration step: academic details of a student."""

    education_level: Annotated[Optional[EducationLevel], Field(default=None)]
    university: Annotated[Optional[str], Field(default=None, max_length=200)]
    graduation_year: Annotated[Optional[int], Field(default=None, ge=1950, le=2100)]
    major: Annotated[Optional[str], Field(default=None, max_length=200)]
    country: Annotated[Optional[str], Field(default=None, max_length=56)]
    goals: Annotated[Optional[List[str]], Field(default=None)]

    @field_validator("education_level", mode="before")
    @classmethod
    def normalize_education_level(cls, v):
        if isinstance(v, str):
            return v.upper()
        return v


class UpdateAccountStatusRequest(BaseModel):
    """Admin request to (de)activate an account or change its role."""

    is_active: Annotated[Optional[bool], Field(default=None)]
    role: Annotated[Optional[UserRole], Field(default=None)]


class OnboardingResponse(BaseModel):
    profile: ProfileSummary
