from datetime import datetime, timezone

from pydantic import Field, EmailStr, BaseModel, field_serializer
from typing import Annotated, List, Optional

import pymongo
from beanie import Document, Indexed, PydanticObjectId

from .helpers import UserRole, EducationLevel


class StudentProfile(BaseModel):
    """Default profile created together with every account.

    Embedded in the user document so that account and profile are written in a
    single insert.
    """
    full_name: Annotated[Optional[str], Field(default=None, max_length=100, serialization_alias="fullName")]
    avatar_url: Annotated[Optional[str], Field(default=None, serialization_alias="avatarUrl")]
    bio: Annotated[Optional[str], Field(default=None, max_length=1000)]
    education_level: Annotated[Optional[EducationLevel], Field(default=None, serialization_alias="educationLevel")]
    university: Annotated[Optional[str], Field(default=None, max_length=200)]
    graduation_year: Annotated[Optional[int], Field(default=None, serialization_alias="graduationYear")]
    major: Annotated[Optional[str], Field(default=None, max_length=200)]
    country: Annotated[Optional[str], Field(default=None, max_length=56)]
    cv_url: Annotated[Optional[str], Field(default=None, serialization_alias="cvUrl")]
    goals: Annotated[List[str], Field(default=[])]


class User(Document):
    """Account document backing the Mongo repository."""
    email: Annotated[EmailStr, Indexed(index_type=pymongo.ASCENDING, unique=True), Field(max_length=254)]
    password_hash: Annotated[Optional[str], Field(default=None)]  # None for accounts created from an external identity
    role: Annotated[UserRole, Field(default=UserRole.STUDENT)]
    is_active: Annotated[bool, Field(default=True)]
    email_verified: Annotated[bool, Field(default=False)]
    last_login_at: Annotated[Optional[datetime], Field(default=None)]
    created_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(timezone.utc))]
    profile: Annotated[StudentProfile, Field(default_factory=StudentProfile)]

    @field_serializer("id")
    def convert_pydantic_object_id_to_string(self, id: PydanticObjectId):
        return str(id)

    class Settings:
        name = "users"
