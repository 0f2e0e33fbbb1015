"""
Security models for session persistence.
"""
from datetime import datetime, timezone
from typing import Annotated

import pymongo
from pydantic import Field
from pymongo import IndexModel

from beanie import Document, Indexed


class RefreshToken(Document):
    """Durable record of an issued refresh token."""

    token: Annotated[str, Indexed(unique=True)]  # Signed refresh token as handed to the client
    user_id: Annotated[str, Indexed()]  # Subject the token was issued to
    expires_at: Annotated[datetime, Field()]
    created_at: Annotated[datetime, Field(default_factory=lambda: datetime.now(timezone.utc))]

    class Settings:
        name = "refresh_tokens"
        indexes = [
            # Let MongoDB purge records once they expire
            IndexModel([("expires_at", pymongo.ASCENDING)], expireAfterSeconds=0),
        ]
