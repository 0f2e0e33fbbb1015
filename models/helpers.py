"""Contains all models commonly used across different modules."""
from enum import Enum


class UserRole(str, Enum):
    """Enumeration of user roles."""
    STUDENT = "STUDENT"
    EMPLOYER = "EMPLOYER"
    ADMIN = "ADMIN"


class TokenType(str, Enum):
    """Enumeration of the token kinds minted by the token codec."""

    ACCESS = "access"
    REFRESH = "refresh"


class EducationLevel(str, Enum):
    """Education levels a student can pick during onboarding."""

    HIGH_SCHOOL = "HIGH_SCHOOL"
    BACHELORS = "BACHELORS"
    MASTERS = "MASTERS"
    PHD = "PHD"
    OTHER = "OTHER"
