"""SQLModel database models."""

from usersvc.models.base import TimestampMixin, generate_nanoid, utcnow
from usersvc.models.otp import OtpRecord, OtpStatus
from usersvc.models.profile import Gender, Profile, VerificationLevel
from usersvc.models.refresh_token import RefreshToken
from usersvc.models.role import ADMIN_ROLE, DEFAULT_ROLES, Role, UserRole
from usersvc.models.sms_attempt import SmsAttempt
from usersvc.models.user import AuthProvider, User, UserStatus
from usersvc.models.verification import (
    PROFESSIONAL_TYPES,
    Verification,
    VerificationStatus,
    VerificationType,
)

__all__ = [
    "ADMIN_ROLE",
    "DEFAULT_ROLES",
    "PROFESSIONAL_TYPES",
    "AuthProvider",
    "Gender",
    "OtpRecord",
    "OtpStatus",
    "Profile",
    "RefreshToken",
    "Role",
    "SmsAttempt",
    "TimestampMixin",
    "User",
    "UserRole",
    "UserStatus",
    "Verification",
    "VerificationLevel",
    "VerificationStatus",
    "VerificationType",
    "generate_nanoid",
    "utcnow",
]
