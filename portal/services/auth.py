"""Roles, credentials and signed admin sessions."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence, Tuple

from itsdangerous import BadSignature, SignatureExpired, URLSafeTimedSerializer
from werkzeug.security import check_password_hash, generate_password_hash

from .storage import ContentRepository, UserProfileRecord


LOGGER = logging.getLogger(__name__)

SUPER_ADMIN = "super_admin"
ADMIN = "admin"
UPLOADER = "uploader"
ROLES: Tuple[str, ...] = (SUPER_ADMIN, ADMIN, UPLOADER)
ADMIN_ROLES = frozenset({SUPER_ADMIN, ADMIN})

SESSION_COOKIE = "portal_session"
SESSION_MAX_AGE = 7 * 24 * 60 * 60
_SESSION_SALT = "portal-session"


class AuthenticationError(RuntimeError):
    """Raised when credentials or a session token cannot be accepted."""


class PermissionDenied(RuntimeError):
    """Raised when the signed-in identity lacks the required role."""


@dataclass(frozen=True)
class AuthUser:
    id: int
    email: str
    role: str
    assigned_batches: Tuple[int, ...] = field(default_factory=tuple)

    @classmethod
    def from_record(cls, record: UserProfileRecord) -> "AuthUser":
        return cls(
            id=record.id,
            email=record.email,
            role=record.role,
            assigned_batches=tuple(record.assigned_batches),
        )

    @property
    def is_admin(self) -> bool:
        return self.role in ADMIN_ROLES

    @property
    def is_super_admin(self) -> bool:
        return self.role == SUPER_ADMIN


def hash_password(password: str) -> str:
    return generate_password_hash(password)


def can_create_batch(user: AuthUser) -> bool:
    return user.is_admin


def can_manage_batch(user: AuthUser, batch_id: int) -> bool:
    if user.is_admin:
        return True
    return user.role == UPLOADER and int(batch_id) in user.assigned_batches


def can_delete_content(user: AuthUser) -> bool:
    return user.is_admin


def can_manage_users(user: AuthUser) -> bool:
    return user.is_super_admin


def can_assign_role(user: AuthUser, role: str) -> bool:
    return role in ROLES and can_manage_users(user)


def require(allowed: bool, action: str) -> None:
    if not allowed:
        raise PermissionDenied(f"Not allowed to {action}")


class SessionSigner:
    """Issue and verify signed session tokens carrying a user id."""

    def __init__(self, secret_key: str, *, max_age: int = SESSION_MAX_AGE) -> None:
        self._serializer = URLSafeTimedSerializer(secret_key, salt=_SESSION_SALT)
        self._max_age = max_age

    @property
    def max_age(self) -> int:
        return self._max_age

    def issue(self, user: AuthUser) -> str:
        return self._serializer.dumps({"uid": user.id})

    def verify(self, token: str) -> int:
        try:
            data = self._serializer.loads(token, max_age=self._max_age)
        except SignatureExpired as error:
            raise AuthenticationError("Session expired") from error
        except BadSignature as error:
            raise AuthenticationError("Invalid session") from error
        try:
            return int(data["uid"])
        except (KeyError, TypeError, ValueError) as error:
            raise AuthenticationError("Invalid session") from error


class AuthService:
    """Check credentials against stored profiles and manage accounts."""

    def __init__(self, repository: ContentRepository, signer: SessionSigner) -> None:
        self._repository = repository
        self._signer = signer

    @property
    def signer(self) -> SessionSigner:
        return self._signer

    def authenticate(self, email: str, password: str) -> AuthUser:
        record = self._repository.find_user_by_email(email.strip().lower())
        if record is None or not check_password_hash(record.password_hash, password):
            LOGGER.info("Rejected sign-in for '%s'", email)
            raise AuthenticationError("Invalid email or password")
        LOGGER.info("User '%s' signed in (role=%s)", record.email, record.role)
        return AuthUser.from_record(record)

    def resolve_token(self, token: Optional[str]) -> AuthUser:
        if not token:
            raise AuthenticationError("Not signed in")
        user_id = self._signer.verify(token)
        record = self._repository.get_user(user_id)
        if record is None:
            raise AuthenticationError("Account no longer exists")
        return AuthUser.from_record(record)

    def create_user(
        self,
        email: str,
        password: str,
        role: str,
        *,
        assigned_batches: Sequence[int] = (),
    ) -> int:
        if role not in ROLES:
            raise ValueError(f"Unknown role '{role}'")
        if not password:
            raise ValueError("Password must not be empty")
        return self._repository.add_user(
            email.strip().lower(),
            role,
            hash_password(password),
            assigned_batches=assigned_batches,
        )

    def delete_user(self, actor: AuthUser, user_id: int) -> bool:
        require(can_manage_users(actor), "manage users")
        record = self._repository.get_user(user_id)
        if record is None:
            return False
        if record.role == SUPER_ADMIN:
            raise PermissionDenied("The super admin account cannot be deleted")
        return self._repository.remove_user(user_id)


__all__ = [
    "ADMIN",
    "ADMIN_ROLES",
    "AuthService",
    "AuthUser",
    "AuthenticationError",
    "PermissionDenied",
    "ROLES",
    "SESSION_COOKIE",
    "SESSION_MAX_AGE",
    "SUPER_ADMIN",
    "SessionSigner",
    "UPLOADER",
    "can_assign_role",
    "can_create_batch",
    "can_delete_content",
    "can_manage_batch",
    "can_manage_users",
    "hash_password",
    "require",
]
