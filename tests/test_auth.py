from __future__ import annotations

import pytest

from portal.services.auth import (
    AuthService,
    AuthUser,
    AuthenticationError,
    PermissionDenied,
    SessionSigner,
    can_assign_role,
    can_create_batch,
    can_manage_batch,
    can_manage_users,
)
from portal.services.storage import ContentRepository


def _service(repository: ContentRepository) -> AuthService:
    return AuthService(repository, SessionSigner("test-secret"))


def test_authenticate_and_resolve_session(repository: ContentRepository) -> None:
    service = _service(repository)
    service.create_user("Admin@Example.com", "pw", "admin")

    user = service.authenticate("admin@example.com", "pw")
    token = service.signer.issue(user)

    assert service.resolve_token(token) == user
    with pytest.raises(AuthenticationError):
        service.authenticate("admin@example.com", "wrong")
    with pytest.raises(AuthenticationError):
        service.resolve_token(token + "tampered")
    with pytest.raises(AuthenticationError):
        service.resolve_token(None)


def test_password_is_stored_hashed(repository: ContentRepository) -> None:
    _service(repository).create_user("u@example.com", "secret", "uploader")

    record = repository.find_user_by_email("u@example.com")
    assert record is not None
    assert record.password_hash != "secret"


def test_role_predicates() -> None:
    super_admin = AuthUser(1, "s@example.com", "super_admin")
    admin = AuthUser(2, "a@example.com", "admin")
    uploader = AuthUser(3, "u@example.com", "uploader", (7,))

    assert can_create_batch(admin) and not can_create_batch(uploader)
    assert can_manage_batch(uploader, 7)
    assert not can_manage_batch(uploader, 8)
    assert can_manage_batch(admin, 8)
    assert can_assign_role(super_admin, "admin")
    assert not can_assign_role(admin, "admin")
    assert not can_assign_role(admin, "uploader")
    assert can_assign_role(super_admin, "uploader")
    assert can_manage_users(super_admin)
    assert not can_manage_users(admin) and not can_manage_users(uploader)
    assert not can_assign_role(uploader, "uploader")


def test_super_admin_cannot_be_deleted(repository: ContentRepository) -> None:
    service = _service(repository)
    owner_id = service.create_user("owner@example.com", "pw", "super_admin")
    helper_id = service.create_user("helper@example.com", "pw", "uploader")
    owner = AuthUser(owner_id, "owner@example.com", "super_admin")

    with pytest.raises(PermissionDenied):
        service.delete_user(owner, owner_id)
    assert service.delete_user(owner, helper_id) is True
    assert service.delete_user(owner, helper_id) is False


def test_only_super_admin_deletes_users(repository: ContentRepository) -> None:
    service = _service(repository)
    admin_id = service.create_user("admin@example.com", "pw", "admin")
    helper_id = service.create_user("helper@example.com", "pw", "uploader")
    admin = AuthUser(admin_id, "admin@example.com", "admin")

    with pytest.raises(PermissionDenied):
        service.delete_user(admin, helper_id)
    assert repository.get_user(helper_id) is not None
