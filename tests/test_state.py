from __future__ import annotations

import pytest

from portal.services.auth import AuthUser
from portal.services.state import ContentStore, PortalState
from portal.services.storage import ContentRepository, PersistenceError


def test_mutation_refetches_and_broadcasts(repository: ContentRepository) -> None:
    store = ContentStore(repository)
    received = []
    store.subscribe(received.append)

    batch_id = store.mutate(lambda: repository.add_batch("Physics"))

    assert received and received[-1].loaded
    assert received[-1].find_batch(batch_id) is not None
    assert store.snapshot is received[-1]


def test_failed_write_leaves_snapshot_unchanged(repository: ContentRepository) -> None:
    store = ContentStore(repository)
    store.mutate(lambda: repository.add_batch("Stable"))
    before = store.snapshot

    with pytest.raises(PersistenceError):
        store.mutate(lambda: repository.add_subject(12345, "Orphan"))

    assert store.snapshot is before


def test_cancelled_subscription_receives_nothing(repository: ContentRepository) -> None:
    store = ContentStore(repository)
    received = []
    subscription = store.subscribe(received.append)
    subscription.cancel()

    store.refresh()

    assert received == []


def test_superseded_load_is_discarded(repository: ContentRepository) -> None:
    store = ContentStore(repository)
    repository.add_batch("Initial")
    original_load_tree = repository.load_tree
    calls = []

    def interleaved_load_tree():
        calls.append(1)
        tree = original_load_tree()
        if len(calls) == 1:
            store.clear()
        return tree

    repository.load_tree = interleaved_load_tree  # type: ignore[method-assign]

    store.refresh()

    assert store.snapshot.loaded is False
    assert store.snapshot.batches == ()


def test_first_sign_in_hydrates_and_last_sign_out_clears(repository: ContentRepository) -> None:
    repository.add_batch("Hydrated")
    state = PortalState(repository)
    admin = AuthUser(1, "a@example.com", "admin")
    other = AuthUser(2, "b@example.com", "admin")

    state.identity.sign_in("t1", admin)
    assert state.content.snapshot.loaded
    assert len(state.content.snapshot.batches) == 1

    state.identity.sign_in("t2", other)
    state.identity.sign_out("t1")
    assert state.content.snapshot.loaded

    state.identity.sign_out("t2")
    assert not state.content.snapshot.loaded
    assert state.identity.get("t2") is None


def test_signing_out_a_user_drops_all_their_identities(repository: ContentRepository) -> None:
    state = PortalState(repository)
    owner = AuthUser(1, "o@example.com", "super_admin")
    helper = AuthUser(2, "h@example.com", "admin")

    state.identity.sign_in("owner", owner)
    state.identity.sign_in("helper-laptop", helper)
    state.identity.sign_in("helper-phone", helper)
    state.identity.sign_out_user(2)

    assert len(state.identity) == 1
    assert state.identity.get("helper-phone") is None
    assert state.content.snapshot.loaded

    state.identity.sign_out_user(99)
    state.identity.sign_out("owner")
    assert len(state.identity) == 0
    assert not state.content.snapshot.loaded


def test_ensure_loaded_only_loads_once(repository: ContentRepository) -> None:
    store = ContentStore(repository)

    first = store.ensure_loaded()
    second = store.ensure_loaded()

    assert first is second
