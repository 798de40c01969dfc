"""Application-scoped containers for content and signed-in identities."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, TypeVar

from .auth import AuthUser
from .storage import BatchNode, ContentRepository, LiveClassRecord


LOGGER = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class ContentSnapshot:
    batches: Tuple[BatchNode, ...] = ()
    live_classes: Tuple[LiveClassRecord, ...] = ()
    version: int = 0
    loaded: bool = False

    def find_batch(self, batch_id: int) -> Optional[BatchNode]:
        for node in self.batches:
            if node.batch.id == batch_id:
                return node
        return None


SnapshotCallback = Callable[[ContentSnapshot], None]


@dataclass
class Subscription:
    callback: SnapshotCallback
    active: bool = field(default=True)

    def cancel(self) -> None:
        self.active = False


class ContentStore:
    """Hold the current content snapshot and broadcast every refresh.

    Writes go through :meth:`mutate`, which reloads the whole tree after the
    write succeeds. A load that is superseded by a newer load or a
    :meth:`clear` is discarded when it completes.
    """

    def __init__(self, repository: ContentRepository) -> None:
        self._repository = repository
        self._lock = threading.Lock()
        self._snapshot = ContentSnapshot()
        self._generation = 0
        self._subscriptions: List[Subscription] = []

    @property
    def snapshot(self) -> ContentSnapshot:
        with self._lock:
            return self._snapshot

    def subscribe(self, callback: SnapshotCallback) -> Subscription:
        subscription = Subscription(callback)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _begin_load(self) -> int:
        with self._lock:
            self._generation += 1
            return self._generation

    def _publish(self, token: int, snapshot: ContentSnapshot) -> bool:
        with self._lock:
            if token != self._generation:
                LOGGER.debug("Discarding superseded content load (token=%s)", token)
                return False
            self._snapshot = snapshot
            self._subscriptions = [item for item in self._subscriptions if item.active]
            listeners = list(self._subscriptions)
        for subscription in listeners:
            if subscription.active:
                subscription.callback(snapshot)
        return True

    def refresh(self) -> ContentSnapshot:
        token = self._begin_load()
        tree = self._repository.load_tree()
        live_classes = self._repository.list_live_classes()
        snapshot = ContentSnapshot(
            batches=tuple(tree),
            live_classes=tuple(live_classes),
            version=token,
            loaded=True,
        )
        if self._publish(token, snapshot):
            LOGGER.debug(
                "Content snapshot refreshed (version=%s, batches=%s, live=%s)",
                token,
                len(snapshot.batches),
                len(snapshot.live_classes),
            )
        return self.snapshot

    def ensure_loaded(self) -> ContentSnapshot:
        current = self.snapshot
        if current.loaded:
            return current
        return self.refresh()

    def clear(self) -> None:
        token = self._begin_load()
        self._publish(token, ContentSnapshot(version=token))
        LOGGER.debug("Content snapshot cleared")

    def mutate(self, write: Callable[[], T]) -> T:
        """Run *write* and reload; a failed write leaves the snapshot untouched."""

        result = write()
        self.refresh()
        return result


class IdentityStore:
    """Signed-in identities keyed by session token."""

    def __init__(self, content: ContentStore) -> None:
        self._content = content
        self._lock = threading.Lock()
        self._identities: Dict[str, AuthUser] = {}

    def sign_in(self, token: str, user: AuthUser) -> None:
        with self._lock:
            first = not self._identities
            self._identities[token] = user
        if first:
            LOGGER.debug("First identity signed in; hydrating content")
            self._content.refresh()

    def _remove(self, tokens: List[str]) -> None:
        with self._lock:
            removed = [self._identities.pop(token) for token in tokens if token in self._identities]
            last = bool(removed) and not self._identities
        if last:
            LOGGER.debug("Last identity signed out; clearing content")
            self._content.clear()

    def sign_out(self, token: str) -> None:
        self._remove([token])

    def sign_out_user(self, user_id: int) -> None:
        """Drop every identity held by *user_id*."""

        with self._lock:
            tokens = [token for token, user in self._identities.items() if user.id == user_id]
        self._remove(tokens)

    def get(self, token: Optional[str]) -> Optional[AuthUser]:
        if not token:
            return None
        with self._lock:
            return self._identities.get(token)

    def __len__(self) -> int:
        with self._lock:
            return len(self._identities)


class PortalState:
    """The single object bundling the containers injected into the app."""

    def __init__(self, repository: ContentRepository) -> None:
        self.repository = repository
        self.content = ContentStore(repository)
        self.identity = IdentityStore(self.content)


__all__ = [
    "ContentSnapshot",
    "ContentStore",
    "IdentityStore",
    "PortalState",
    "Subscription",
]
