"""Checks whether an owner may start a recording session."""

import logging
import threading
from abc import ABC, abstractmethod
from collections import Counter
from typing import Iterable

logger = logging.getLogger(__name__)


class EntitlementChecker(ABC):
    """Decides whether an owner may open a new session."""

    @abstractmethod
    def can_use(self, owner_id: str) -> bool:
        """Return True if ``owner_id`` may start a session now."""

    def record_use(self, owner_id: str) -> None:
        """Called once a session was actually created for ``owner_id``."""

    def release_use(self, owner_id: str) -> None:
        """Undo ``record_use`` for a session that was discarded unused."""


class AllowAllEntitlements(EntitlementChecker):

    def can_use(self, owner_id: str) -> bool:
        return True


class QuotaEntitlements(EntitlementChecker):
    """Subscribers are always allowed; everyone else gets a few free sessions."""

    def __init__(self, subscribers: Iterable[str] = (), free_sessions: int = 3):
        self.subscribers = set(subscribers)
        self.free_sessions = free_sessions
        self._usage = Counter()
        self._lock = threading.Lock()
        logger.info(f"QuotaEntitlements: {len(self.subscribers)} subscribers, {free_sessions} free sessions")

    def can_use(self, owner_id: str) -> bool:
        if owner_id in self.subscribers:
            return True
        with self._lock:
            return self._usage[owner_id] < self.free_sessions

    def record_use(self, owner_id: str) -> None:
        if owner_id in self.subscribers:
            return
        with self._lock:
            self._usage[owner_id] += 1
            used = self._usage[owner_id]
        logger.debug(f"Owner {owner_id} used {used}/{self.free_sessions} free sessions")

    def release_use(self, owner_id: str) -> None:
        if owner_id in self.subscribers:
            return
        with self._lock:
            if self._usage[owner_id] > 0:
                self._usage[owner_id] -= 1

    def used(self, owner_id: str) -> int:
        with self._lock:
            return self._usage[owner_id]


def create_entitlements(config) -> EntitlementChecker:
    mode = config.get('entitlements.mode', 'allow_all')
    if mode == "allow_all":
        return AllowAllEntitlements()
    if mode == "quota":
        return QuotaEntitlements(
            subscribers=config.get('entitlements.subscribers', []) or [],
            free_sessions=int(config.get('entitlements.free_sessions', 3)),
        )
    raise ValueError(f"Unknown entitlements mode: {mode}")
