"""Dispute repository and per-dispute lock arena.

The engine talks to storage only through ``DisputeRepository``.  The
default in-memory backend hands out deep copies, so callers can never
mutate stored state behind the engine's back; a mutated copy takes
effect only once it is passed to ``save_dispute``.
"""

from __future__ import annotations

import threading
from abc import ABC, abstractmethod
from collections.abc import Iterator
from contextlib import contextmanager

from pledge_dispute_engine.schemas import Dispute, Evidence, Vote


class DisputeRepository(ABC):
    """Abstract storage for disputes and their append-only child records."""

    @abstractmethod
    def get_dispute(self, dispute_id: str) -> Dispute | None:
        """Return a copy of the dispute, or None if unknown."""
        ...

    @abstractmethod
    def save_dispute(self, dispute: Dispute) -> None:
        """Insert or replace the dispute keyed by its id."""
        ...

    @abstractmethod
    def list_disputes(self) -> list[Dispute]:
        """Return copies of every stored dispute, in insertion order."""
        ...

    @abstractmethod
    def add_evidence(self, evidence: Evidence) -> None:
        ...

    @abstractmethod
    def list_evidence(self, dispute_id: str) -> list[Evidence]:
        ...

    @abstractmethod
    def add_vote(self, vote: Vote) -> None:
        ...

    @abstractmethod
    def list_votes(self, dispute_id: str) -> list[Vote]:
        ...


class InMemoryDisputeRepository(DisputeRepository):
    """Dict-backed repository.  Process-local; lost on restart."""

    def __init__(self) -> None:
        self._disputes: dict[str, Dispute] = {}
        self._evidence: dict[str, list[Evidence]] = {}
        self._votes: dict[str, list[Vote]] = {}
        self._lock = threading.Lock()

    def get_dispute(self, dispute_id: str) -> Dispute | None:
        with self._lock:
            dispute = self._disputes.get(dispute_id)
            return dispute.model_copy(deep=True) if dispute is not None else None

    def save_dispute(self, dispute: Dispute) -> None:
        stored = dispute.model_copy(deep=True)
        with self._lock:
            self._disputes[stored.id] = stored

    def list_disputes(self) -> list[Dispute]:
        with self._lock:
            return [d.model_copy(deep=True) for d in self._disputes.values()]

    def add_evidence(self, evidence: Evidence) -> None:
        stored = evidence.model_copy(deep=True)
        with self._lock:
            self._evidence.setdefault(stored.dispute_id, []).append(stored)

    def list_evidence(self, dispute_id: str) -> list[Evidence]:
        with self._lock:
            return [e.model_copy(deep=True) for e in self._evidence.get(dispute_id, [])]

    def add_vote(self, vote: Vote) -> None:
        stored = vote.model_copy(deep=True)
        with self._lock:
            self._votes.setdefault(stored.dispute_id, []).append(stored)

    def list_votes(self, dispute_id: str) -> list[Vote]:
        with self._lock:
            return [v.model_copy(deep=True) for v in self._votes.get(dispute_id, [])]


class DisputeLocks:
    """Arena of re-entrant locks, one per dispute id.

    Mutations of the same dispute serialize; unrelated disputes never
    contend.  Re-entrancy lets an operation call another on the same
    dispute (close_voting -> resolve, appeal -> escalate).
    """

    def __init__(self) -> None:
        self._locks: dict[str, threading.RLock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, dispute_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(dispute_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[dispute_id] = lock
            return lock

    @contextmanager
    def hold(self, dispute_id: str) -> Iterator[None]:
        lock = self._lock_for(dispute_id)
        with lock:
            yield
