"""Per-user serialization of ledger mutations."""

from __future__ import annotations

import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator

from sqlalchemy import select
from sqlalchemy.orm import Session

from ..models import User


@dataclass
class _UserLock:
    lock: threading.RLock = field(default_factory=threading.RLock)
    holders: int = 0


_registry_lock = threading.Lock()
# Entries live only while some thread holds or waits on them
_user_locks: dict[int, _UserLock] = {}


def _checkout(user_id: int) -> _UserLock:
    with _registry_lock:
        entry = _user_locks.get(user_id)
        if entry is None:
            entry = _user_locks[user_id] = _UserLock()
        entry.holders += 1
        return entry


def _release(user_id: int, entry: _UserLock) -> None:
    with _registry_lock:
        entry.holders -= 1
        if entry.holders == 0:
            del _user_locks[user_id]


@contextmanager
def user_ledger_scope(session: Session, user_id: int) -> Iterator[User | None]:
    """Hold the user's exclusive scope for one "mutate then recompute" unit.

    Combines an in-process lock keyed by user with a row lock on the user,
    so replays for the same user never interleave. Different users never
    contend. Yields the locked user, or ``None`` if it does not exist.
    """

    entry = _checkout(user_id)
    try:
        with entry.lock:
            stmt = select(User).where(User.id == user_id).with_for_update(of=User)
            user = session.execute(stmt).scalar_one_or_none()
            yield user
    finally:
        _release(user_id, entry)
