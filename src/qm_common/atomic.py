"""All-or-nothing execution over in-memory participants.

A participant exposes snapshot() and restore(snapshot). `atomic` snapshots
every participant up front and restores all of them if the body raises, so
a failed operation never leaves partial state behind. This is the in-memory
counterpart of wrapping clearing in db.begin_nested().
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Participant(Protocol):
    def snapshot(self) -> Any: ...

    def restore(self, snapshot: Any) -> None: ...


@contextmanager
def atomic(*participants: Participant | None) -> Iterator[None]:
    unique: list[Participant] = []
    seen: set[int] = set()
    for p in participants:
        if p is None or id(p) in seen:
            continue
        seen.add(id(p))
        unique.append(p)

    snapshots = [(p, p.snapshot()) for p in unique]
    try:
        yield
    except BaseException:
        for p, snap in reversed(snapshots):
            p.restore(snap)
        logger.debug("Rolled back %d participants", len(snapshots))
        raise
