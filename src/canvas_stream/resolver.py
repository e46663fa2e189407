"""
Online dependency resolver for forward references.

Streamed elements may reference ids that have not been created yet: an edge
can arrive before either endpoint, and a node can name a group whose
container does not exist.  Instead of collecting everything and running a
topological sort at the end, work is submitted as it arrives:

  * if every required id already exists, the action runs immediately;
  * otherwise it waits in an adjacency map keyed by the missing id and runs
    as soon as ``notify_created`` reports the last missing id;
  * if waiting would close a cycle (A needs B, B needs A) the item is
    created directly instead, with its dependencies still missing.

``flush`` hands back whatever never resolved so the caller can decide what to
do with it at end of stream.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional

logger = logging.getLogger(__name__)


@dataclass
class PendingItem:
    key: str
    requires: tuple[str, ...]
    action: Callable[[], Any]
    payload: Any = None
    done: bool = False


@dataclass
class DependencyResolver:
    """Runs actions once the ids they depend on exist.

    ``is_available`` answers whether an id has been created.  Each item's
    ``key`` is itself an id that other items may depend on.
    """
    is_available: Callable[[str], bool]
    waiting: dict[str, list[PendingItem]] = field(default_factory=dict)
    pending: dict[str, PendingItem] = field(default_factory=dict)
    resolving: set[str] = field(default_factory=set)

    def missing(self, requires: Iterable[str]) -> list[str]:
        return [r for r in requires if not self.is_available(r)]

    def submit(
        self,
        key: str,
        requires: Iterable[str],
        action: Callable[[], Any],
        payload: Any = None,
    ) -> bool:
        """Run ``action`` now if possible, otherwise queue it.

        Returns True when the action ran during this call.
        """
        item = PendingItem(key=key, requires=tuple(requires), action=action, payload=payload)
        missing = self.missing(item.requires)
        if not missing:
            self._run(item)
            return True

        if self._closes_cycle(key, missing):
            logger.debug(f"Dependency cycle through {key}, creating it directly")
            self._run(item)
            return True

        self.pending[key] = item
        for dep in missing:
            self.waiting.setdefault(dep, []).append(item)
        logger.debug(f"{key} waiting for {', '.join(missing)}")
        return False

    def notify_created(self, element_id: str) -> list[str]:
        """Run every queued item whose last missing id was ``element_id``.

        Returns the keys of the items that ran, including any that became
        runnable because an item run here created another id.
        """
        if element_id in self.resolving:
            return []

        ran: list[str] = []
        self.resolving.add(element_id)
        try:
            for item in self.waiting.pop(element_id, []):
                if item.done or self.missing(item.requires):
                    continue
                self._run(item)
                ran.append(item.key)
                if self.is_available(item.key):
                    ran.extend(self.notify_created(item.key))
        finally:
            self.resolving.discard(element_id)
        return ran

    def flush(self) -> list[PendingItem]:
        """Remove and return every item that never resolved."""
        unresolved = [item for item in self.pending.values() if not item.done]
        self.pending.clear()
        self.waiting.clear()
        return unresolved

    def __len__(self) -> int:
        return sum(1 for item in self.pending.values() if not item.done)

    def _run(self, item: PendingItem) -> None:
        item.done = True
        self.pending.pop(item.key, None)
        item.action()

    def _closes_cycle(self, key: str, missing: list[str]) -> bool:
        """True when some missing id is itself (transitively) waiting on ``key``."""
        stack = list(missing)
        seen: set[str] = set()
        while stack:
            dep = stack.pop()
            if dep == key:
                return True
            if dep in seen:
                continue
            seen.add(dep)
            blocked = self.pending.get(dep)
            if blocked is not None:
                stack.extend(self.missing(blocked.requires))
        return False
