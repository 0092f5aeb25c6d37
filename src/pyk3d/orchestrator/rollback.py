"""Rollback stack — compensating actions for a partially created cluster.

There is no transactional runtime API, so every provisioning step that
creates something pushes the action that undoes it.  On failure the stack
is unwound last-in first-out.  Unwinding is best-effort: a failing undo is
logged and the remaining undos still run.

Usage::

    rollback = RollbackStack()
    network = provisioner.create_network(name)
    rollback.push(f"network {network}", lambda: provisioner.delete_network(name))
    ...
    rollback.unwind()    # on failure
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CompensatingAction:
    """Undo step for one created resource."""

    description: str
    undo: Callable[[], None]


class RollbackStack:
    """LIFO stack of compensating actions (thread-safe)."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._actions: list[CompensatingAction] = []

    def __len__(self) -> int:
        with self._lock:
            return len(self._actions)

    def push(self, description: str, undo: Callable[[], None]) -> None:
        with self._lock:
            self._actions.append(CompensatingAction(description, undo))

    def clear(self) -> None:
        """Forget all actions (the operation they guarded succeeded)."""
        with self._lock:
            self._actions.clear()

    def unwind(self) -> list[str]:
        """Run every undo, newest first.

        Returns the descriptions of the undos that failed.
        """
        failed: list[str] = []
        while True:
            with self._lock:
                if not self._actions:
                    break
                action = self._actions.pop()
            logger.info("...Rolling back %s", action.description)
            try:
                action.undo()
            except Exception as e:
                logger.warning("Couldn't roll back %s: %s", action.description, e)
                failed.append(action.description)
        return failed
