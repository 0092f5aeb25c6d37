"""Node task pool — runs an ordered list of node-creation tasks.

Creation is modelled as explicit tasks executed by a worker pool.  The pool
defaults to a single worker, which makes creation strictly sequential in
list order; raising ``max_workers`` parallelizes workers without touching
the orchestration sequence.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from pyk3d.models import Node

logger = logging.getLogger(__name__)


@dataclass
class NodeTask:
    """Create one node; ``run`` returns the realized node."""

    name: str
    run: Callable[[], Node]


class _Skipped(Exception):
    """A task was not started because an earlier task failed."""


class NodeTaskPool:
    """Bounded pool that executes node tasks and stops at the first error."""

    def __init__(self, max_workers: int = 1) -> None:
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self._max_workers = max_workers

    @property
    def max_workers(self) -> int:
        return self._max_workers

    def run(self, tasks: list[NodeTask]) -> list[Node]:
        """Execute *tasks* and return their nodes in task order.

        Once a task fails no further task is started; the first failure
        (in task order) is re-raised after running tasks have finished.
        Nodes created before the failure are left in place.
        """
        if not tasks:
            return []

        failed = threading.Event()

        def guarded(task: NodeTask) -> Node:
            if failed.is_set():
                raise _Skipped(task.name)
            try:
                return task.run()
            except Exception:
                failed.set()
                raise

        with ThreadPoolExecutor(
            max_workers=self._max_workers, thread_name_prefix="pyk3d-node",
        ) as pool:
            futures = [pool.submit(guarded, task) for task in tasks]

        nodes: list[Node] = []
        error: Exception | None = None
        for task, future in zip(tasks, futures, strict=True):
            exc = future.exception()
            if exc is None:
                nodes.append(future.result())
            elif isinstance(exc, _Skipped):
                logger.debug("Skipped %s after an earlier failure", task.name)
            elif error is None and isinstance(exc, Exception):
                error = exc
        if error is not None:
            raise error
        return nodes
