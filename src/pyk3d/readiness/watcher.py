"""Readiness watcher — waits for a marker line in a container's log stream.

The stream starts at the moment of invocation, not at container start, so
the watcher must be called right after the container is started.  The
stream is consumed on a daemon thread that feeds complete lines into a
queue; the calling thread polls the queue against the deadline.  That way
a silent container cannot block past the timeout.
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections.abc import Callable

from pyk3d.errors import StreamError, WaitTimeoutError
from pyk3d.runtime.client import LogStream, RuntimeClient

logger = logging.getLogger(__name__)

READY_MARKER = "Running kubelet"

_EOF = object()


def _pump_lines(stream: LogStream, lines: queue.Queue[object]) -> None:
    """Split raw chunks into lines and forward them; always end with EOF."""
    buffer = b""
    try:
        for chunk in stream:
            buffer += chunk
            *complete, buffer = buffer.split(b"\n")
            for line in complete:
                lines.put(line.decode("utf-8", errors="replace"))
        if buffer:
            lines.put(buffer.decode("utf-8", errors="replace"))
        lines.put(_EOF)
    except Exception as e:
        lines.put(e)


class ReadinessWatcher:
    """Blocks until a container logs a marker, or fails on timeout."""

    def __init__(
        self,
        runtime: RuntimeClient,
        _clock: Callable[[], float] | None = None,
        _wall_clock: Callable[[], float] | None = None,
    ) -> None:
        self._runtime = runtime
        self._clock = _clock or time.monotonic
        self._wall_clock = _wall_clock or time.time

    def wait_for_marker(
        self,
        container_id: str,
        marker: str = READY_MARKER,
        timeout_seconds: int = 0,
    ) -> None:
        """Wait for a log line containing *marker*.

        Args:
            container_id: Container whose combined stdout/stderr is followed.
            marker: Substring that signals readiness.
            timeout_seconds: Deadline in seconds; ``0`` waits forever.

        Raises:
            WaitTimeoutError: If the deadline passes first.
            StreamError: If the log stream fails or ends first.
        """
        deadline = self._clock() + timeout_seconds if timeout_seconds > 0 else None
        stream = self._runtime.container_logs(container_id, since=self._wall_clock())
        lines: queue.Queue[object] = queue.Queue()
        reader = threading.Thread(
            target=_pump_lines,
            args=(stream, lines),
            name=f"pyk3d-logs-{container_id[:12]}",
            daemon=True,
        )
        reader.start()

        try:
            while True:
                remaining = None if deadline is None else deadline - self._clock()
                if remaining is not None and remaining <= 0:
                    raise WaitTimeoutError(
                        f"Container {container_id} did not log [{marker}] "
                        f"within {timeout_seconds}s"
                    )
                try:
                    item = lines.get(timeout=remaining)
                except queue.Empty:
                    continue

                if item is _EOF:
                    raise StreamError(
                        f"Log stream of container {container_id} ended "
                        f"before [{marker}] appeared"
                    )
                if isinstance(item, Exception):
                    raise StreamError(
                        f"Log stream of container {container_id} failed: {item}"
                    ) from item
                if marker in str(item):
                    logger.debug("Container %s is ready", container_id[:12])
                    return
        finally:
            try:
                stream.close()
            except Exception as e:
                logger.debug("Couldn't close log stream: %s", e)
