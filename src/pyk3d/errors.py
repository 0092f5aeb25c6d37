"""Error hierarchy for pyk3d.

Every error raised by the library derives from :class:`ClusterError`, so
callers (the CLI in particular) can catch one type per command.
"""

from __future__ import annotations


class ClusterError(Exception):
    """Base class for all cluster lifecycle errors."""


class ValidationError(ClusterError):
    """Invalid input detected before any side effect was performed.

    Bad cluster names, duplicate cluster names, unsupported node roles.
    """


class ParseError(ValidationError):
    """A user-supplied expression (port spec, API port) could not be parsed."""


class ConflictError(ValidationError):
    """Two port bindings collide on the same node."""


class ProvisionError(ClusterError):
    """A container runtime call failed while managing a resource."""


class NotFoundError(ClusterError):
    """A required runtime resource or piece of join config is missing."""


class ConsistencyError(ClusterError):
    """Runtime state contradicts the single-server cluster layout."""


class WorkerSuffixError(ParseError, ConsistencyError):
    """An existing worker container name has no numeric ordinal suffix."""


class WaitTimeoutError(ClusterError, TimeoutError):
    """The readiness marker did not appear before the deadline."""


class StreamError(ClusterError):
    """The container log stream failed or closed before the marker appeared."""
