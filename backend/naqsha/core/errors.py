"""Error taxonomy for the transform and tile-caching engine.

Shift and reset failures are reported with distinct exception types so that
callers can tell a collection with no geometry apart from one that has never
been shifted, since each needs a different corrective action. Fetch failures
are recovered locally by the overlay resolver and the tile cache; persistence
failures are propagated to the caller unchanged.

Example:
    Handle shift preconditions:
        >>> from naqsha.core import errors
        >>> try:
        ...     await engine.reset(key)
        ... except errors.PreconditionError:
        ...     print("Shift the collection once to record its baseline")
        ... except errors.NoGeometryError:
        ...     print("The stored collection has no polygon coordinates")
"""


class NaqshaError(Exception):
    """Base class for all engine errors."""


class NoGeometryError(NaqshaError):
    """Bounds extraction found no Polygon/MultiPolygon coordinates."""

    def __init__(self, message: str = "no geometry found") -> None:
        super().__init__(message)


class PreconditionError(NaqshaError):
    """Reset was attempted on a collection without a recorded baseline."""

    def __init__(self, message: str = "no baseline recorded") -> None:
        super().__init__(message)


class CollectionNotFoundError(NaqshaError):
    """The persistence collaborator holds no collection for an identity."""


class FetchFailure(NaqshaError):
    """A remote named overlay or raster tile could not be fetched.

    Covers non-success HTTP statuses, transport errors, timeouts and
    undecodable payloads alike.
    """

    def __init__(self, url: str, reason: str) -> None:
        super().__init__(f"failed to fetch {url}: {reason}")
        self.url = url
        self.reason = reason


class PersistenceFailure(NaqshaError):
    """The persistence collaborator failed to load or save data."""
