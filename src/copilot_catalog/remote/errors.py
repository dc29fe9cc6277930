"""
Error hierarchy for catalog operations.

    CatalogError
    ├── RemoteUnavailable          network or HTTP failure
    │   ├── MalformedRemoteResponse  unexpected payload shape
    │   └── QuotaExhausted           rate limit hit; recovered by wait + one retry
    └── NoCacheAvailable           remote failed and there is no cache to serve
"""


class CatalogError(Exception):
    """Base error for catalog operations."""

    pass


class RemoteUnavailable(CatalogError):
    """The remote could not be reached or answered with a non-2xx status."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class MalformedRemoteResponse(RemoteUnavailable):
    """The remote answered, but the payload does not have the expected shape."""

    pass


class QuotaExhausted(RemoteUnavailable):
    """The remote rejected the call because the rate limit is used up."""

    def __init__(self, reset_at: float, status_code: int | None = None):
        self.reset_at = reset_at
        super().__init__(
            f"API rate limit exhausted until {reset_at:.0f}",
            status_code=status_code,
        )


class NoCacheAvailable(CatalogError):
    """Refreshing failed and there is no cached catalog to fall back to."""

    pass
