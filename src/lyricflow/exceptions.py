class LyricFlowError(Exception):
    """Base exception for lyricflow."""


class ValidationError(LyricFlowError):
    """Raised when caller-supplied data is rejected before any I/O."""


class AuthorizationError(LyricFlowError):
    """Raised on a credential mismatch or an action on someone else's data."""


class NotFoundError(LyricFlowError):
    """Raised when a referenced user, song or comment does not exist."""


class ConflictError(LyricFlowError):
    """Raised on a duplicate unique field or an exhausted quota."""


class OfflineError(LyricFlowError):
    """Raised when the backend is unreachable and no local fallback exists."""


class RemoteError(LyricFlowError):
    """Raised when a request to the backend fails.

    ``status_code`` is 0 when no response was received at all.
    """

    def __init__(self, path: str, status_code: int, message: str = "Request failed"):
        self.path = path
        self.status_code = status_code
        self.message = message
        super().__init__(message)

    @property
    def is_transport_error(self) -> bool:
        return self.status_code == 0
