"""Domain errors raised by the stateful core and mapped to HTTP responses in app.py."""


class AuthFailure(Exception):
    """Credential verification failed. Never shown to users in detail."""


class AccountNotFound(AuthFailure):
    pass


class BadCredential(AuthFailure):
    pass


class AccountExists(Exception):
    pass


class Unauthorized(Exception):
    """A protected route was reached without a valid session."""


class ValidationError(Exception):
    """Malformed watch-progress input; nothing was written."""

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail


class StorageError(Exception):
    """Durable storage failed (I/O, constraint, corruption)."""


class MetadataError(Exception):
    """The metadata provider is unconfigured, unreachable or answered with an error."""
