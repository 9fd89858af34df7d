"""
Error taxonomy shared by the store accessors, the notifier and the HTTP layer.

Each error carries the HTTP status the API reports for it. On the inbound
bot path these errors are logged and swallowed by the event router.
"""

from fastapi import status


class RelayError(Exception):
    """Base class for all relay errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class StoreError(RelayError):
    """A database read or write failed."""


class TransportError(RelayError):
    """An outbound Telegram call failed."""


class ValidationError(RelayError):
    """Required HTTP input is missing or malformed."""

    status_code = status.HTTP_400_BAD_REQUEST


class AuthenticationError(RelayError):
    """A webhook delivery carried the wrong secret token."""

    status_code = status.HTTP_401_UNAUTHORIZED


class NotFoundError(RelayError):
    """A referenced user does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
