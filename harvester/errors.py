# harvester/errors.py
from typing import Optional


class HarvesterError(Exception):
    """Base class for failures the harvester knows how to recover from."""


class TransientSourceError(HarvesterError):
    """Telegram could not be reached, timed out, or rate limited us.

    ``retry_after`` is the wait in seconds Telegram asked for, if any.
    """

    def __init__(self, message: str, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class PersistenceError(HarvesterError):
    """A database read or write failed and was rolled back."""


class AuthenticationError(HarvesterError):
    """The login-code flow could not be completed."""
