"""Exceptions shared by the Gmail client, the database layer and the sync passes."""


class TransientRemoteError(ConnectionError):
    """A Gmail API call failed in a way that may succeed if repeated (network, 429, 5xx, timeout).

    Aborts the current pass. The cursor stays where it was, so the whole pass can be retried.
    """


class RemoteRequestError(Exception):
    """A Gmail API call was rejected for good (e.g. 400/403/404 on a single message)."""

    def __init__(self, message, status=None):
        super().__init__(message)
        self.status = status


class HistoryExpiredError(RemoteRequestError):
    """The stored history id is too old for history.list to serve (HTTP 404)."""


class StoreUnavailableError(Exception):
    """The SQLite store could not be opened, written or committed."""
