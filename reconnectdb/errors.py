"""Errors raised by the session layer itself.

Driver errors are never wrapped: they reach the caller exactly as the
underlying DB-API module raised them.
"""


class Error(Exception):
    pass


class InterfaceError(Error):
    pass


class NotConnectedError(InterfaceError):
    """Raised when a connection is required after an explicit disconnect
    and auto reconnect is disabled."""

    def __init__(self, message="Disconnected"):
        super().__init__(message)
