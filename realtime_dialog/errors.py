"""Error types raised by the realtime dialog client."""

from __future__ import annotations

import builtins


class DialogError(Exception):
    """Base class for realtime dialog errors."""


class DecodeError(DialogError, ValueError):
    """
    Raised when an inbound frame cannot be decoded.

    Covers truncated buffers, gzip payloads that fail to inflate and JSON
    payloads that fail to parse. The frame is unsafe to process and must be
    dropped.
    """


class ProtocolError(DialogError):
    """Raised when the server answers with an error frame."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(f"Dialog server error {code}: {message}")
        self.code = code
        self.message = message


class DialogConnectionError(DialogError, builtins.ConnectionError):
    """Raised when the websocket cannot be opened or written to."""


class NotConnectedError(DialogError):
    """Raised when an operation is attempted outside the open connection window."""
