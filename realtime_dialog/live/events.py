"""Event codes exchanged with the realtime dialog service.

The numeric values are part of the wire contract with the remote service and
must not change. Client and server codes never overlap.
"""

from __future__ import annotations

from enum import IntEnum


class ClientEvent(IntEnum):
    START_CONNECTION = 1
    FINISH_CONNECTION = 2
    START_SESSION = 100
    FINISH_SESSION = 102
    TASK_REQUEST = 200
    SAY_HELLO = 300
    CHAT_TTS_TEXT = 500
    CHAT_TEXT_QUERY = 501


class ServerEvent(IntEnum):
    CONNECTION_STARTED = 50
    CONNECTION_FAILED = 51
    CONNECTION_FINISHED = 52
    SESSION_STARTED = 150
    SESSION_FINISHED = 152
    SESSION_FAILED = 153
    USAGE_RESPONSE = 154
    TTS_SENTENCE_START = 350
    TTS_SENTENCE_END = 351
    TTS_RESPONSE = 352
    TTS_ENDED = 359
    ASR_INFO = 450
    ASR_RESPONSE = 451
    ASR_ENDED = 459
    CHAT_RESPONSE = 550
    CHAT_ENDED = 559
    DIALOG_COMMON_ERROR = 599


# Server events that end the session from the server's point of view.
SESSION_END_EVENTS = frozenset({ServerEvent.SESSION_FINISHED, ServerEvent.SESSION_FAILED})

EVENT_NAMES: dict[int, str] = {
    **{int(event): event.name for event in ClientEvent},
    **{int(event): event.name for event in ServerEvent},
}
EVENT_CODES: dict[str, int] = {name: code for code, name in EVENT_NAMES.items()}


def event_name(code: int | None) -> str:
    """Return the stable name for an event code, or ``UNKNOWN_<code>``."""
    if code is None:
        return "NONE"
    return EVENT_NAMES.get(code, f"UNKNOWN_{code}")


def event_code(name: str) -> int:
    """Return the event code for a name produced by :func:`event_name`."""
    try:
        return EVENT_CODES[name]
    except KeyError:
        raise ValueError(f"Unknown dialog event name: {name}") from None
