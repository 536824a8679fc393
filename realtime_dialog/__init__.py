"""Client for the realtime speech dialog service."""

from .errors import (
    DecodeError,
    DialogConnectionError,
    DialogError,
    NotConnectedError,
    ProtocolError,
)
from .live.events import ClientEvent, ServerEvent, event_code, event_name
from .live.session import DialogSession, SessionState
from .schemas import (
    AsrResponse,
    ChatResponse,
    DialogConfig,
    ErrorNotice,
    LifecycleNotice,
    TtsAudio,
    WsConnectConfig,
)

__all__ = [
    "AsrResponse",
    "ChatResponse",
    "ClientEvent",
    "DecodeError",
    "DialogConfig",
    "DialogConnectionError",
    "DialogError",
    "DialogSession",
    "ErrorNotice",
    "LifecycleNotice",
    "NotConnectedError",
    "ProtocolError",
    "ServerEvent",
    "SessionState",
    "TtsAudio",
    "WsConnectConfig",
    "event_code",
    "event_name",
]
