"""Pydantic schemas for dialog configuration and server event payloads.

The connection config mirrors what the dialog service expects on the
websocket upgrade request. Server payloads are validated per event into
small tagged models so that callers do not have to trust raw JSON shapes.
"""

from __future__ import annotations

import logging
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .live.events import ServerEvent


logger = logging.getLogger("realtime-dialog")


class WsConnectConfig(BaseModel):
    """Endpoint descriptor for the dialog websocket."""

    base_url: str = Field(..., description="wss:// URL of the realtime dialog endpoint")
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Authentication and identification headers sent on upgrade",
    )


class DialogConfig(BaseModel):
    """Everything a session needs: where to connect and how to start."""

    ws_connect_config: WsConnectConfig
    start_session_req: dict[str, Any] = Field(
        default_factory=dict,
        description="Vendor-specific StartSession payload, sent as-is",
    )


class AsrResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    text: str
    start_time: Optional[float] = None
    end_time: Optional[float] = None
    is_interim: Optional[bool] = None


class AsrResponse(BaseModel):
    """Speech recognition update for the user's audio."""

    model_config = ConfigDict(extra="allow")

    kind: Literal["asr"] = "asr"
    results: list[AsrResult] = Field(default_factory=list)


class ChatResponse(BaseModel):
    """A streamed delta of the assistant's text reply."""

    model_config = ConfigDict(extra="allow")

    kind: Literal["chat"] = "chat"
    content: str = ""


class TtsAudio(BaseModel):
    """A chunk of synthesized speech."""

    kind: Literal["tts_audio"] = "tts_audio"
    audio: bytes


class ErrorNotice(BaseModel):
    """Failure reported by the server as a regular event."""

    model_config = ConfigDict(extra="allow")

    kind: Literal["error"] = "error"
    error: Optional[str] = None
    status_code: Optional[int | str] = None
    message: Optional[str] = None


class LifecycleNotice(BaseModel):
    """Session, connection or turn boundary notice with free-form fields."""

    model_config = ConfigDict(extra="allow")

    kind: Literal["lifecycle"] = "lifecycle"


ServerPayload = AsrResponse | ChatResponse | TtsAudio | ErrorNotice | LifecycleNotice

_PAYLOAD_MODELS: dict[int, type[BaseModel]] = {
    ServerEvent.ASR_RESPONSE: AsrResponse,
    ServerEvent.CHAT_RESPONSE: ChatResponse,
    ServerEvent.SESSION_FAILED: ErrorNotice,
    ServerEvent.CONNECTION_FAILED: ErrorNotice,
    ServerEvent.DIALOG_COMMON_ERROR: ErrorNotice,
}


def parse_event_payload(event: int | None, payload: Any) -> Any:
    """Validate a decoded payload into the variant registered for ``event``.

    Unknown events and unexpected shapes are returned unchanged; a payload
    that fails validation is logged and returned unchanged as well.
    """
    if event == ServerEvent.TTS_RESPONSE:
        if isinstance(payload, (bytes, bytearray)):
            return TtsAudio(audio=bytes(payload))
        return payload
    if event is None or not isinstance(payload, dict):
        return payload
    try:
        server_event = ServerEvent(event)
    except ValueError:
        return payload

    model = _PAYLOAD_MODELS.get(server_event, LifecycleNotice)
    data = {key: value for key, value in payload.items() if key != "kind"}
    try:
        return model.model_validate(data)
    except ValidationError as exc:
        logger.warning("Unexpected payload shape for %s: %s", server_event.name, exc)
        return payload
