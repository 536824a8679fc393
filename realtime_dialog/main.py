"""FastAPI relay between a browser websocket and a dialog session.

Clients send flat JSON messages: ``{"type": "audio", "data_b64": ...}`` and
``{"type": "chat", "content": ...}``. This differs from the service's sample
web server, which nests audio and text under ``payload.data`` and
``payload.content``, so that sample browser client needs adapting before it
can talk to this relay.
"""

from __future__ import annotations

import base64
import binascii
import contextlib
import logging
from typing import Any

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from .errors import DialogError
from .live.events import event_name
from .live.session import DialogSession
from .schemas import TtsAudio
from .settings import settings


logger = logging.getLogger("realtime-dialog")

app = FastAPI(title="Realtime Dialog Relay", version="0.1.0")


@app.on_event("startup")
async def startup_event() -> None:
    logger.setLevel(settings.log_level.upper())
    missing = settings.missing()
    if missing:
        logger.warning("Dialog credentials not configured: %s", ", ".join(missing))


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health endpoint to confirm the service is up."""
    return {"status": "ok"}


def _decode_b64_payload(message: dict, field_name: str = "data_b64") -> bytes:
    data_b64 = message.get(field_name)
    if not isinstance(data_b64, str) or not data_b64:
        raise ValueError(f"Missing {field_name}")
    try:
        return base64.b64decode(data_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 payload in {field_name}") from exc


def _event_message(event: int | None, payload: Any) -> dict[str, Any]:
    if event is None:
        return {"type": "error", "message": str(payload)}
    message: dict[str, Any] = {"type": "dialogEvent", "event": event_name(event)}
    if isinstance(payload, TtsAudio):
        message["data_b64"] = base64.b64encode(payload.audio).decode("ascii")
    elif isinstance(payload, (bytes, bytearray)):
        message["data_b64"] = base64.b64encode(bytes(payload)).decode("ascii")
    elif isinstance(payload, BaseModel):
        message["payload"] = payload.model_dump(mode="json")
    else:
        message["payload"] = payload
    return message


@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket) -> None:
    """Relay browser start/audio/chat/stop messages to one dialog session."""
    await ws.accept()
    session: DialogSession | None = None

    async def forward(event: int | None, payload: Any) -> None:
        await ws.send_json(_event_message(event, payload))

    try:
        while True:
            try:
                message = await ws.receive_json()
            except WebSocketDisconnect:
                break
            except (ValueError, TypeError):
                await ws.send_json({"type": "error", "message": "Malformed JSON message"})
                continue

            if not isinstance(message, dict):
                await ws.send_json({"type": "error", "message": "Messages must be JSON objects"})
                continue

            message_type = str(message.get("type", "")).strip()
            try:
                if message_type == "startSession":
                    if session is not None:
                        await ws.send_json({"type": "error", "message": "DialogSession already started"})
                        continue
                    if settings.missing():
                        logger.error("Missing dialog settings: %s", ", ".join(settings.missing()))
                        await ws.send_json({"type": "error", "message": "Missing environment variables"})
                        continue
                    candidate = DialogSession(
                        settings.dialog_config(),
                        forward,
                        finish_timeout=settings.finish_timeout,
                        close_delay=settings.close_delay,
                    )
                    await candidate.start()
                    session = candidate
                    await ws.send_json({"type": "status", "message": "DialogSession started"})
                elif message_type == "audio":
                    if session is None:
                        logger.warning("Session not started; dropping audio")
                        continue
                    await session.send_audio(_decode_b64_payload(message))
                elif message_type == "chat":
                    if session is None:
                        logger.warning("Session not started; dropping chat content")
                        continue
                    await session.send_chat(str(message.get("content", "")))
                elif message_type == "stopSession":
                    if session is not None:
                        await session.stop()
                        session = None
                        await ws.send_json({"type": "status", "message": "DialogSession stopped"})
                else:
                    await ws.send_json({"type": "error", "message": f"Unsupported message type: {message_type}"})
            except (ValueError, DialogError) as exc:
                logger.warning("Relay message %s failed: %s", message_type, exc)
                await ws.send_json({"type": "error", "message": str(exc)})
    except Exception as exc:
        logger.exception("Unexpected error in /ws: %s", exc)
        with contextlib.suppress(RuntimeError):
            await ws.send_json({"type": "error", "message": f"Relay error: {exc}"})
    finally:
        if session is not None:
            await session.stop()
        with contextlib.suppress(RuntimeError):
            await ws.close()
