"""Dialog session lifecycle.

A ``DialogSession`` drives one conversation with the realtime dialog
service::

    IDLE -> CONNECTING -> ACTIVE -> FINISHING -> FINISHED
                 \\            \\
                  +-> FAILED    +-> FAILED

``start()`` opens the websocket and sends the StartConnection and
StartSession handshake frames. ``stop()`` sends FinishSession, waits a short
grace period for the server to confirm, sends FinishConnection and closes the
socket. Server events are validated and forwarded to a single callback.
"""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from enum import Enum
from typing import Any, Awaitable, Callable

from ..errors import DialogConnectionError, NotConnectedError, ProtocolError
from ..schemas import DialogConfig, parse_event_payload
from .connection import DialogConnection, maybe_await
from .events import SESSION_END_EVENTS, ClientEvent, ServerEvent, event_name
from .protocol import (
    CLIENT_AUDIO_ONLY_REQUEST,
    CLIENT_FULL_REQUEST,
    JSON_SERIALIZATION,
    NO_SERIALIZATION,
    SERVER_ACK,
    SERVER_FULL_RESPONSE,
    ServerResponse,
)


logger = logging.getLogger("realtime-dialog")

FINISH_TIMEOUT = 2.0
CLOSE_DELAY = 0.1

ServerEventCallback = Callable[[int | None, Any], Awaitable[None] | None]


class SessionState(str, Enum):
    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    ACTIVE = "ACTIVE"
    FINISHING = "FINISHING"
    FINISHED = "FINISHED"
    FAILED = "FAILED"


def _error_message(payload: Any) -> str:
    if isinstance(payload, dict):
        for key in ("error", "message", "error_msg"):
            if payload.get(key):
                return str(payload[key])
        return json.dumps(payload, ensure_ascii=False)
    if isinstance(payload, bytes):
        return payload.decode("utf-8", errors="replace")
    if payload is None:
        return ""
    return str(payload)


class DialogSession:
    """Client side of one realtime dialog session.

    ``on_server_event(event, payload)`` receives every non-error server
    event with its validated payload. Failures that happen while no request
    is in flight are delivered through the same callback as
    ``on_server_event(None, error)``.
    """

    def __init__(
        self,
        config: DialogConfig,
        on_server_event: ServerEventCallback,
        *,
        finish_timeout: float = FINISH_TIMEOUT,
        close_delay: float = CLOSE_DELAY,
        connector: Callable[..., Any] | None = None,
    ) -> None:
        self.config = config
        self.session_id = str(uuid.uuid4())
        self.state = SessionState.IDLE
        self.error: Exception | None = None
        self.finish_timeout = finish_timeout
        self.close_delay = close_delay

        self._on_server_event = on_server_event
        self._session_finished = asyncio.Event()
        self._inflight = 0
        self._pending_error: Exception | None = None
        self._stopping = False

        connection_kwargs: dict[str, Any] = {}
        if connector is not None:
            connection_kwargs["connector"] = connector
        self._connection = DialogConnection(
            config.ws_connect_config,
            self._handle_response,
            self._handle_transport_error,
            **connection_kwargs,
        )

    @property
    def logid(self) -> str:
        """Trace id assigned by the server during the websocket handshake."""
        return self._connection.logid

    @property
    def is_running(self) -> bool:
        return self.state in (SessionState.CONNECTING, SessionState.ACTIVE)

    @property
    def is_session_finished(self) -> bool:
        return self._session_finished.is_set()

    async def start(self) -> None:
        if self.state is not SessionState.IDLE:
            raise NotConnectedError(f"Cannot start a session in state {self.state.value}")
        self.state = SessionState.CONNECTING
        logger.debug("Starting dialog session %s", self.session_id)
        try:
            await self._connection.open()
            await self._request(ClientEvent.START_CONNECTION, b"{}")
            await self._request(
                ClientEvent.START_SESSION,
                json.dumps(self.config.start_session_req, ensure_ascii=False),
                session_id=self.session_id,
            )
            self._raise_pending()
        except Exception as exc:
            logger.error("Dialog session %s failed to start: %s", self.session_id, exc)
            self.state = SessionState.FAILED
            self.error = exc
            await self._connection.close()
            raise
        self.state = SessionState.ACTIVE
        logger.info("Dialog session %s active (logid=%s)", self.session_id, self.logid)

    async def send_audio(self, audio: bytes) -> None:
        """Send one chunk of PCM audio."""
        self._require_active()
        await self._request(
            ClientEvent.TASK_REQUEST,
            audio,
            message_type=CLIENT_AUDIO_ONLY_REQUEST,
            serialization=NO_SERIALIZATION,
            session_id=self.session_id,
        )

    async def send_chat(self, text: str) -> None:
        """Send a text turn for the assistant to speak."""
        self._require_active()
        logger.debug("Sending chat content: %s", text)
        await self._request(
            ClientEvent.CHAT_TTS_TEXT,
            json.dumps({"content": text}, ensure_ascii=False),
            message_type=CLIENT_FULL_REQUEST,
            serialization=JSON_SERIALIZATION,
            session_id=self.session_id,
        )

    async def stop(self) -> None:
        """Finish the session and close the websocket.

        Safe to call more than once and before ``start()`` completed. Never
        raises: errors are logged and shutdown carries on.
        """
        if self._stopping:
            return
        if self.state is SessionState.FAILED:
            self._stopping = True
            await self._close_quietly()
            return
        if self.state is not SessionState.ACTIVE:
            logger.debug("Ignoring stop for dialog session in state %s", self.state.value)
            return

        self._stopping = True
        self.state = SessionState.FINISHING
        try:
            await self._request(ClientEvent.FINISH_SESSION, b"{}")
            try:
                await asyncio.wait_for(self._session_finished.wait(), timeout=self.finish_timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "No SessionFinished for %s within %.1fs; closing anyway",
                    self.session_id,
                    self.finish_timeout,
                )
            await self._request(ClientEvent.FINISH_CONNECTION, b"{}")
            await asyncio.sleep(self.close_delay)
        except Exception as exc:
            logger.error("Error while stopping dialog session %s: %s", self.session_id, exc)
        finally:
            self._pending_error = None
            await self._close_quietly()
            self.state = SessionState.FINISHED
            logger.info("Dialog session %s closed (logid=%s)", self.session_id, self.logid)

    async def _request(self, event: int, payload: bytes | str, **kwargs: Any) -> None:
        self._inflight += 1
        try:
            await self._connection.send(event, payload, **kwargs)
        except Exception as exc:
            # The reader may already have recorded the failure behind this error.
            error, self._pending_error = self._pending_error, None
            if error is not None:
                raise error from exc
            raise
        finally:
            self._inflight -= 1
        self._raise_pending()

    def _raise_pending(self) -> None:
        error, self._pending_error = self._pending_error, None
        if error is not None:
            raise error

    def _require_active(self) -> None:
        if self.state is not SessionState.ACTIVE:
            raise NotConnectedError(f"Dialog session is {self.state.value}, not ACTIVE")

    async def _close_quietly(self) -> None:
        try:
            await self._connection.close()
        except Exception as exc:
            logger.error("Error closing dialog connection for %s: %s", self.session_id, exc)

    async def _handle_response(self, response: ServerResponse) -> None:
        if response.is_error:
            error = ProtocolError(response.code or 0, _error_message(response.payload))
            logger.error("Dialog server error for %s: %s", self.session_id, error)
            await self._fail(error)
            return
        if response.message_type_code not in (SERVER_FULL_RESPONSE, SERVER_ACK):
            logger.debug("Ignoring dialog frame of type %s", response.message_type)
            return

        event = response.event
        if event != ServerEvent.TTS_RESPONSE:
            logger.info("Dialog event %s payload=%s", event_name(event), response.payload)
        if event in SESSION_END_EVENTS:
            self._session_finished.set()
        payload = parse_event_payload(event, response.payload)
        await maybe_await(self._on_server_event(event, payload))

    async def _handle_transport_error(self, error: Exception) -> None:
        if self._stopping:
            # The server may drop the socket once FinishConnection is sent.
            logger.debug("Ignoring transport error while stopping %s: %s", self.session_id, error)
            self._session_finished.set()
            return
        if not isinstance(error, DialogConnectionError):
            error = DialogConnectionError(str(error))
        await self._fail(error)

    async def _fail(self, error: Exception) -> None:
        # Unblocks a stop() waiting for SessionFinished.
        self._session_finished.set()
        if self.state in (SessionState.CONNECTING, SessionState.ACTIVE):
            starting = self.state is SessionState.CONNECTING
            self.state = SessionState.FAILED
            self.error = error
            if starting or self._inflight:
                self._pending_error = error
                return
        await maybe_await(self._on_server_event(None, error))
