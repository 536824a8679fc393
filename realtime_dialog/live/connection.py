"""Websocket transport for the realtime dialog protocol.

``DialogConnection`` owns exactly one websocket. Outbound frames go through
a single lock so they reach the socket in call order; inbound frames are
decoded on a reader task and handed, in arrival order, to the handler given
at construction.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable

import websockets
from websockets.exceptions import ConnectionClosed, WebSocketException

from ..errors import DecodeError, DialogConnectionError, NotConnectedError
from ..schemas import WsConnectConfig
from .events import event_name
from .protocol import (
    CLIENT_FULL_REQUEST,
    GZIP,
    JSON_SERIALIZATION,
    MSG_WITH_EVENT,
    ServerResponse,
    build_frame,
    parse_response,
)


logger = logging.getLogger("realtime-dialog")

LOGID_HEADER = "X-Tt-Logid"

MessageHandler = Callable[[ServerResponse], Awaitable[None] | None]
ErrorHandler = Callable[[Exception], Awaitable[None] | None]


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class DialogConnection:
    """One websocket to the dialog service."""

    def __init__(
        self,
        config: WsConnectConfig,
        on_message: MessageHandler,
        on_error: ErrorHandler | None = None,
        *,
        connector: Callable[..., Any] = websockets.connect,
        open_timeout: float = 10.0,
    ) -> None:
        self.config = config
        self.logid = ""
        self._on_message = on_message
        self._on_error = on_error
        self._connector = connector
        self._open_timeout = open_timeout
        self._ws: Any | None = None
        self._reader_task: asyncio.Task[None] | None = None
        self._send_lock = asyncio.Lock()
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    def set_handler(self, on_message: MessageHandler) -> None:
        """Replace the inbound frame handler."""
        self._on_message = on_message

    async def open(self) -> None:
        if self._ws is not None:
            return
        try:
            self._ws = await self._connector(
                self.config.base_url,
                additional_headers=self.config.headers,
                open_timeout=self._open_timeout,
                max_size=16 * 1024 * 1024,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as exc:
            logger.error("Dialog websocket connect to %s failed: %s", self.config.base_url, exc)
            raise DialogConnectionError(f"Unable to connect to dialog service: {exc}") from exc

        self._closed = False
        response = getattr(self._ws, "response", None)
        headers = getattr(response, "headers", None) or {}
        self.logid = str(headers.get(LOGID_HEADER, "") or "")
        logger.debug("Dialog server response logid: %s", self.logid)
        self._reader_task = asyncio.create_task(self._reader_loop())

    async def send(
        self,
        event: int,
        payload: bytes | str,
        *,
        message_type: int = CLIENT_FULL_REQUEST,
        flags: int = MSG_WITH_EVENT,
        serialization: int = JSON_SERIALIZATION,
        compression: int = GZIP,
        session_id: str | None = None,
    ) -> None:
        if not self.is_open:
            raise NotConnectedError("Dialog websocket is not connected")
        frame = build_frame(
            payload,
            event=event,
            session_id=session_id,
            message_type=message_type,
            flags=flags,
            serialization=serialization,
            compression=compression,
        )
        async with self._send_lock:
            # close() may have won the lock while this call was waiting.
            if not self.is_open:
                raise NotConnectedError("Dialog websocket is not connected")
            logger.debug("Sending %s, payload %d bytes", event_name(event), len(payload))
            try:
                await self._ws.send(frame)
            except ConnectionClosed as exc:
                raise NotConnectedError(f"Dialog websocket closed: {exc}") from exc
            except (OSError, WebSocketException) as exc:
                raise DialogConnectionError(f"Unable to send {event_name(event)}: {exc}") from exc

    async def close(self) -> None:
        if self._closed or self._ws is None:
            self._closed = True
            return
        async with self._send_lock:
            self._closed = True
            logger.debug("Closing dialog websocket")
            reader_task = self._reader_task
            self._reader_task = None
            if reader_task is not None and reader_task is not asyncio.current_task():
                reader_task.cancel()
                try:
                    await reader_task
                except asyncio.CancelledError:
                    pass
            upstream = self._ws
            try:
                await upstream.close()
            except (OSError, WebSocketException) as exc:
                logger.warning("Dialog websocket close failed: %s", exc)

    async def _reader_loop(self) -> None:
        try:
            async for raw_message in self._ws:
                try:
                    response = parse_response(raw_message)
                except DecodeError as exc:
                    logger.warning("Dropping malformed dialog frame: %s", exc)
                    continue
                try:
                    await maybe_await(self._on_message(response))
                except asyncio.CancelledError:
                    raise
                except Exception as exc:
                    logger.exception("Dialog message handler failed: %s", exc)
        except ConnectionClosed as exc:
            if not self._closed:
                logger.error("Dialog websocket closed unexpectedly: %s", exc)
                await self._report(DialogConnectionError(f"Dialog websocket closed: {exc}"))
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.exception("Dialog websocket reader failed: %s", exc)
            await self._report(DialogConnectionError(f"Dialog websocket error: {exc}"))
        else:
            logger.info("Dialog websocket closed")
            if not self._closed:
                await self._report(DialogConnectionError("Dialog websocket closed by server"))

    async def _report(self, error: Exception) -> None:
        if self._on_error is None:
            return
        try:
            await maybe_await(self._on_error(error))
        except Exception as exc:
            logger.exception("Dialog error handler failed: %s", exc)
