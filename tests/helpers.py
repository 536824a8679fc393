from __future__ import annotations

import asyncio
import gzip
import json
import struct
from types import SimpleNamespace
from typing import Any

from websockets.exceptions import ConnectionClosedError

from realtime_dialog.live import protocol


class FakeWebSocket:
    """Stands in for a websockets ClientConnection."""

    def __init__(self, *, logid: str = "20261018-trace", send_yields: int = 0) -> None:
        self.sent: list[bytes] = []
        self.closed = False
        self.close_calls = 0
        self.response = SimpleNamespace(headers={"X-Tt-Logid": logid})
        self.send_yields = send_yields
        self.dropped = False
        self._incoming: asyncio.Queue[Any] = asyncio.Queue()

    def feed(self, raw: Any) -> None:
        self._incoming.put_nowait(raw)

    async def send(self, data: bytes) -> None:
        for _ in range(self.send_yields):
            await asyncio.sleep(0)
        if self.dropped:
            raise ConnectionClosedError(None, None)
        self.sent.append(bytes(data))

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True
        self._incoming.put_nowait(None)

    def __aiter__(self) -> "FakeWebSocket":
        return self

    async def __anext__(self) -> Any:
        item = await self._incoming.get()
        if item is None or isinstance(item, BaseException):
            # Writes fail once the reader has seen the socket go away.
            self.dropped = True
        if item is None:
            raise StopAsyncIteration
        if isinstance(item, BaseException):
            raise item
        return item


class FakeConnector:
    def __init__(self, ws: FakeWebSocket | None = None, error: Exception | None = None) -> None:
        self.ws = ws
        self.error = error
        self.calls: list[tuple[str, dict[str, Any]]] = []

    async def __call__(self, uri: str, **kwargs: Any) -> FakeWebSocket:
        self.calls.append((uri, kwargs))
        if self.error is not None:
            raise self.error
        assert self.ws is not None
        return self.ws


async def settle(rounds: int = 10) -> None:
    """Let background reader tasks run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def server_frame(
    event: int,
    payload: Any = None,
    *,
    session_id: str = "server-session",
    message_type: int = protocol.SERVER_FULL_RESPONSE,
    serialization: int = protocol.JSON_SERIALIZATION,
    sequence: int | None = None,
) -> bytes:
    flags = protocol.MSG_WITH_EVENT
    if sequence is not None:
        flags |= protocol.NEG_SEQUENCE
    if isinstance(payload, (dict, list)):
        payload = json.dumps(payload)
    return protocol.build_frame(
        payload if payload is not None else b"",
        event=event,
        session_id=session_id,
        sequence=sequence,
        message_type=message_type,
        flags=flags,
        serialization=serialization,
    )


def error_frame(code: int, payload: dict[str, Any]) -> bytes:
    body = gzip.compress(json.dumps(payload).encode("utf-8"))
    header = protocol.generate_header(
        message_type=protocol.SERVER_ERROR_RESPONSE,
        flags=protocol.NO_SEQUENCE,
    )
    return header + struct.pack(">II", code, len(body)) + body


def read_client_frame(frame: bytes, *, with_session: bool) -> SimpleNamespace:
    """Split an outbound client frame into its fields."""
    offset = (frame[0] & 0x0F) * 4
    event = struct.unpack_from(">I", frame, offset)[0]
    offset += 4
    session_id = None
    if with_session:
        size = struct.unpack_from(">I", frame, offset)[0]
        session_id = frame[offset + 4 : offset + 4 + size].decode("utf-8")
        offset += 4 + size
    payload_size = struct.unpack_from(">I", frame, offset)[0]
    payload = gzip.decompress(frame[offset + 4 : offset + 4 + payload_size])
    return SimpleNamespace(
        message_type=frame[1] >> 4,
        flags=frame[1] & 0x0F,
        serialization=frame[2] >> 4,
        compression=frame[2] & 0x0F,
        event=event,
        session_id=session_id,
        payload=payload,
    )
