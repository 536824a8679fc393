"""Binary frame codec for the realtime dialog websocket.

Every frame starts with a 4-byte header packed as 4-bit fields::

    byte 0   version (hi) | header size in 4-byte units (lo)
    byte 1   message type (hi) | message type specific flags (lo)
    byte 2   serialization (hi) | compression (lo)
    byte 3   reserved

followed by optional header extension bytes, an optional sequence number,
an optional event code, an optional length-prefixed session id, a 4-byte
payload length and the payload. All integers are big-endian.
"""

from __future__ import annotations

import gzip
import json
import struct
import zlib
from dataclasses import dataclass
from typing import Any

from ..errors import DecodeError


PROTOCOL_VERSION = 0b0001
DEFAULT_HEADER_SIZE = 0b0001

# Message types
CLIENT_FULL_REQUEST = 0b0001
CLIENT_AUDIO_ONLY_REQUEST = 0b0010
SERVER_FULL_RESPONSE = 0b1001
SERVER_ACK = 0b1011
SERVER_ERROR_RESPONSE = 0b1111

# Message type specific flags
NO_SEQUENCE = 0b0000
POS_SEQUENCE = 0b0001
NEG_SEQUENCE = 0b0010
NEG_SEQUENCE_1 = 0b0011
MSG_WITH_EVENT = 0b0100

# Serialization methods
NO_SERIALIZATION = 0b0000
JSON_SERIALIZATION = 0b0001
THRIFT = 0b0011
CUSTOM_TYPE = 0b1111

# Compression methods
NO_COMPRESSION = 0b0000
GZIP = 0b0001
CUSTOM_COMPRESSION = 0b1111

MESSAGE_TYPE_NAMES = {
    CLIENT_FULL_REQUEST: "CLIENT_FULL_REQUEST",
    CLIENT_AUDIO_ONLY_REQUEST: "CLIENT_AUDIO_ONLY_REQUEST",
    SERVER_FULL_RESPONSE: "SERVER_FULL_RESPONSE",
    SERVER_ACK: "SERVER_ACK",
    SERVER_ERROR_RESPONSE: "SERVER_ERROR",
}

HEADER_BYTES = 4
_U32 = struct.Struct(">I")
_I32 = struct.Struct(">i")


@dataclass
class ServerResponse:
    """A decoded inbound frame.

    Only the header fields are guaranteed. ``payload`` is ``None`` for
    message types that carry no payload section, a parsed JSON value for
    JSON serialization, raw bytes for no serialization and text otherwise.
    """

    message_type: str
    message_type_code: int
    version: int
    header_size: int
    flags: int
    serialization: int
    compression: int
    reserved: int = 0
    extension: bytes = b""
    sequence: int | None = None
    event: int | None = None
    session_id: str | None = None
    code: int | None = None
    payload: Any = None
    payload_size: int = 0

    @property
    def is_error(self) -> bool:
        return self.message_type_code == SERVER_ERROR_RESPONSE


def has_sequence(flags: int) -> bool:
    """Return True if the flags announce a sequence number sub-field."""
    return bool(flags & NEG_SEQUENCE)


def has_event(flags: int) -> bool:
    """Return True if the flags announce an event code sub-field."""
    return bool(flags & MSG_WITH_EVENT)


def generate_header(
    version: int = PROTOCOL_VERSION,
    message_type: int = CLIENT_FULL_REQUEST,
    flags: int = MSG_WITH_EVENT,
    serialization: int = JSON_SERIALIZATION,
    compression: int = GZIP,
    reserved: int = 0x00,
    extension: bytes = b"",
) -> bytes:
    """Pack a frame header.

    The header size field is ``len(extension) // 4 + 1``, so extensions that
    are not a multiple of 4 bytes are cut short of their declared size.
    """
    header_size = len(extension) // 4 + 1
    return (
        bytes(
            (
                ((version & 0x0F) << 4) | (header_size & 0x0F),
                ((message_type & 0x0F) << 4) | (flags & 0x0F),
                ((serialization & 0x0F) << 4) | (compression & 0x0F),
                reserved & 0xFF,
            )
        )
        + extension
    )


def build_frame(
    payload: bytes | str,
    *,
    event: int | None = None,
    session_id: str | None = None,
    sequence: int | None = None,
    version: int = PROTOCOL_VERSION,
    message_type: int = CLIENT_FULL_REQUEST,
    flags: int = MSG_WITH_EVENT,
    serialization: int = JSON_SERIALIZATION,
    compression: int = GZIP,
    reserved: int = 0x00,
    extension: bytes = b"",
) -> bytes:
    """Encode one frame.

    The payload is always gzip-compressed, whatever ``compression`` says:
    the dialog service expects gzip on every client frame and the header
    field is written as given.

    The sequence and event sub-fields are written exactly when ``flags``
    announce them; a ``sequence`` or ``event`` the flags do not announce, or
    one the flags announce but the caller left out, raises ``ValueError``.
    """
    if has_sequence(flags) != (sequence is not None):
        raise ValueError(f"Sequence {sequence!r} does not match message flags {flags:#06b}")
    if has_event(flags) != (event is not None):
        raise ValueError(f"Event {event!r} does not match message flags {flags:#06b}")
    if isinstance(payload, str):
        payload = payload.encode("utf-8")

    parts = [
        generate_header(
            version=version,
            message_type=message_type,
            flags=flags,
            serialization=serialization,
            compression=compression,
            reserved=reserved,
            extension=extension,
        )
    ]
    if sequence is not None:
        parts.append(_I32.pack(sequence))
    if event is not None:
        parts.append(_U32.pack(event))
    if session_id is not None:
        session_bytes = session_id.encode("utf-8")
        parts.append(_U32.pack(len(session_bytes)))
        parts.append(session_bytes)

    compressed = gzip.compress(payload)
    parts.append(_U32.pack(len(compressed)))
    parts.append(compressed)
    return b"".join(parts)


def _read_u32(buf: bytes, offset: int, what: str) -> int:
    if len(buf) < offset + 4:
        raise DecodeError(f"Truncated frame: missing {what} at offset {offset}")
    return _U32.unpack_from(buf, offset)[0]


def _read_i32(buf: bytes, offset: int, what: str) -> int:
    if len(buf) < offset + 4:
        raise DecodeError(f"Truncated frame: missing {what} at offset {offset}")
    return _I32.unpack_from(buf, offset)[0]


def _read_payload(buf: bytes, offset: int) -> tuple[int, bytes]:
    size = _read_u32(buf, offset, "payload length")
    start = offset + 4
    payload = buf[start : start + size]
    if len(payload) < size:
        raise DecodeError(f"Truncated frame: payload declares {size} bytes, got {len(payload)}")
    return size, payload


def _interpret_payload(payload: bytes, serialization: int, compression: int) -> Any:
    if compression == GZIP:
        try:
            payload = gzip.decompress(payload)
        except (OSError, EOFError, zlib.error) as exc:
            raise DecodeError(f"Unable to inflate gzip payload: {exc}") from exc

    if not payload:
        return None
    if serialization == JSON_SERIALIZATION:
        try:
            return json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise DecodeError(f"Invalid JSON payload: {exc}") from exc
    if serialization == NO_SERIALIZATION:
        return payload
    return payload.decode("utf-8", errors="replace")


def parse_response(res: bytes | bytearray | memoryview) -> ServerResponse:
    """Decode one inbound frame.

    Text frames are rejected with :class:`DecodeError`; the service only
    speaks binary frames. Message types other than full response, ack and
    error are returned with header fields only.
    """
    if isinstance(res, str):
        raise DecodeError("Expected a binary frame, got text")
    res = bytes(res)
    if len(res) < HEADER_BYTES:
        raise DecodeError(f"Incomplete frame header: expected {HEADER_BYTES} bytes, got {len(res)}")

    version = res[0] >> 4
    header_size = res[0] & 0x0F
    message_type = res[1] >> 4
    flags = res[1] & 0x0F
    serialization = res[2] >> 4
    compression = res[2] & 0x0F
    reserved = res[3]

    header_len = header_size * 4
    if header_size == 0 or len(res) < header_len:
        raise DecodeError(f"Invalid header size {header_size} for a {len(res)} byte frame")

    result = ServerResponse(
        message_type=MESSAGE_TYPE_NAMES.get(message_type, f"UNKNOWN_{message_type}"),
        message_type_code=message_type,
        version=version,
        header_size=header_size,
        flags=flags,
        serialization=serialization,
        compression=compression,
        reserved=reserved,
        extension=res[HEADER_BYTES:header_len],
    )
    body = res[header_len:]

    if message_type in (SERVER_FULL_RESPONSE, SERVER_ACK):
        offset = 0
        if has_sequence(flags):
            result.sequence = _read_i32(body, offset, "sequence")
            offset += 4
        if has_event(flags):
            result.event = _read_u32(body, offset, "event")
            offset += 4
        session_size = _read_i32(body, offset, "session id length")
        offset += 4
        if session_size < 0 or len(body) < offset + session_size:
            raise DecodeError(f"Truncated frame: invalid session id length {session_size}")
        result.session_id = body[offset : offset + session_size].decode("utf-8", errors="replace")
        offset += session_size
        result.payload_size, payload = _read_payload(body, offset)
    elif message_type == SERVER_ERROR_RESPONSE:
        result.code = _read_u32(body, 0, "error code")
        result.payload_size, payload = _read_payload(body, 4)
    else:
        return result

    result.payload = _interpret_payload(payload, serialization, compression)
    return result
