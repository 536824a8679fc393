from __future__ import annotations

import gzip
import struct

import pytest

from helpers import error_frame, server_frame
from realtime_dialog.errors import DecodeError
from realtime_dialog.live import protocol
from realtime_dialog.live.events import ClientEvent, ServerEvent


def test_default_header_packs_nibbles() -> None:
    header = protocol.generate_header()

    assert header == bytes([0x11, 0x14, 0x11, 0x00])


def test_header_size_counts_extension_words() -> None:
    header = protocol.generate_header(extension=b"\xaa" * 8, reserved=0x7F)

    assert len(header) == 12
    assert header[0] == (protocol.PROTOCOL_VERSION << 4) | 3
    assert header[3] == 0x7F


def test_session_id_subfield_is_length_prefixed() -> None:
    frame = protocol.build_frame(b"{}", event=ClientEvent.START_SESSION, session_id="abc")

    assert frame[4:8] == struct.pack(">I", 100)
    assert frame[8:15] == b"\x00\x00\x00\x03\x61\x62\x63"


def test_frame_without_session_id_goes_straight_to_payload_length() -> None:
    frame = protocol.build_frame(b"{}", event=ClientEvent.START_CONNECTION)

    size = struct.unpack_from(">I", frame, 8)[0]
    assert size == len(frame) - 12
    assert gzip.decompress(frame[12:]) == b"{}"


def test_payload_is_gzipped_even_when_header_says_uncompressed() -> None:
    frame = protocol.build_frame(
        b"raw-pcm",
        event=ClientEvent.TASK_REQUEST,
        compression=protocol.NO_COMPRESSION,
        serialization=protocol.NO_SERIALIZATION,
    )

    assert frame[2] & 0x0F == protocol.NO_COMPRESSION
    assert gzip.decompress(frame[12:]) == b"raw-pcm"


def test_full_response_round_trip_with_json_payload() -> None:
    frame = server_frame(ServerEvent.CHAT_RESPONSE, {"content": "你好"}, session_id="s-1")

    response = protocol.parse_response(frame)

    assert response.message_type == "SERVER_FULL_RESPONSE"
    assert response.version == protocol.PROTOCOL_VERSION
    assert response.flags == protocol.MSG_WITH_EVENT
    assert response.serialization == protocol.JSON_SERIALIZATION
    assert response.compression == protocol.GZIP
    assert response.event == ServerEvent.CHAT_RESPONSE
    assert response.session_id == "s-1"
    assert response.sequence is None
    assert response.payload == {"content": "你好"}
    assert response.payload_size == len(frame) - (4 + 4 + 4 + 3 + 4)


def test_ack_with_sequence_round_trip() -> None:
    frame = server_frame(
        ServerEvent.TTS_RESPONSE,
        b"\x01\x02\x03",
        message_type=protocol.SERVER_ACK,
        serialization=protocol.NO_SERIALIZATION,
        sequence=-7,
    )

    response = protocol.parse_response(frame)

    assert response.message_type == "SERVER_ACK"
    assert response.sequence == -7
    assert response.event == ServerEvent.TTS_RESPONSE
    assert response.payload == b"\x01\x02\x03"


def test_custom_serialization_is_passed_through_as_text() -> None:
    frame = server_frame(
        ServerEvent.ASR_INFO,
        "plain text",
        serialization=protocol.CUSTOM_TYPE,
    )

    assert protocol.parse_response(frame).payload == "plain text"


def test_uncompressed_header_leaves_gzip_bytes_in_payload() -> None:
    # The encoder always gzips, so a frame that claims no compression
    # decodes to the compressed bytes.
    frame = protocol.build_frame(
        b"pcm",
        event=ServerEvent.TTS_RESPONSE,
        session_id="",
        message_type=protocol.SERVER_ACK,
        serialization=protocol.NO_SERIALIZATION,
        compression=protocol.NO_COMPRESSION,
    )

    response = protocol.parse_response(frame)

    assert response.session_id == ""
    assert gzip.decompress(response.payload) == b"pcm"


def test_empty_payload_decodes_to_none() -> None:
    response = protocol.parse_response(server_frame(ServerEvent.SESSION_FINISHED))

    assert response.payload is None


def test_error_frame_carries_code_and_payload() -> None:
    response = protocol.parse_response(error_frame(455, {"error": "bad state"}))

    assert response.is_error
    assert response.message_type == "SERVER_ERROR"
    assert response.code == 455
    assert response.payload == {"error": "bad state"}


def test_other_message_types_return_header_only() -> None:
    frame = protocol.build_frame(b"{}", event=ClientEvent.START_CONNECTION)

    response = protocol.parse_response(frame)

    assert response.message_type == "CLIENT_FULL_REQUEST"
    assert response.payload is None
    assert response.event is None


def test_text_frame_is_rejected_instead_of_empty_result() -> None:
    with pytest.raises(DecodeError):
        protocol.parse_response("not binary")  # type: ignore[arg-type]


@pytest.mark.parametrize("raw", [b"", b"\x11\x94", b"\x10\x94\x11\x00"])
def test_short_or_headerless_buffers_are_rejected(raw: bytes) -> None:
    with pytest.raises(DecodeError):
        protocol.parse_response(raw)


def test_truncated_payload_is_rejected() -> None:
    frame = server_frame(ServerEvent.CHAT_RESPONSE, {"content": "hello"})

    with pytest.raises(DecodeError, match="Truncated"):
        protocol.parse_response(frame[:-3])


def test_invalid_gzip_is_rejected() -> None:
    header = protocol.generate_header(message_type=protocol.SERVER_FULL_RESPONSE)
    body = struct.pack(">I", ServerEvent.CHAT_RESPONSE) + struct.pack(">I", 0)
    body += struct.pack(">I", 5) + b"nogzp"

    with pytest.raises(DecodeError, match="inflate"):
        protocol.parse_response(header + body)


def test_invalid_json_is_rejected() -> None:
    frame = server_frame(ServerEvent.CHAT_RESPONSE, "{not json")

    with pytest.raises(DecodeError, match="JSON"):
        protocol.parse_response(frame)


SERIALIZED_PAYLOADS = {
    protocol.NO_SERIALIZATION: (b"\x00\x01raw", b"\x00\x01raw"),
    protocol.JSON_SERIALIZATION: ('{"content": "二", "n": [1, 2]}', {"content": "二", "n": [1, 2]}),
    protocol.THRIFT: ("thrift-bytes", "thrift-bytes"),
    protocol.CUSTOM_TYPE: ("custom text", "custom text"),
}


@pytest.mark.parametrize("message_type", [protocol.SERVER_FULL_RESPONSE, protocol.SERVER_ACK])
@pytest.mark.parametrize(
    "flags",
    [
        protocol.NO_SEQUENCE,
        protocol.POS_SEQUENCE,
        protocol.NEG_SEQUENCE,
        protocol.NEG_SEQUENCE_1,
        protocol.MSG_WITH_EVENT,
        protocol.MSG_WITH_EVENT | protocol.POS_SEQUENCE,
        protocol.MSG_WITH_EVENT | protocol.NEG_SEQUENCE,
        protocol.MSG_WITH_EVENT | protocol.NEG_SEQUENCE_1,
    ],
)
@pytest.mark.parametrize("serialization", sorted(SERIALIZED_PAYLOADS))
def test_round_trip_across_types_flags_and_serializations(
    message_type: int, flags: int, serialization: int
) -> None:
    raw, expected = SERIALIZED_PAYLOADS[serialization]
    sequence = -3 if protocol.has_sequence(flags) else None
    event = ServerEvent.CHAT_RESPONSE if protocol.has_event(flags) else None
    frame = protocol.build_frame(
        raw,
        event=event,
        session_id="s-9",
        sequence=sequence,
        message_type=message_type,
        flags=flags,
        serialization=serialization,
    )

    response = protocol.parse_response(frame)

    assert response.version == protocol.PROTOCOL_VERSION
    assert response.message_type_code == message_type
    assert response.flags == flags
    assert response.serialization == serialization
    assert response.compression == protocol.GZIP
    assert response.sequence == sequence
    assert response.event == event
    assert response.session_id == "s-9"
    assert response.payload == expected


@pytest.mark.parametrize(
    "flags,event,sequence",
    [
        (protocol.NO_SEQUENCE, ServerEvent.CHAT_RESPONSE, None),
        (protocol.MSG_WITH_EVENT, None, None),
        (protocol.MSG_WITH_EVENT | protocol.POS_SEQUENCE, ServerEvent.CHAT_RESPONSE, 5),
        (protocol.MSG_WITH_EVENT | protocol.NEG_SEQUENCE, ServerEvent.CHAT_RESPONSE, None),
    ],
)
def test_build_frame_rejects_sub_fields_the_flags_do_not_announce(
    flags: int, event: int | None, sequence: int | None
) -> None:
    with pytest.raises(ValueError, match="does not match message flags"):
        protocol.build_frame(b"{}", event=event, sequence=sequence, flags=flags)
