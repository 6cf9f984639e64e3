"""Tests for packet building, wire splitting, and chunk planning."""

import math

import pytest

from uart_bootloader_mcp.protocol.errors import ValidationError
from uart_bootloader_mcp.protocol.framing import (
    CHECKSUM_SIZE,
    MAX_CHUNK_SIZE,
    Chunk,
    OutgoingPacket,
    ReplyHeader,
    build_packet,
    plan_chunks,
    split_for_wire,
)
from uart_bootloader_mcp.utils.crc import crc32


def test_build_packet_get_version_bytes():
    """A six-byte command packs to wire length 5, opcode, LSB-first CRC."""
    packet = build_packet(0xA1, 6)
    assert packet.to_bytes() == bytes([0x05, 0xA1, 0xEE, 0x14, 0x13, 0xF5])


def test_build_packet_fields():
    packet = build_packet(0xA6, 8, bytes([0x05, 0x03]))
    assert packet.total_length == 7
    assert packet.opcode == 0xA6
    assert packet.payload == bytes([0x05, 0x03])
    assert packet.checksum == 0x744B5602
    assert len(packet) == 8


def test_wire_length_counts_following_bytes():
    """The first byte is the number of bytes after it."""
    data = build_packet(0xA5, 10, bytes(4)).to_bytes()
    assert data[0] == len(data) - 1 == 9


def test_checksum_covers_everything_before_it():
    """Recomputing over the packet minus its trailer reproduces the trailer."""
    data = build_packet(0xA8, 11, bytes([0x00, 0x80, 0x00, 0x08, 0x10])).to_bytes()
    trailer = data[-CHECKSUM_SIZE:]
    assert int.from_bytes(trailer, "little") == crc32(data[:-CHECKSUM_SIZE])


def test_checksum_byte_order():
    """Checksum bytes go out least significant first."""
    packet = build_packet(0xA1, 6)
    trailer = packet.to_bytes()[-4:]
    assert trailer[0] == packet.checksum & 0xFF
    assert trailer[3] == (packet.checksum >> 24) & 0xFF


def test_build_packet_with_extra_payload():
    data = bytes(range(16))
    args = bytes(4) + bytes([len(data)]) + data
    packet = build_packet(0xA7, 11, args, extra=len(data))
    raw = packet.to_bytes()
    assert len(raw) == 11 + len(data)
    assert raw[0] == 10 + len(data)


def test_build_packet_rejects_wrong_argument_size():
    with pytest.raises(ValidationError):
        build_packet(0xA5, 10, bytes(3))


def test_build_packet_rejects_oversized_packet():
    with pytest.raises(ValidationError):
        build_packet(0xA7, 11, bytes(251), extra=246)


def test_build_packet_rejects_256_byte_packet():
    """256 bytes cannot be stored in the length byte before the decrement."""
    with pytest.raises(ValidationError):
        build_packet(0xA7, 11, bytes(250), extra=245)


def test_build_packet_accepts_255_byte_packet():
    raw = build_packet(0xA7, 11, bytes(249), extra=244).to_bytes()
    assert len(raw) == 255
    assert raw[0] == 254


def test_split_for_wire():
    """The length byte and the body are separated."""
    data = build_packet(0xA1, 6).to_bytes()
    length_byte, body = split_for_wire(data)
    assert length_byte == b"\x05"
    assert body == data[1:]
    assert len(body) == data[0]


def test_split_for_wire_rejects_truncated_packet():
    with pytest.raises(ValidationError):
        split_for_wire(bytes([0x05, 0xA1, 0x00]))
    with pytest.raises(ValidationError):
        split_for_wire(b"")


@pytest.mark.parametrize("length", [1, 127, 128, 129, 300, 1024, 1025])
def test_plan_chunks_sizes_and_addresses(length):
    """Chunks are full-size except the last and their addresses advance."""
    base = 0x08008000
    data = bytes(i & 0xFF for i in range(length))
    chunks = list(plan_chunks(base, data))

    assert len(chunks) == math.ceil(length / MAX_CHUNK_SIZE)
    assert all(len(c.data) == MAX_CHUNK_SIZE for c in chunks[:-1])
    assert sum(len(c.data) for c in chunks) == length
    assert b"".join(c.data for c in chunks) == data

    offset = 0
    for chunk in chunks:
        assert chunk.address == base + offset
        offset += len(chunk.data)


def test_plan_chunks_empty_buffer():
    assert list(plan_chunks(0x08000000, b"")) == []


def test_plan_chunks_custom_size():
    chunks = list(plan_chunks(0, bytes(10), chunk_size=4))
    assert [len(c.data) for c in chunks] == [4, 4, 2]
    assert [c.address for c in chunks] == [0, 4, 8]


def test_plan_chunks_rejects_bad_chunk_size():
    with pytest.raises(ValidationError):
        list(plan_chunks(0, bytes(10), chunk_size=129))
    with pytest.raises(ValidationError):
        list(plan_chunks(0, bytes(10), chunk_size=0))


def test_plan_chunks_rejects_address_overflow():
    with pytest.raises(ValidationError):
        list(plan_chunks(0xFFFFFFF0, bytes(32)))


def test_reply_header_flags():
    assert ReplyHeader(0xBB, 1).is_ack
    assert ReplyHeader(0xEE, 0).is_nack
    header = ReplyHeader(0x42, 0)
    assert not header.is_ack and not header.is_nack


def test_reprs_are_readable():
    assert "0xA1" in repr(build_packet(0xA1, 6))
    assert "0x08000000" in repr(Chunk(0x08000000, b"\x00"))
    assert isinstance(build_packet(0xA1, 6), OutgoingPacket)
