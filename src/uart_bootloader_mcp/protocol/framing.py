"""Packet builder and reply header for the bootloader wire protocol.

Host packet layout::

    +-------------+--------+--------------------+--------------+
    | Wire length | Opcode |   Command payload  |   Checksum   |
    |   1 byte    | 1 byte |  variable length   |   4 bytes    |
    +-------------+--------+--------------------+--------------+

- Wire length: number of bytes that follow it (excludes itself)
- Checksum: CRC-32 over every byte before it, wire length included,
  least-significant byte first

Device reply layout::

    +--------+----------------+---------------------+
    | Status | Payload length |       Payload       |
    | 1 byte |     1 byte     | payload_length bytes|
    +--------+----------------+---------------------+

- Status: 0xBB (ACK) or 0xEE (NACK, the device's checksum check failed)
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass

from ..utils.crc import crc32
from .errors import ValidationError

ACK = 0xBB
NACK = 0xEE

PREFIX_SIZE = 2  # wire length + opcode
CHECKSUM_SIZE = 4
REPLY_HEADER_SIZE = 2
MAX_PACKET_SIZE = 255  # size is stored in byte 0 before the decrement
MAX_CHUNK_SIZE = 128
ADDRESS_LIMIT = 1 << 32
READ_TIMEOUT_S = 2.0


def _checksum_bytes(checksum: int) -> bytes:
    return bytes((checksum >> shift) & 0xFF for shift in (0, 8, 16, 24))


@dataclass(frozen=True)
class OutgoingPacket:
    """A host-to-device packet, ready for transmission."""

    total_length: int
    opcode: int
    payload: bytes
    checksum: int

    def to_bytes(self) -> bytes:
        return (
            bytes([self.total_length, self.opcode])
            + self.payload
            + _checksum_bytes(self.checksum)
        )

    def __len__(self) -> int:
        return self.total_length + 1

    def __repr__(self) -> str:
        return (
            f"OutgoingPacket(opcode=0x{self.opcode:02X}, "
            f"length={self.total_length}, "
            f"payload={self.payload.hex(' ') if self.payload else '(empty)'}, "
            f"checksum=0x{self.checksum:08X})"
        )


def build_packet(
    opcode: int, header_length: int, args: bytes = b"", extra: int = 0
) -> OutgoingPacket:
    """Assemble a packet for one command.

    Args:
        opcode: Single-byte command opcode.
        header_length: Fixed packet size for the command, length byte
            and checksum included.
        args: Command-specific argument bytes, placed at offset 2.
        extra: Number of variable payload bytes on top of
            ``header_length`` (memory write data).

    Returns:
        The built ``OutgoingPacket``.

    Raises:
        ValidationError: If ``args`` does not fill the packet exactly or
            the packet would not fit a one-byte length field.
    """
    size = header_length + extra
    if size > MAX_PACKET_SIZE:
        raise ValidationError(
            f"Packet of {size} bytes exceeds the {MAX_PACKET_SIZE}-byte limit"
        )
    expected = size - PREFIX_SIZE - CHECKSUM_SIZE
    if len(args) != expected:
        raise ValidationError(
            f"Opcode 0x{opcode:02X} takes {expected} argument bytes, "
            f"got {len(args)}"
        )

    buf = bytearray(size)
    buf[0] = size
    buf[1] = opcode
    buf[PREFIX_SIZE : size - CHECKSUM_SIZE] = args

    # The length byte on the wire does not count itself
    buf[0] -= 1
    checksum = crc32(bytes(buf[: size - CHECKSUM_SIZE]))
    buf[size - CHECKSUM_SIZE :] = _checksum_bytes(checksum)

    return OutgoingPacket(
        total_length=buf[0],
        opcode=opcode,
        payload=bytes(args),
        checksum=checksum,
    )


def split_for_wire(data: bytes) -> tuple[bytes, bytes]:
    """Split a serialized packet into its length byte and the rest.

    The bootloader reads the length byte on its own before reading the
    body, so the two parts are written separately.
    """
    if not data:
        raise ValidationError("Cannot send an empty packet")
    wire_length = data[0]
    body = data[1 : 1 + wire_length]
    if len(body) != wire_length:
        raise ValidationError(
            f"Packet declares {wire_length} bytes but carries {len(body)}"
        )
    return data[:1], body


@dataclass(frozen=True)
class Chunk:
    """One memory-write slice of a larger buffer."""

    address: int
    data: bytes

    def __repr__(self) -> str:
        return f"Chunk(address=0x{self.address:08X}, length={len(self.data)})"


def plan_chunks(
    base_address: int, data: bytes, chunk_size: int = MAX_CHUNK_SIZE
) -> Iterator[Chunk]:
    """Split ``data`` into consecutive memory-write chunks.

    Every chunk but the last is exactly ``chunk_size`` bytes. Each chunk's
    address is ``base_address`` plus the length of all chunks before it.

    Raises:
        ValidationError: If the chunk size is out of range or the buffer
            would run past the 32-bit address space.
    """
    if not 1 <= chunk_size <= MAX_CHUNK_SIZE:
        raise ValidationError(
            f"Chunk size must be 1-{MAX_CHUNK_SIZE}, got {chunk_size}"
        )
    if not 0 <= base_address < ADDRESS_LIMIT:
        raise ValidationError(
            f"Address must fit in 32 bits, got {base_address:#x}"
        )
    if base_address + len(data) > ADDRESS_LIMIT:
        raise ValidationError(
            f"{len(data)} bytes at 0x{base_address:08X} run past the end "
            f"of the address space"
        )

    sent = 0
    while sent < len(data):
        piece = bytes(data[sent : sent + chunk_size])
        yield Chunk(address=base_address + sent, data=piece)
        sent += len(piece)


@dataclass
class ReplyHeader:
    """The two status bytes that start every device reply."""

    status: int
    payload_length: int

    @property
    def is_ack(self) -> bool:
        return self.status == ACK

    @property
    def is_nack(self) -> bool:
        return self.status == NACK

    def __repr__(self) -> str:
        return (
            f"ReplyHeader(status=0x{self.status:02X}, "
            f"payload_length={self.payload_length})"
        )
