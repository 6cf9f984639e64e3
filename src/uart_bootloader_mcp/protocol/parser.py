"""Reply decoding for device messages.

The wire format carries no correlation id, so the caller tells
:func:`read_reply` which command the reply answers.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Protocol

from ..models.protection import SectorProtection
from .commands import Command
from .errors import MalformedReply, ProtocolNack, TransportError, UnrecognizedReply
from .framing import ACK, NACK, READ_TIMEOUT_S, REPLY_HEADER_SIZE, ReplyHeader

logger = logging.getLogger(__name__)


class ByteReader(Protocol):
    def read(self, size: int, timeout: float) -> bytes: ...


class ReplyStatus(Enum):
    """Outcome byte of commands that report success or failure."""

    SUCCESS = "success"
    FAILURE = "failure"
    INVALID = "invalid"


@dataclass
class VersionReply:
    """Parsed Get Version (0xA1) reply."""

    version: int

    def to_dict(self) -> dict:
        return {"version": f"0x{self.version:02X}"}


@dataclass
class HelpReply:
    """Parsed Get Help (0xA2) reply: the opcodes the bootloader supports."""

    opcodes: list[int] = field(default_factory=list)

    def to_dict(self) -> dict:
        commands = []
        for opcode in self.opcodes:
            entry = {"opcode": f"0x{opcode:02X}"}
            try:
                entry["name"] = Command(opcode).name.lower()
            except ValueError:
                pass  # opcode unknown to this host
            commands.append(entry)
        return {"commands": commands}


@dataclass
class DeviceIdReply:
    """Parsed Get Device ID (0xA3) reply."""

    device_id: int

    def to_dict(self) -> dict:
        return {"device_id": f"0x{self.device_id:04X}"}


@dataclass
class RdpLevelReply:
    """Parsed Get RDP Level (0xA4) reply."""

    level: int

    def to_dict(self) -> dict:
        return {"rdp_level": f"0x{self.level:02X}"}


@dataclass
class StatusReply:
    """Reply carrying a single success/failure byte."""

    command: Command
    status: ReplyStatus
    code: int | None = None

    @property
    def ok(self) -> bool:
        return self.status is ReplyStatus.SUCCESS

    def to_dict(self) -> dict:
        return {
            "command": self.command.name.lower(),
            "status": self.status.value,
            "code": self.code,
        }


@dataclass
class MemoryReadReply:
    """Parsed Memory Read (0xA8) reply."""

    status: ReplyStatus
    code: int | None = None
    data: bytes = b""

    @property
    def ok(self) -> bool:
        return self.status is ReplyStatus.SUCCESS

    def to_dict(self) -> dict:
        result = {"status": self.status.value, "code": self.code}
        if self.ok:
            result["length"] = len(self.data)
            result["data"] = self.data.hex(" ")
        return result

    def __repr__(self) -> str:
        return (
            f"MemoryReadReply(status={self.status.value}, "
            f"data={self.data.hex(' ') if self.data else '(empty)'})"
        )


@dataclass
class ProtectionReply:
    """Parsed Get R/W Protection (0xAA) reply, one entry per sector."""

    sectors: list[SectorProtection] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {"sectors": [s.to_dict() for s in self.sectors]}


Reply = (
    VersionReply
    | HelpReply
    | DeviceIdReply
    | RdpLevelReply
    | StatusReply
    | MemoryReadReply
    | ProtectionReply
)

# Status byte meanings differ between commands
_ZERO_IS_SUCCESS = {0: ReplyStatus.SUCCESS, 1: ReplyStatus.FAILURE}
_ONE_IS_SUCCESS = {1: ReplyStatus.SUCCESS, 0: ReplyStatus.FAILURE}


def _require(command: Command, payload: bytes, size: int) -> None:
    if len(payload) < size:
        raise MalformedReply(
            f"{command.name.lower()} reply needs {size} byte(s), "
            f"got {len(payload)}"
        )


def _status_of(
    payload: bytes, codes: dict[int, ReplyStatus]
) -> tuple[ReplyStatus, int | None]:
    if not payload:
        return ReplyStatus.INVALID, None
    code = payload[0]
    return codes.get(code, ReplyStatus.INVALID), code


def parse_version(payload: bytes) -> VersionReply:
    _require(Command.GET_VERSION, payload, 1)
    return VersionReply(version=payload[0])


def parse_help(payload: bytes) -> HelpReply:
    return HelpReply(opcodes=list(payload))


def parse_device_id(payload: bytes) -> DeviceIdReply:
    """Parse the device id, sent low byte first."""
    _require(Command.GET_DEVICE_ID, payload, 2)
    return DeviceIdReply(device_id=int.from_bytes(payload[:2], "little"))


def parse_rdp_level(payload: bytes) -> RdpLevelReply:
    _require(Command.GET_RDP_LEVEL, payload, 1)
    return RdpLevelReply(level=payload[0])


def parse_jump(payload: bytes) -> StatusReply:
    status, code = _status_of(payload, _ZERO_IS_SUCCESS)
    return StatusReply(Command.JUMP_TO_ADDRESS, status, code)


def parse_flash_erase(payload: bytes) -> StatusReply:
    status, code = _status_of(payload, _ZERO_IS_SUCCESS)
    return StatusReply(Command.FLASH_ERASE, status, code)


def parse_memory_write(payload: bytes) -> StatusReply:
    status, code = _status_of(payload, _ONE_IS_SUCCESS)
    return StatusReply(Command.MEMORY_WRITE, status, code)


def parse_memory_read(payload: bytes) -> MemoryReadReply:
    """Parse a Memory Read reply: a status byte, then the memory contents."""
    status, code = _status_of(payload, _ONE_IS_SUCCESS)
    data = payload[1:] if status is ReplyStatus.SUCCESS else b""
    return MemoryReadReply(status=status, code=code, data=bytes(data))


def parse_set_rw_protection(payload: bytes) -> StatusReply:
    status, code = _status_of(payload, _ONE_IS_SUCCESS)
    return StatusReply(Command.SET_RW_PROTECTION, status, code)


def parse_rw_protection(payload: bytes) -> ProtectionReply:
    return ProtectionReply(
        sectors=[
            SectorProtection(sector=index, code=code)
            for index, code in enumerate(payload)
        ]
    )


PARSERS: dict[Command, Callable[[bytes], Reply]] = {
    Command.GET_VERSION: parse_version,
    Command.GET_HELP: parse_help,
    Command.GET_DEVICE_ID: parse_device_id,
    Command.GET_RDP_LEVEL: parse_rdp_level,
    Command.JUMP_TO_ADDRESS: parse_jump,
    Command.FLASH_ERASE: parse_flash_erase,
    Command.MEMORY_WRITE: parse_memory_write,
    Command.MEMORY_READ: parse_memory_read,
    Command.SET_RW_PROTECTION: parse_set_rw_protection,
    Command.GET_RW_PROTECTION: parse_rw_protection,
}

_unparsed = set(Command) - set(PARSERS)
if _unparsed:
    raise RuntimeError(f"No reply parser for {sorted(c.name for c in _unparsed)}")


def parse_payload(command: Command, payload: bytes) -> Reply:
    """Interpret an ACKed reply payload for ``command``."""
    return PARSERS[Command(command)](payload)


def read_reply(
    transport: ByteReader,
    command: Command,
    timeout: float = READ_TIMEOUT_S,
) -> Reply:
    """Read and decode the device's reply to ``command``.

    Reads the two-byte header, then ``payload_length`` more bytes if the
    device acknowledged the packet.

    Raises:
        TransportError: On timeout or short read.
        ProtocolNack: If the device rejected the packet checksum. Nothing
            past the status byte is read.
        UnrecognizedReply: If the status byte is neither ACK nor NACK.
        MalformedReply: If the payload is too short for the command.
    """
    raw = transport.read(REPLY_HEADER_SIZE, timeout)
    if not raw:
        raise TransportError(
            f"Timed out waiting for {Command(command).name.lower()} reply"
        )

    status = raw[0]
    if status == NACK:
        raise ProtocolNack()
    if status != ACK:
        raise UnrecognizedReply(status)
    if len(raw) < REPLY_HEADER_SIZE:
        raise TransportError("Reply header truncated: payload length missing")

    header = ReplyHeader(status=status, payload_length=raw[1])
    logger.debug("RX header: %r", header)

    payload = b""
    if header.payload_length:
        payload = transport.read(header.payload_length, timeout)
        if len(payload) != header.payload_length:
            raise TransportError(
                f"Short read: expected {header.payload_length} payload bytes, "
                f"got {len(payload)}"
            )
        logger.debug("RX payload: %s", payload.hex(" "))

    return parse_payload(command, bytes(payload))
