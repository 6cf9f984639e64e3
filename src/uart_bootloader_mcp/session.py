"""Bootloader session: one command at a time over a single byte transport.

Each operation builds a packet, sends it, and blocks until the reply has
been read and decoded. The reply carries no correlation id, so commands
must never overlap on the same transport.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Protocol

from .protocol.commands import (
    Command,
    build_flash_erase,
    build_get_device_id,
    build_get_help,
    build_get_rdp_level,
    build_get_rw_protection,
    build_get_version,
    build_jump_to_address,
    build_memory_read,
    build_memory_write,
    build_set_rw_protection,
    lookup,
)
from .protocol.errors import BootloaderError, SessionTerminated, TransportError
from .protocol.framing import (
    MAX_CHUNK_SIZE,
    READ_TIMEOUT_S,
    OutgoingPacket,
    plan_chunks,
    split_for_wire,
)
from .protocol.parser import (
    DeviceIdReply,
    HelpReply,
    MemoryReadReply,
    ProtectionReply,
    RdpLevelReply,
    Reply,
    ReplyStatus,
    StatusReply,
    VersionReply,
    read_reply,
)

logger = logging.getLogger(__name__)


class ByteTransport(Protocol):
    """What a session needs from the link to the device."""

    def write(self, data: bytes) -> int | None: ...

    def read(self, size: int, timeout: float) -> bytes: ...

    def discard_input(self) -> None: ...


@dataclass
class ChunkResult:
    """Outcome of one memory-write chunk."""

    address: int
    length: int
    status: str
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == ReplyStatus.SUCCESS.value

    def to_dict(self) -> dict:
        result = {
            "address": f"0x{self.address:08X}",
            "length": self.length,
            "status": self.status,
        }
        if self.error:
            result["error"] = self.error
        return result


@dataclass
class WriteReport:
    """Summary of a chunked memory write."""

    base_address: int
    total: int
    chunks: list[ChunkResult] = field(default_factory=list)

    @property
    def bytes_written(self) -> int:
        return sum(c.length for c in self.chunks if c.ok)

    @property
    def completed(self) -> bool:
        """True when every byte was sent and acknowledged as written."""
        return self.bytes_written == self.total and all(c.ok for c in self.chunks)

    def to_dict(self) -> dict:
        return {
            "base_address": f"0x{self.base_address:08X}",
            "total": self.total,
            "bytes_written": self.bytes_written,
            "completed": self.completed,
            "chunks": [c.to_dict() for c in self.chunks],
        }


class BootloaderSession:
    """Issues bootloader commands over an open transport.

    Usage::

        conn = SerialConnection("/dev/ttyUSB0")
        conn.open()
        session = BootloaderSession(conn)
        print(session.get_version())

    Args:
        transport: Open transport with ``write``, ``read`` and
            ``discard_input``.
        timeout: Seconds to wait for each part of a reply.
        abort_on_failure: Default policy for :meth:`write_memory`. When
            false, remaining chunks are still sent after a chunk fails.
    """

    def __init__(
        self,
        transport: ByteTransport,
        timeout: float = READ_TIMEOUT_S,
        abort_on_failure: bool = False,
    ) -> None:
        self._transport = transport
        self._timeout = timeout
        self.abort_on_failure = abort_on_failure
        self._terminated = False

    @property
    def terminated(self) -> bool:
        """True once a jump has handed control to application code."""
        return self._terminated

    def _send(self, packet: OutgoingPacket) -> None:
        length_byte, body = split_for_wire(packet.to_bytes())
        logger.debug("TX %r", packet)
        self._transport.write(length_byte)
        self._transport.write(body)

    def execute(self, command: Command, packet: OutgoingPacket) -> Reply:
        """Send ``packet`` and decode the reply as an answer to ``command``.

        Raises:
            SessionTerminated: If a jump already succeeded.
            BootloaderError: Whatever the reply decoder raised.
        """
        command = lookup(command)
        if self._terminated:
            raise SessionTerminated(
                f"Cannot send {command.name.lower()}: control has left the bootloader"
            )
        self._send(packet)
        try:
            return read_reply(self._transport, command, self._timeout)
        except BootloaderError as e:
            logger.warning("%s failed: %s", command.name.lower(), e)
            raise

    def get_version(self) -> VersionReply:
        return self.execute(Command.GET_VERSION, build_get_version())

    def get_help(self) -> HelpReply:
        return self.execute(Command.GET_HELP, build_get_help())

    def get_device_id(self) -> DeviceIdReply:
        return self.execute(Command.GET_DEVICE_ID, build_get_device_id())

    def get_rdp_level(self) -> RdpLevelReply:
        return self.execute(Command.GET_RDP_LEVEL, build_get_rdp_level())

    def get_rw_protection(self) -> ProtectionReply:
        return self.execute(Command.GET_RW_PROTECTION, build_get_rw_protection())

    def jump_to_address(self, address: int) -> StatusReply:
        """Jump to ``address``. On success the session is over."""
        reply = self.execute(Command.JUMP_TO_ADDRESS, build_jump_to_address(address))
        if reply.ok:
            self._terminated = True
            logger.info("Jumped to 0x%08X, bootloader session ended", address)
        return reply

    def flash_erase(self, base_sector: int, sector_count: int) -> StatusReply:
        reply = self.execute(
            Command.FLASH_ERASE, build_flash_erase(base_sector, sector_count)
        )
        if not reply.ok:
            logger.warning(
                "Erase of sectors %d-%d reported %s",
                base_sector,
                base_sector + sector_count - 1,
                reply.status.value,
            )
        return reply

    def read_memory(self, address: int, count: int) -> MemoryReadReply:
        return self.execute(Command.MEMORY_READ, build_memory_read(address, count))

    def set_rw_protection(self, sectors: Iterable[int], level: int) -> StatusReply:
        return self.execute(
            Command.SET_RW_PROTECTION, build_set_rw_protection(sectors, level)
        )

    def write_memory(
        self,
        base_address: int,
        data: bytes,
        abort_on_failure: bool | None = None,
        chunk_size: int = MAX_CHUNK_SIZE,
    ) -> WriteReport:
        """Write ``data`` to memory in chunks of at most ``chunk_size`` bytes.

        Chunks go out strictly in order and each reply is read before the
        next chunk is sent.

        Args:
            base_address: Address of the first byte.
            data: Bytes to write, any length.
            abort_on_failure: Stop at the first chunk that is not written
                successfully. ``None`` uses the session default.
            chunk_size: Bytes per packet, 1-128.

        Returns:
            A ``WriteReport`` listing every chunk that was attempted.

        Raises:
            ValidationError: Before anything is sent, if the plan is invalid.
            SessionTerminated: If a jump already succeeded.
        """
        if abort_on_failure is None:
            abort_on_failure = self.abort_on_failure
        chunks = list(plan_chunks(base_address, data, chunk_size))
        report = WriteReport(base_address=base_address, total=len(data))

        for index, chunk in enumerate(chunks, start=1):
            packet = build_memory_write(chunk.address, chunk.data)
            stale_input = False
            try:
                reply = self.execute(Command.MEMORY_WRITE, packet)
            except SessionTerminated:
                raise
            except BootloaderError as e:
                stale_input = isinstance(e, TransportError)
                result = ChunkResult(chunk.address, len(chunk.data), "error", str(e))
            else:
                result = ChunkResult(chunk.address, len(chunk.data), reply.status.value)
            report.chunks.append(result)

            logger.debug(
                "Chunk %d/%d at 0x%08X: %s",
                index,
                len(chunks),
                chunk.address,
                result.status,
            )
            if not result.ok:
                logger.warning(
                    "Write of %d bytes at 0x%08X reported %s",
                    result.length,
                    result.address,
                    result.error or result.status,
                )
                if abort_on_failure:
                    break
                if stale_input:
                    # A late reply to this chunk must not answer the next one
                    self._transport.discard_input()
                    logger.warning(
                        "Discarded unread input after chunk at 0x%08X",
                        result.address,
                    )

        logger.info(
            "Wrote %d of %d bytes at 0x%08X",
            report.bytes_written,
            report.total,
            base_address,
        )
        return report
