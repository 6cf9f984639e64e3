"""Command catalog and per-command packet builders.

Each command is identified by a single-byte opcode and a fixed packet
size (length byte and checksum included). Memory write is the only
command whose size grows with its payload.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from enum import IntEnum
from types import MappingProxyType

from .errors import UnsupportedCommand, ValidationError
from .framing import (
    ADDRESS_LIMIT,
    MAX_CHUNK_SIZE,
    OutgoingPacket,
    build_packet,
)

SECTOR_COUNT = 8
PROTECTION_LEVELS = (1, 2)  # write, read/write
MAX_READ_SIZE = 254  # reply length byte also counts the status byte


class Command(IntEnum):
    """Bootloader command opcodes."""

    GET_VERSION = 0xA1
    GET_HELP = 0xA2
    GET_DEVICE_ID = 0xA3
    GET_RDP_LEVEL = 0xA4
    JUMP_TO_ADDRESS = 0xA5
    FLASH_ERASE = 0xA6
    MEMORY_WRITE = 0xA7
    MEMORY_READ = 0xA8
    SET_RW_PROTECTION = 0xA9
    GET_RW_PROTECTION = 0xAA


@dataclass(frozen=True)
class CommandDescriptor:
    """Wire shape of one command."""

    opcode: int
    header_length: int
    description: str

    def to_dict(self) -> dict:
        return {
            "opcode": f"0x{self.opcode:02X}",
            "header_length": self.header_length,
            "description": self.description,
        }


COMMAND_CATALOG: Mapping[Command, CommandDescriptor] = MappingProxyType({
    Command.GET_VERSION: CommandDescriptor(Command.GET_VERSION, 6, "Get bootloader version"),
    Command.GET_HELP: CommandDescriptor(Command.GET_HELP, 6, "List supported commands"),
    Command.GET_DEVICE_ID: CommandDescriptor(Command.GET_DEVICE_ID, 6, "Get device ID"),
    Command.GET_RDP_LEVEL: CommandDescriptor(Command.GET_RDP_LEVEL, 6, "Get read-protection level"),
    Command.JUMP_TO_ADDRESS: CommandDescriptor(Command.JUMP_TO_ADDRESS, 10, "Jump to address"),
    Command.FLASH_ERASE: CommandDescriptor(Command.FLASH_ERASE, 8, "Erase flash sectors"),
    Command.MEMORY_WRITE: CommandDescriptor(Command.MEMORY_WRITE, 11, "Write memory"),
    Command.MEMORY_READ: CommandDescriptor(Command.MEMORY_READ, 11, "Read memory"),
    Command.SET_RW_PROTECTION: CommandDescriptor(Command.SET_RW_PROTECTION, 8, "Set sector R/W protection"),
    Command.GET_RW_PROTECTION: CommandDescriptor(Command.GET_RW_PROTECTION, 6, "Get sector R/W protection"),
})


def lookup(command: int | str) -> Command:
    """Resolve an opcode or command name to a :class:`Command`.

    Raises:
        UnsupportedCommand: If the command is not in the catalog.
    """
    if isinstance(command, Command):
        return command
    if isinstance(command, str):
        try:
            return Command[command.strip().upper()]
        except KeyError:
            raise UnsupportedCommand(command) from None
    try:
        return Command(command)
    except ValueError:
        raise UnsupportedCommand(command) from None


def build_command(
    command: Command, args: bytes = b"", extra: int = 0
) -> OutgoingPacket:
    """Build a packet for any catalog command."""
    descriptor = COMMAND_CATALOG[lookup(command)]
    return build_packet(descriptor.opcode, descriptor.header_length, args, extra)


def _check_address(address: int) -> bytes:
    if not 0 <= address < ADDRESS_LIMIT:
        raise ValidationError(f"Address must fit in 32 bits, got {address:#x}")
    return address.to_bytes(4, "little")


def _check_sector(sector: int) -> int:
    if not 0 <= sector < SECTOR_COUNT:
        raise ValidationError(
            f"Sector number must be 0-{SECTOR_COUNT - 1}, got {sector}"
        )
    return sector


def build_get_version() -> OutgoingPacket:
    return build_command(Command.GET_VERSION)


def build_get_help() -> OutgoingPacket:
    return build_command(Command.GET_HELP)


def build_get_device_id() -> OutgoingPacket:
    return build_command(Command.GET_DEVICE_ID)


def build_get_rdp_level() -> OutgoingPacket:
    return build_command(Command.GET_RDP_LEVEL)


def build_get_rw_protection() -> OutgoingPacket:
    return build_command(Command.GET_RW_PROTECTION)


def build_jump_to_address(address: int) -> OutgoingPacket:
    """Build a Jump command.

    Args:
        address: 32-bit target address.
    """
    return build_command(Command.JUMP_TO_ADDRESS, _check_address(address))


def build_flash_erase(base_sector: int, sector_count: int) -> OutgoingPacket:
    """Build a Flash Erase command.

    Args:
        base_sector: First sector to erase, 0-7.
        sector_count: Number of sectors, at most ``8 - base_sector``.
    """
    _check_sector(base_sector)
    limit = SECTOR_COUNT - base_sector
    if not 1 <= sector_count <= limit:
        raise ValidationError(
            f"Cannot erase {sector_count} sectors from sector {base_sector}; "
            f"must be 1-{limit}"
        )
    return build_command(Command.FLASH_ERASE, bytes([base_sector, sector_count]))


def build_memory_write(address: int, data: bytes) -> OutgoingPacket:
    """Build a Memory Write command for a single chunk.

    Args:
        address: Destination address of the first byte.
        data: 1-128 bytes to write.
    """
    if not 1 <= len(data) <= MAX_CHUNK_SIZE:
        raise ValidationError(
            f"Memory write chunk must be 1-{MAX_CHUNK_SIZE} bytes, got {len(data)}"
        )
    addr = _check_address(address)
    if address + len(data) > ADDRESS_LIMIT:
        raise ValidationError(
            f"{len(data)} bytes at 0x{address:08X} run past the end "
            f"of the address space"
        )
    args = addr + bytes([len(data)]) + bytes(data)
    return build_command(Command.MEMORY_WRITE, args, extra=len(data))


def build_memory_read(address: int, count: int) -> OutgoingPacket:
    """Build a Memory Read command.

    Args:
        address: Source address.
        count: Number of bytes to read, 1-254. The reply length byte
            covers the status byte too, so 254 is the most one reply holds.
    """
    if not 1 <= count <= MAX_READ_SIZE:
        raise ValidationError(f"Read length must be 1-{MAX_READ_SIZE}, got {count}")
    return build_command(
        Command.MEMORY_READ, _check_address(address) + bytes([count])
    )


def sectors_to_mask(sectors: Iterable[int]) -> int:
    """Fold sector indices into the one-byte sector bitmask."""
    mask = 0
    for sector in sectors:
        mask |= 1 << _check_sector(sector)
    return mask


def build_set_rw_protection(sectors: Iterable[int], level: int) -> OutgoingPacket:
    """Build a Set R/W Protection command.

    Args:
        sectors: Sector indices (0-7) to protect.
        level: 1 for write protection, 2 for read/write protection.
    """
    if level not in PROTECTION_LEVELS:
        raise ValidationError(f"Protection level must be 1 or 2, got {level}")
    mask = sectors_to_mask(sectors)
    return build_command(Command.SET_RW_PROTECTION, bytes([mask, level]))
