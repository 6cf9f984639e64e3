"""MCP server entry point for the UART bootloader host.

Exposes one tool per bootloader command, plus serial connection
management, via the Model Context Protocol using the official Python
MCP SDK with stdio transport.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from mcp.server.fastmcp import FastMCP

from .models.image import load_image
from .protocol.commands import COMMAND_CATALOG, SECTOR_COUNT
from .protocol.errors import BootloaderError, ValidationError
from .protocol.framing import MAX_CHUNK_SIZE, READ_TIMEOUT_S
from .session import BootloaderSession
from .transport.serial_connection import (
    DEFAULT_BAUDRATE,
    PORT_PATTERN,
    SerialConnection,
    list_serial_ports,
)

logger = logging.getLogger(__name__)

mcp = FastMCP(
    "uart-bootloader",
    instructions="MCP server for commanding a UART bootloader over a serial port",
)

# Global connection state
_connection: SerialConnection | None = None
_session: BootloaderSession | None = None


def _get_session() -> BootloaderSession:
    """Get the active bootloader session, raising if not connected."""
    if _session is None or _connection is None or not _connection.connected:
        raise RuntimeError(
            "Not connected to device. Use the 'connect' tool first."
        )
    return _session


def _parse_address(address: str | int) -> int:
    """Parse a hex address such as ``"0x08008000"`` or ``"8008000"``."""
    if isinstance(address, int):
        return address
    try:
        return int(address.strip(), 16)
    except ValueError:
        raise ValidationError(f"Bad hex address: {address!r}") from None


def _report(operation: Callable[..., Any], *args: Any) -> dict[str, Any]:
    """Run a session operation and turn its reply or error into a dict."""
    try:
        reply = operation(*args)
    except BootloaderError as e:
        return {"error": str(e)}
    return reply.to_dict()


# ─── CONNECTION TOOLS ─────────────────────────────────────────────────

@mcp.tool()
def list_ports(pattern: str = PORT_PATTERN) -> dict[str, Any]:
    """List serial devices the bootloader may be attached to.

    Args:
        pattern: Regular expression matched against device names
                 (default: /dev/tty*).
    """
    ports = list_serial_ports(pattern)
    return {"ports": ports, "count": len(ports)}


@mcp.tool()
def connect(
    port: str,
    baudrate: int = DEFAULT_BAUDRATE,
    timeout: float = READ_TIMEOUT_S,
    abort_on_failure: bool = False,
) -> dict[str, Any]:
    """Open the serial port the bootloader is listening on.

    Args:
        port: Serial device, e.g. /dev/ttyUSB0.
        baudrate: Line speed (default 115200).
        timeout: Seconds to wait for each reply (default 2).
        abort_on_failure: Stop a memory write at the first failed chunk
                          instead of sending the remaining chunks.
    """
    global _connection, _session
    if _connection is not None and _connection.connected:
        return {
            "connected": True,
            "message": "Already connected",
            "port": _connection.settings.port,
        }

    connection = SerialConnection(port, baudrate=baudrate, timeout=timeout)
    try:
        settings = connection.open()
    except BootloaderError as e:
        return {"connected": False, "error": str(e)}

    _connection = connection
    _session = BootloaderSession(
        connection, timeout=timeout, abort_on_failure=abort_on_failure
    )
    result: dict[str, Any] = {"connected": True}
    result.update(settings.to_dict())
    return result


@mcp.tool()
def disconnect() -> dict[str, bool]:
    """Close the serial port."""
    global _connection, _session
    if _connection is not None:
        _connection.close()
    _connection = None
    _session = None
    return {"disconnected": True}


# ─── QUERY TOOLS ─────────────────────────────────────────────────────

@mcp.tool()
def get_version() -> dict[str, Any]:
    """Read the bootloader version (command 0xA1)."""
    return _report(_get_session().get_version)


@mcp.tool()
def get_help() -> dict[str, Any]:
    """List the opcodes the bootloader supports (command 0xA2)."""
    return _report(_get_session().get_help)


@mcp.tool()
def get_device_id() -> dict[str, Any]:
    """Read the 16-bit device ID (command 0xA3)."""
    return _report(_get_session().get_device_id)


@mcp.tool()
def get_rdp_level() -> dict[str, Any]:
    """Read the flash read-protection level (command 0xA4)."""
    return _report(_get_session().get_rdp_level)


@mcp.tool()
def get_rw_protection() -> dict[str, Any]:
    """Read the R/W protection state of every flash sector (command 0xAA)."""
    return _report(_get_session().get_rw_protection)


# ─── FLASH / MEMORY TOOLS ────────────────────────────────────────────

@mcp.tool()
def jump_to_address(address: str) -> dict[str, Any]:
    """Jump to application code (command 0xA5).

    On success control leaves the bootloader and the connection is closed.

    Args:
        address: Target address in hex, e.g. "0x08008000".
    """
    session = _get_session()
    try:
        reply = session.jump_to_address(_parse_address(address))
    except BootloaderError as e:
        return {"error": str(e)}

    result = reply.to_dict()
    if session.terminated:
        disconnect()
        result["session_ended"] = True
    return result


@mcp.tool()
def flash_erase(base_sector: int, sector_count: int = 1) -> dict[str, Any]:
    """Erase consecutive flash sectors (command 0xA6).

    Args:
        base_sector: First sector to erase (0-7).
        sector_count: Number of sectors (1 to 8 - base_sector).
    """
    return _report(_get_session().flash_erase, base_sector, sector_count)


@mcp.tool()
def read_memory(address: str, count: int) -> dict[str, Any]:
    """Read bytes from device memory (command 0xA8).

    Args:
        address: Source address in hex.
        count: Number of bytes to read (1-254).
    """
    session = _get_session()
    try:
        addr = _parse_address(address)
    except ValidationError as e:
        return {"error": str(e)}
    return _report(session.read_memory, addr, count)


@mcp.tool()
def write_memory(
    image_path: str,
    address: str,
    abort_on_failure: bool | None = None,
) -> dict[str, Any]:
    """Write a binary image file to device memory (command 0xA7).

    The image is sent in chunks of up to 128 bytes; each chunk is
    acknowledged before the next is sent.

    Args:
        image_path: Path to the raw .bin file.
        address: Destination address in hex, e.g. "0x08008000".
        abort_on_failure: Stop at the first failed chunk. Defaults to the
                          policy chosen at connect time.
    """
    session = _get_session()
    try:
        image = load_image(image_path)
        addr = _parse_address(address)
    except ValueError as e:
        return {"error": str(e)}

    result = _report(session.write_memory, addr, image.data, abort_on_failure)
    result["image"] = image.to_dict()
    return result


@mcp.tool()
def write_bytes(
    address: str,
    data: str,
    abort_on_failure: bool | None = None,
) -> dict[str, Any]:
    """Write hex-encoded bytes to device memory (command 0xA7).

    Args:
        address: Destination address in hex.
        data: Bytes as hex, e.g. "de ad be ef".
        abort_on_failure: Stop at the first failed chunk.
    """
    session = _get_session()
    try:
        addr = _parse_address(address)
        payload = bytes.fromhex(data)
    except ValueError as e:
        return {"error": str(e)}
    if not payload:
        return {"error": "No data to write"}
    return _report(session.write_memory, addr, payload, abort_on_failure)


@mcp.tool()
def set_rw_protection(sectors: list[int], level: int) -> dict[str, Any]:
    """Protect flash sectors (command 0xA9).

    Args:
        sectors: Sector indices to protect (each 0-7).
        level: 1 for write protection, 2 for read/write protection.
    """
    return _report(_get_session().set_rw_protection, sectors, level)


# ─── MCP RESOURCES ───────────────────────────────────────────────────

@mcp.resource("bootloader://catalog/commands")
def resource_command_catalog() -> str:
    """Every command the host can send, with opcode and packet size."""
    commands = [
        {"name": command.name.lower(), **descriptor.to_dict()}
        for command, descriptor in COMMAND_CATALOG.items()
    ]
    return json.dumps({
        "commands": commands,
        "count": len(commands),
        "sectors": SECTOR_COUNT,
        "max_chunk_size": MAX_CHUNK_SIZE,
    })


# ─── ENTRY POINT ─────────────────────────────────────────────────────

def main():
    """Run the MCP server with stdio transport."""
    logging.basicConfig(level=logging.INFO)
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
