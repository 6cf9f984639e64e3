"""Tests for the MCP tools, with FastMCP and the serial port mocked."""

from __future__ import annotations

import json
import sys
import tempfile
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from uart_bootloader_mcp.session import BootloaderSession

from conftest import FakeTransport


def _get_server_module():
    """Import server module with FastMCP mocked to avoid init issues."""
    mock_fastmcp_cls = MagicMock()
    mock_fastmcp_instance = MagicMock()
    # Make the @mcp.tool() decorator a no-op that returns the function unchanged
    mock_fastmcp_instance.tool.return_value = lambda fn: fn
    mock_fastmcp_instance.resource.return_value = lambda fn: fn
    mock_fastmcp_cls.return_value = mock_fastmcp_instance

    with patch("mcp.server.fastmcp.FastMCP", mock_fastmcp_cls):
        sys.modules.pop("uart_bootloader_mcp.server", None)
        import uart_bootloader_mcp.server as server_mod

    return server_mod


@pytest.fixture
def server():
    return _get_server_module()


@pytest.fixture
def attached(server):
    """Wire a fake transport into the server's global session."""
    transport = FakeTransport()
    connection = MagicMock()
    connection.connected = True
    server._connection = connection
    server._session = BootloaderSession(transport)
    yield server, transport
    server._connection = None
    server._session = None


def test_tools_require_connection(server):
    with pytest.raises(RuntimeError, match="connect"):
        server.get_version()


def test_get_version_tool(attached):
    server, transport = attached
    transport.queue(bytes([0xBB, 0x01, 0x10]))
    assert server.get_version() == {"version": "0x10"}


def test_nack_reported_as_error(attached):
    server, transport = attached
    transport.queue(b"\xee")
    assert server.get_device_id() == {"error": "checksum verification failed"}


def test_flash_erase_validation_error(attached):
    """Out-of-range erase is rejected without touching the port."""
    server, transport = attached
    result = server.flash_erase(6, 3)
    assert "error" in result
    assert transport.writes == []


def test_read_memory_bad_address(attached):
    server, transport = attached
    result = server.read_memory("0xZZ", 4)
    assert result == {"error": "Bad hex address: '0xZZ'"}
    assert transport.writes == []


def test_read_memory_tool(attached):
    server, transport = attached
    transport.queue(bytes([0xBB, 0x03, 0x01, 0xCA, 0xFE]))
    result = server.read_memory("08000000", 2)
    assert result["data"] == "ca fe"
    packet = transport.packets()[0]
    assert int.from_bytes(packet[2:6], "little") == 0x08000000


def test_write_bytes_tool(attached):
    server, transport = attached
    transport.queue(bytes([0xBB, 0x01, 0x01]))
    result = server.write_bytes("0x20000000", "de ad be ef")
    assert result["completed"] is True
    assert result["bytes_written"] == 4


def test_write_bytes_rejects_bad_hex(attached):
    server, transport = attached
    assert "error" in server.write_bytes("0x20000000", "xyz")
    assert transport.writes == []


def test_write_memory_from_image(attached):
    server, transport = attached
    with tempfile.NamedTemporaryFile(suffix=".bin", delete=False) as f:
        f.write(bytes(200))
    transport.queue(bytes([0xBB, 0x01, 0x01]) * 2)

    result = server.write_memory(f.name, "0x08008000")
    assert result["completed"] is True
    assert result["image"]["size"] == 200
    assert len(result["chunks"]) == 2
    Path(f.name).unlink()


def test_write_memory_missing_image(attached):
    server, _ = attached
    result = server.write_memory("/nonexistent.bin", "0x08008000")
    assert "File not found" in result["error"]


def test_set_rw_protection_tool(attached):
    server, transport = attached
    transport.queue(bytes([0xBB, 0x01, 0x01]))
    result = server.set_rw_protection([0, 1], 2)
    assert result["status"] == "success"
    assert transport.packets()[0][2:4] == bytes([0x03, 0x02])


def test_jump_closes_connection(attached):
    server, transport = attached
    connection = server._connection
    transport.queue(bytes([0xBB, 0x01, 0x00]))
    result = server.jump_to_address("0x08008000")
    assert result["session_ended"] is True
    connection.close.assert_called_once()
    assert server._session is None


def test_connect_failure_reported(server):
    with patch.object(
        server.SerialConnection, "open", side_effect=server.BootloaderError("no port")
    ):
        result = server.connect("/dev/ttyUSB9")
    assert result == {"connected": False, "error": "no port"}
    assert server._session is None


def test_list_ports_tool(server):
    with patch.object(server, "list_serial_ports", return_value=["/dev/ttyUSB0"]):
        assert server.list_ports() == {"ports": ["/dev/ttyUSB0"], "count": 1}


def test_command_catalog_resource(server):
    catalog = json.loads(server.resource_command_catalog())
    assert catalog["count"] == 10
    assert catalog["commands"][0] == {
        "name": "get_version",
        "opcode": "0xA1",
        "header_length": 6,
        "description": "Get bootloader version",
    }
