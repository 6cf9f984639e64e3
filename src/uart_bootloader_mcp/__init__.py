"""Host-side driver and MCP server for a UART bootloader."""

__version__ = "0.1.0"
