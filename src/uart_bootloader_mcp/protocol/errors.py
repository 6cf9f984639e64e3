"""Exceptions raised by the protocol engine.

Every error is local to one command invocation. None of them is retried.
"""

from __future__ import annotations


class BootloaderError(Exception):
    """Base class for all bootloader host errors."""


class ValidationError(BootloaderError, ValueError):
    """Arguments were rejected before anything was sent."""


class ProtocolNack(BootloaderError):
    """The device answered NACK (0xEE): its checksum check failed."""

    def __init__(self, message: str = "checksum verification failed") -> None:
        super().__init__(message)


class UnrecognizedReply(BootloaderError):
    """The reply status byte was neither ACK nor NACK."""

    def __init__(self, status: int) -> None:
        self.status = status
        super().__init__(f"unrecognized reply (status byte 0x{status:02X})")


class TransportError(BootloaderError, ConnectionError):
    """The transport timed out, returned a short read, or is not open."""


class UnsupportedCommand(BootloaderError):
    """The requested command is not in the catalog."""

    def __init__(self, command: object) -> None:
        self.command = command
        if isinstance(command, int):
            super().__init__(f"unsupported command 0x{command:02X}")
        else:
            super().__init__(f"unsupported command {command!r}")


class SessionTerminated(BootloaderError):
    """Control has left the bootloader after a successful jump."""


class MalformedReply(BootloaderError):
    """An ACKed reply payload is too short for the command it answers."""
