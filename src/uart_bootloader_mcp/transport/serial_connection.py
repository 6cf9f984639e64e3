"""Serial connection to the bootloader.

Wraps :class:`serial.Serial` so the protocol engine only sees a blocking
``write(data)`` / ``read(size, timeout)`` pair. A read returns whatever
arrived before the timeout, which may be fewer bytes than requested.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass

import serial
from serial.tools import list_ports

from ..protocol.errors import TransportError
from ..protocol.framing import READ_TIMEOUT_S

logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE = 115200
PORT_PATTERN = r"/dev/tty[A-Za-z]*"


@dataclass
class SerialSettings:
    """Serial line parameters."""

    port: str
    baudrate: int = DEFAULT_BAUDRATE
    timeout: float = READ_TIMEOUT_S

    def to_dict(self) -> dict:
        return {
            "port": self.port,
            "baudrate": self.baudrate,
            "timeout": self.timeout,
        }


def list_serial_ports(pattern: str = PORT_PATTERN) -> list[str]:
    """List serial device names matching ``pattern``.

    Args:
        pattern: Regular expression searched in each device name. The
            default keeps ``/dev/tty*`` devices.
    """
    regex = re.compile(pattern)
    return [
        port.device
        for port in list_ports.comports()
        if regex.search(port.device)
    ]


class SerialConnection:
    """Manages the serial link to the bootloader.

    Usage::

        conn = SerialConnection("/dev/ttyUSB0")
        conn.open()
        conn.write(packet_bytes)
        reply = conn.read(2, timeout=2.0)
        conn.close()
    """

    def __init__(
        self,
        port: str,
        baudrate: int = DEFAULT_BAUDRATE,
        timeout: float = READ_TIMEOUT_S,
    ) -> None:
        self._settings = SerialSettings(port=port, baudrate=baudrate, timeout=timeout)
        self._serial: serial.Serial | None = None

    @property
    def connected(self) -> bool:
        return self._serial is not None and self._serial.is_open

    @property
    def settings(self) -> SerialSettings:
        return self._settings

    def open(self) -> SerialSettings:
        """Open the serial port and drop any bytes already buffered.

        Raises:
            TransportError: If the port cannot be opened.
        """
        try:
            self._serial = serial.Serial(
                port=self._settings.port,
                baudrate=self._settings.baudrate,
                timeout=self._settings.timeout,
            )
        except serial.SerialException as e:
            raise TransportError(
                f"Could not open {self._settings.port}. "
                f"Ensure the device is connected and you have permissions. "
                f"Last error: {e}"
            ) from e

        self._serial.reset_input_buffer()
        logger.info(
            "Connected to %s at %d baud",
            self._settings.port,
            self._settings.baudrate,
        )
        return self._settings

    def close(self) -> None:
        """Close the serial port."""
        if self._serial is None:
            return

        try:
            self._serial.close()
        except serial.SerialException as e:
            logger.warning("Error closing port: %s", e)
        finally:
            self._serial = None
            logger.info("Disconnected")

    def write(self, data: bytes) -> int:
        """Write raw bytes to the device.

        Raises:
            TransportError: If not connected or the write fails.
        """
        if not self.connected:
            raise TransportError("Not connected to device")

        try:
            written = self._serial.write(data)
            self._serial.flush()
        except serial.SerialException as e:
            raise TransportError(f"Write failed: {e}") from e
        logger.debug("TX %s", bytes(data).hex(" "))
        return written

    def read(self, size: int, timeout: float | None = None) -> bytes:
        """Read up to ``size`` bytes, blocking at most ``timeout`` seconds.

        Returns:
            The bytes received, fewer than ``size`` if the timeout expired.

        Raises:
            TransportError: If not connected or the port fails.
        """
        if not self.connected:
            raise TransportError("Not connected to device")

        self._serial.timeout = self._settings.timeout if timeout is None else timeout
        try:
            data = self._serial.read(size)
        except serial.SerialException as e:
            raise TransportError(f"Read failed: {e}") from e
        return bytes(data)

    def discard_input(self) -> None:
        """Drop any received bytes that have not been read yet."""
        if not self.connected:
            return
        try:
            self._serial.reset_input_buffer()
        except serial.SerialException as e:
            raise TransportError(f"Input flush failed: {e}") from e

    def __enter__(self) -> SerialConnection:
        self.open()
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
