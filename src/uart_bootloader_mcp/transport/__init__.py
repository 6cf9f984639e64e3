"""Byte transports to the bootloader."""

from .serial_connection import SerialConnection, SerialSettings, list_serial_ports
