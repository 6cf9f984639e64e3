"""Shared helpers."""

from .crc import crc32
