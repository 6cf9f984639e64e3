"""Data models for sector protection and binary images."""

from .protection import ProtectionMode, SectorProtection
from .image import FirmwareImage, load_image
