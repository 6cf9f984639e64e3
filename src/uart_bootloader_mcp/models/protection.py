"""Flash sector protection model."""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum


class ProtectionMode(IntEnum):
    """Per-sector protection reported by the device."""

    NONE = 0
    WRITE = 1
    READ_WRITE = 2

    @property
    def label(self) -> str:
        return _LABELS[self]


_LABELS = {
    ProtectionMode.NONE: "no protection",
    ProtectionMode.WRITE: "write protected",
    ProtectionMode.READ_WRITE: "read/write protected",
}


@dataclass
class SectorProtection:
    """Protection state of one flash sector."""

    sector: int
    code: int

    @property
    def mode(self) -> ProtectionMode | None:
        try:
            return ProtectionMode(self.code)
        except ValueError:
            return None

    @property
    def label(self) -> str:
        mode = self.mode
        return mode.label if mode is not None else "unknown"

    def to_dict(self) -> dict:
        return {
            "sector": self.sector,
            "code": self.code,
            "protection": self.label,
        }
