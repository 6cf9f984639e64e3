"""Binary image files that feed Memory Write."""

from __future__ import annotations

import math
from dataclasses import dataclass
from pathlib import Path

from ..protocol.framing import MAX_CHUNK_SIZE


@dataclass
class FirmwareImage:
    """Raw contents of a binary image file."""

    path: Path
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def chunk_count(self, chunk_size: int = MAX_CHUNK_SIZE) -> int:
        return math.ceil(self.size / chunk_size)

    def to_dict(self) -> dict:
        return {
            "path": str(self.path),
            "size": self.size,
            "chunks": self.chunk_count(),
        }


def load_image(path: str | Path) -> FirmwareImage:
    """Read a raw binary image from disk.

    Args:
        path: Path to the ``.bin`` file.

    Returns:
        The loaded ``FirmwareImage``.

    Raises:
        ValueError: If the file does not exist or is empty.
    """
    path = Path(path)
    if not path.is_file():
        raise ValueError(f"File not found: {path}")
    data = path.read_bytes()
    if not data:
        raise ValueError(f"Image file is empty: {path}")
    return FirmwareImage(path=path, data=data)
