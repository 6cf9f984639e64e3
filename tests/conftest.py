"""Shared fixtures: an in-memory transport that replays canned replies."""

from __future__ import annotations

import pytest


class FakeTransport:
    """Records every write and serves reads from a queued byte stream."""

    def __init__(self, replies: bytes = b"") -> None:
        self.writes: list[bytes] = []
        self.reads: list[int] = []
        self._rx = bytearray(replies)
        self.discarded = 0

    def queue(self, data: bytes) -> None:
        self._rx += data

    def write(self, data: bytes) -> int:
        self.writes.append(bytes(data))
        return len(data)

    def read(self, size: int, timeout: float = 2.0) -> bytes:
        self.reads.append(size)
        data = bytes(self._rx[:size])
        del self._rx[:size]
        return data

    def discard_input(self) -> None:
        self.discarded += 1
        self._rx.clear()

    @property
    def pending(self) -> bytes:
        return bytes(self._rx)

    def packets(self) -> list[bytes]:
        """Rejoin the (length byte, body) write pairs into whole packets."""
        return [
            self.writes[i] + self.writes[i + 1]
            for i in range(0, len(self.writes), 2)
        ]


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()
