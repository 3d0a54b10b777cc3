"""Low-level EBML reading: variable-length integers and element headers."""

from __future__ import annotations

import io
from dataclasses import dataclass
from typing import BinaryIO

# Element IDs, kept with their leading marker bit so they compare equal to
# IDs decoded with ``keep_marker=True``.
EBML_HEADER = 0x1A45DFA3
SEGMENT = 0x18538067
SEEK_HEAD = 0x114D9B74
SEEK = 0x4DBB
SEEK_ID = 0x53AB
SEEK_POSITION = 0x53AC
INFO = 0x1549A966
TIMECODE_SCALE = 0x2AD7B1
TRACKS = 0x1654AE6B
TRACK_ENTRY = 0xAE
TRACK_NUMBER = 0xD7
TRACK_TYPE = 0x83
CODEC_ID = 0x86
CODEC_PRIVATE = 0x63A2
CUES = 0x1C53BB6B
CUE_POINT = 0xBB
CUE_TIME = 0xB3
CUE_TRACK_POSITIONS = 0xB7
CUE_TRACK = 0xF7
CUE_CLUSTER_POSITION = 0xF1
CUE_RELATIVE_POSITION = 0xF0
CUE_DURATION = 0xB2
CLUSTER = 0x1F43B675
CLUSTER_TIMESTAMP = 0xE7
SIMPLE_BLOCK = 0xA3
BLOCK_GROUP = 0xA0
BLOCK = 0xA1
BLOCK_DURATION = 0x9B

TRACK_TYPE_SUBTITLE = 0x11
"""Matroska TrackType value for subtitle entries."""

_ALL_BITS_64 = (1 << 64) - 1


class EbmlError(Exception):
    """Raised on a failed read or malformed EBML structure."""


@dataclass(frozen=True)
class Vint:
    """A decoded variable-length integer and the number of bytes it used."""

    value: int
    length: int


def is_unknown_size(value: int, length: int) -> bool:
    """Return True if ``value`` is the all-ones "unknown size" sentinel."""
    full = _ALL_BITS_64 if length >= 8 else (1 << (7 * length)) - 1
    return value == full


class EbmlReader:
    """Positioned reader over a seekable binary stream."""

    def __init__(self, stream: BinaryIO) -> None:
        self._stream = stream
        self.file_size = stream.seek(0, io.SEEK_END)
        self.pos = 0

    def read(self, n: int) -> bytes:
        """Read exactly ``n`` bytes at the current position and advance."""
        if n == 0:
            return b""
        if n < 0 or self.pos < 0:
            raise EbmlError(f"invalid read of {n} bytes at {self.pos}")
        self._stream.seek(self.pos)
        data = self._stream.read(n)
        if data is None or len(data) != n:
            raise EbmlError(f"short read at {self.pos}: wanted {n} bytes")
        self.pos += n
        return data

    def seek(self, pos: int) -> None:
        """Move to an absolute position."""
        self.pos = pos

    def skip(self, delta: int) -> None:
        """Move by ``delta`` bytes relative to the current position."""
        self.pos += delta

    def read_vint(self, keep_marker: bool) -> Vint:
        """Read a variable-length integer.

        With ``keep_marker`` the leading length-marker bit is kept, as for
        element IDs; otherwise it is stripped, as for element sizes.
        """
        first = self.read(1)[0]
        marker_bit = 0
        mask = 0x80
        while marker_bit < 8 and not first & mask:
            marker_bit += 1
            mask >>= 1
        if marker_bit >= 8:
            raise EbmlError(f"invalid vint (zero first byte) at {self.pos - 1}")
        length = marker_bit + 1
        value = first if keep_marker else first & (mask - 1)
        for byte in self.read(length - 1):
            value = (value << 8) | byte
        return Vint(value, length)

    def read_element_header(self) -> tuple[int, Vint]:
        """Read an element ID and its size; return ``(id, size)``."""
        element_id = self.read_vint(True).value
        size = self.read_vint(False)
        return element_id, size

    def read_uint(self, size: int) -> int:
        """Read a big-endian unsigned integer of up to 8 bytes."""
        if size > 8:
            raise EbmlError(f"unsigned integer of {size} bytes is too wide")
        return int.from_bytes(self.read(size), "big")

    def read_bytes(self, size: int) -> bytes:
        """Read ``size`` raw bytes."""
        return self.read(size)

    def read_block_timestamp(self) -> int:
        """Read a block's signed 16-bit big-endian relative timestamp."""
        return int.from_bytes(self.read(2), "big", signed=True)