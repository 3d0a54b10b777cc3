"""Decode-loop helpers: timestamp rescaling, seek filtering, format choice
and a round-robin pool of output textures."""

from __future__ import annotations

from typing import Callable, Generic, Hashable, Optional, Sequence, TypeVar

NS_PER_SECOND = 1_000_000_000

NOPTS_VALUE = -(1 << 63)
"""Sentinel for a missing timestamp."""

SEEK_LATE_MARGIN_NS = 100_000_000
"""Frames further than this before the seek target are skipped."""

HW_PIXEL_FORMAT = "d3d11"
"""The hardware-decode surface format that is always preferred."""

DEFAULT_POOL_SIZE = 20
"""Number of output textures recycled by :class:`TexturePool`."""

T = TypeVar("T")


def rescale_ns(value: Optional[int], num: int, den: int) -> int:
    """Convert ``value`` in units of ``num/den`` seconds to nanoseconds.

    The result is rounded to the nearest integer, ties away from zero.
    A missing timestamp (``None`` or :data:`NOPTS_VALUE`) gives 0.
    """
    if value is None or value == NOPTS_VALUE:
        return 0
    if den == 0:
        raise ValueError("time base denominator must not be zero")
    numerator = value * num * NS_PER_SECOND
    quotient, remainder = divmod(abs(numerator), abs(den))
    if 2 * remainder >= abs(den):
        quotient += 1
    negative = (numerator < 0) != (den < 0)
    return -quotient if negative and quotient else quotient


def is_late_after_seek(pts_ns: int, seek_target_ns: Optional[int] = None) -> bool:
    """Return True if a frame at ``pts_ns`` lies too far before the seek target.

    Such frames come from the keyframe window before the target and would
    be dropped downstream anyway. ``None`` means no seek is pending.
    """
    if seek_target_ns is None:
        return False
    return pts_ns + SEEK_LATE_MARGIN_NS < seek_target_ns


def choose_pixel_format(
    offered: Sequence[str], is_hwaccel: Callable[[str], bool]
) -> str:
    """Pick the decoder output format from those ``offered``.

    The hardware surface format is preferred; failing that, the first
    format for which ``is_hwaccel`` is false; failing that, the first one.
    """
    if not offered:
        raise ValueError("no pixel formats offered")
    if HW_PIXEL_FORMAT in offered:
        return HW_PIXEL_FORMAT
    return next((fmt for fmt in offered if not is_hwaccel(fmt)), offered[0])


class TexturePool(Generic[T]):
    """Round-robin pool of output textures of one size and format.

    Textures are allocated lazily and reused when the cursor wraps round;
    a change of size or format drops the whole pool.
    """

    def __init__(
        self,
        allocate: Callable[[int, int, Hashable], T],
        size: int = DEFAULT_POOL_SIZE,
    ) -> None:
        if size < 1:
            raise ValueError("texture pool needs at least one slot")
        self._allocate = allocate
        self._slots: list[Optional[T]] = [None] * size
        self._cursor = 0
        self._key: Optional[tuple[int, int, Hashable]] = None

    def next_texture(self, width: int, height: int, fmt: Hashable) -> T:
        """Return the next slot's texture, allocating it if needed."""
        key = (width, height, fmt)
        if key != self._key:
            self._slots = [None] * len(self._slots)
            self._cursor = 0
            self._key = key
        texture = self._slots[self._cursor]
        if texture is None:
            texture = self._allocate(width, height, fmt)
            self._slots[self._cursor] = texture
        self._cursor = (self._cursor + 1) % len(self._slots)
        return texture