"""Descriptions of a media file's tracks, attachments and tags."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Mapping, Optional

_FONT_CODECS = frozenset({"ttf", "otf"})
_FONT_MIME_MARKERS = ("font", "truetype", "opentype")


@dataclass(frozen=True)
class Metadata:
    """Container- or stream-level tags shown to the user."""

    title: str = ""
    artist: str = ""
    album: str = ""
    album_artist: str = ""
    date: str = ""
    track: str = ""
    genre: str = ""


@dataclass(frozen=True)
class AudioTrack:
    """One audio stream that can be chosen for playback."""

    stream_index: int = -1
    codec_name: str = ""
    language: str = ""
    title: str = ""
    channels: int = 0
    sample_rate: int = 0
    is_default: bool = False


@dataclass(frozen=True)
class SubtitleTrack:
    """One subtitle stream; ``is_text`` marks streams that yield text events."""

    stream_index: int = -1
    codec_name: str = ""
    language: str = ""
    title: str = ""
    is_default: bool = False
    is_text: bool = False


@dataclass(frozen=True)
class FontAttachment:
    """A font file embedded in the container."""

    name: str = ""
    data: bytes = b""


@dataclass(frozen=True)
class VideoInfo:
    """Static description of the active video stream."""

    width: int = 0
    height: int = 0
    codec_name: str = ""
    hwaccel: str = ""
    src_fps: float = 0.0


@dataclass(frozen=True)
class AudioInfo:
    """Static description of the active audio stream."""

    codec_name: str = ""
    src_sample_rate: int = 0
    src_channels: int = 0
    bit_rate_bps: int = 0


def is_font_attachment(codec_id: str, mimetype: str = "") -> bool:
    """Return True if an attachment is a font a subtitle renderer can use.

    Attachments labelled with a TTF/OTF codec are fonts; otherwise the
    mimetype is consulted, since some muxers leave the codec unset.
    """
    if codec_id.lower() in _FONT_CODECS:
        return True
    return any(marker in mimetype for marker in _FONT_MIME_MARKERS)


def _read_tag(tags: Optional[Mapping[str, str]], key: str) -> str:
    """Return the first tag whose name starts with ``key``, ignoring case."""
    if not tags:
        return ""
    wanted = key.lower()
    for name, value in tags.items():
        if name.lower().startswith(wanted):
            return value or ""
    return ""


def tag_from_any(
    key: str,
    container_tags: Optional[Mapping[str, str]],
    stream_tags: Optional[Mapping[str, str]] = None,
) -> str:
    """Look ``key`` up in the container tags first, then in the stream tags."""
    value = _read_tag(container_tags, key)
    if value:
        return value
    return _read_tag(stream_tags, key)


def metadata_from_tags(
    container_tags: Optional[Mapping[str, str]],
    stream_tags: Optional[Mapping[str, str]] = None,
) -> Metadata:
    """Build :class:`Metadata`; ``date`` falls back to the ``year`` tag."""

    def lookup(key: str) -> str:
        return tag_from_any(key, container_tags, stream_tags)

    return Metadata(
        title=lookup("title"),
        artist=lookup("artist"),
        album=lookup("album"),
        album_artist=lookup("album_artist"),
        date=lookup("date") or lookup("year"),
        track=lookup("track"),
        genre=lookup("genre"),
    )


def average_fps(num: int, den: int) -> float:
    """Return the frame rate ``num / den``, or 0.0 if either part is not positive."""
    if num > 0 and den > 0:
        return num / den
    return 0.0


def choose_audio_bit_rate(stream_bit_rate: int, container_bit_rate: int) -> int:
    """Prefer the stream's bit rate, falling back to the container's."""
    if stream_bit_rate:
        return stream_bit_rate
    if container_bit_rate:
        return container_bit_rate
    return 0