"""Building ASS subtitle documents from container subtitle payloads."""

from __future__ import annotations

EVENTS_FORMAT_LINE = (
    "Format: Layer, Start, End, Style, Name, MarginL,"
    " MarginR, MarginV, Effect, Text\n"
)

MINIMAL_ASS_HEADER = (
    "[Script Info]\n"
    "ScriptType: v4.00+\n"
    "WrapStyle: 0\n"
    "ScaledBorderAndShadow: yes\n"
    "PlayResX: 1920\n"
    "PlayResY: 1080\n"
    "\n"
    "[V4+ Styles]\n"
    "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour,"
    " OutlineColour, BackColour, Bold, Italic, Underline, StrikeOut,"
    " ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, Shadow,"
    " Alignment, MarginL, MarginR, MarginV, Encoding\n"
    "Style: Default,Arial,48,&H00FFFFFF,&H000000FF,&H00000000,&H00000000,"
    "-1,0,0,0,100,100,0,0,1,2,1,2,20,20,40,1\n"
    "\n"
    "[Events]\n"
    "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV,"
    " Effect, Text\n"
)
"""Fallback header for streams that carry no Script Info / Styles block."""

_ASS_CODECS = frozenset({"S_TEXT/ASS", "S_TEXT/SSA", "S_ASS", "S_SSA"})
_UTF8_TEXT_CODECS = frozenset({"S_TEXT/UTF8", "S_TEXT/ASCII"})


def _as_text(data: bytes | str) -> str:
    if isinstance(data, str):
        return data
    return data.decode("utf-8", errors="surrogateescape")


def format_ass_timestamp(ms: int) -> str:
    """Format milliseconds as an ASS ``H:MM:SS.CC`` timestamp."""
    ms = max(ms, 0)
    hours = ms // 3_600_000
    minutes = (ms // 60_000) % 60
    seconds = (ms // 1000) % 60
    centis = (ms // 10) % 100
    return f"{hours}:{minutes:02d}:{seconds:02d}.{centis:02d}"


def seed_ass_header(codec_private: bytes | str) -> str:
    """Return the header for a subtitle track.

    A non-empty codec-private block is used as is, with an ``[Events]``
    section appended when it lacks one; otherwise the minimal header is used.
    """
    header = _as_text(codec_private)
    if not header:
        return MINIMAL_ASS_HEADER
    if "[Events]" not in header:
        header += "\n[Events]\n" + EVENTS_FORMAT_LINE
    if not header.endswith("\n"):
        header += "\n"
    return header


def codec_is_ass(codec_id: str) -> bool:
    """True for Matroska codec IDs that carry ASS/SSA events."""
    return codec_id in _ASS_CODECS


def codec_is_utf8_text(codec_id: str) -> bool:
    """True for Matroska codec IDs that carry plain UTF-8 text."""
    return codec_id in _UTF8_TEXT_CODECS


def _terminated(line: str) -> str:
    return line if line.endswith("\n") else line + "\n"


def dialogue_from_ass_event(event: bytes | str, start_ms: int, end_ms: int) -> str | None:
    """Turn a ``ReadOrder,Layer,Style,...,Text`` event into a Dialogue line.

    Returns None when the event does not have all its fields.
    """
    event = _as_text(event)
    _, comma, rest = event.partition(",")
    if not comma:
        return None
    fields = rest.split(",", 7)
    if len(fields) < 8:
        return None
    layer, style, name, margin_l, margin_r, margin_v, effect, text = fields
    line = ",".join(
        (
            layer,
            format_ass_timestamp(start_ms),
            format_ass_timestamp(end_ms),
            style,
            name,
            margin_l,
            margin_r,
            margin_v,
            effect,
            text,
        )
    )
    return _terminated("Dialogue: " + line)


def dialogue_from_plain_text(text: bytes | str, start_ms: int, end_ms: int) -> str:
    """Turn raw subtitle text into a Dialogue line in the Default style."""
    escaped = _as_text(text).replace("\r", "").replace("\n", "\\N")
    line = (
        "Dialogue: 0,"
        + format_ass_timestamp(start_ms)
        + ","
        + format_ass_timestamp(end_ms)
        + ",Default,,0,0,0,,"
        + escaped
    )
    return _terminated(line)


def dialogue_from_block(
    codec_id: str, data: bytes | str, start_ms: int, end_ms: int
) -> str | None:
    """Turn one subtitle block payload into a Dialogue line.

    Returns None for empty payloads, unsupported codecs and malformed events.
    """
    if not data:
        return None
    if codec_is_ass(codec_id):
        return dialogue_from_ass_event(data, start_ms, end_ms)
    if codec_is_utf8_text(codec_id):
        return dialogue_from_plain_text(data, start_ms, end_ms)
    return None