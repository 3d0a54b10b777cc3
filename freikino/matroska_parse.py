"""Parsing of the Matroska elements needed to pull subtitle blocks via Cues."""

from __future__ import annotations

from dataclasses import dataclass

from freikino.ebml import (
    BLOCK,
    BLOCK_DURATION,
    BLOCK_GROUP,
    CLUSTER,
    CLUSTER_TIMESTAMP,
    CODEC_ID,
    CODEC_PRIVATE,
    CUE_CLUSTER_POSITION,
    CUE_DURATION,
    CUE_POINT,
    CUE_RELATIVE_POSITION,
    CUE_TRACK,
    CUE_TRACK_POSITIONS,
    SIMPLE_BLOCK,
    TIMECODE_SCALE,
    TRACK_ENTRY,
    TRACK_NUMBER,
    TRACK_TYPE,
    TRACK_TYPE_SUBTITLE,
    EbmlError,
    EbmlReader,
    is_unknown_size,
)

DEFAULT_TIMECODE_SCALE_NS = 1_000_000
"""Matroska's default TimecodeScale: one millisecond per timecode tick."""

DEFAULT_DURATION_MS = 2000
"""Event duration used when neither the block nor the index gives one."""

MAX_BLOCK_PAYLOAD = 4 << 20
"""Largest subtitle block payload accepted; anything bigger is malformed."""

_LACING_MASK = 0x06
_NS_PER_MS = 1_000_000


@dataclass
class SubtitleTrackEntry:
    """A subtitle TrackEntry and its position among all track entries."""

    stream_index: int
    track_number: int = 0
    codec_id: str = ""
    codec_private: bytes = b""


@dataclass(frozen=True)
class CueEntry:
    """One CueTrackPositions record, with an absolute cluster position."""

    track_number: int = 0
    cluster_position: int = 0
    relative_position: int = 0
    duration_tc: int = 0


@dataclass(frozen=True)
class BlockEvent:
    """A subtitle block's payload and its display interval in milliseconds."""

    data: bytes
    start_ms: int
    end_ms: int


def _tc_to_ms(tc: int, timecode_scale_ns: int) -> int:
    product = tc * timecode_scale_ns
    quotient = abs(product) // _NS_PER_MS
    return -quotient if product < 0 else quotient


def _read_bounded(reader: EbmlReader, size: int) -> bytes:
    if size > reader.file_size - reader.pos:
        raise EbmlError(f"element of {size} bytes runs past end of file")
    return reader.read_bytes(size)


def parse_info(reader: EbmlReader, end: int) -> int:
    """Read an Info body up to ``end`` and return its TimecodeScale in ns."""
    timecode_scale = DEFAULT_TIMECODE_SCALE_NS
    while reader.pos < end:
        element_id, size = reader.read_element_header()
        child_end = reader.pos + size.value
        if element_id == TIMECODE_SCALE:
            timecode_scale = reader.read_uint(size.value)
        reader.seek(child_end)
    return timecode_scale


def _parse_track_entry(reader: EbmlReader, end: int, stream_index: int) -> SubtitleTrackEntry:
    track = SubtitleTrackEntry(stream_index=stream_index)
    while reader.pos < end:
        element_id, size = reader.read_element_header()
        child_end = reader.pos + size.value
        if element_id == TRACK_NUMBER:
            track.track_number = reader.read_uint(size.value)
        elif element_id == CODEC_ID:
            raw = _read_bounded(reader, size.value).rstrip(b"\0")
            track.codec_id = raw.decode("utf-8", errors="replace")
        elif element_id == CODEC_PRIVATE:
            track.codec_private = _read_bounded(reader, size.value)
        reader.seek(child_end)
    return track


def parse_tracks(reader: EbmlReader, end: int) -> list[SubtitleTrackEntry]:
    """Read a Tracks body up to ``end`` and return its subtitle tracks.

    Each track's ``stream_index`` is its 0-based position among all
    TrackEntry elements, whatever their type.
    """
    subtitles: list[SubtitleTrackEntry] = []
    stream_index = 0
    while reader.pos < end:
        element_id, size = reader.read_element_header()
        entry_end = reader.pos + size.value
        if element_id != TRACK_ENTRY:
            reader.seek(entry_end)
            continue

        fork = reader.pos
        track_type = 0
        while reader.pos < entry_end:
            child_id, child_size = reader.read_element_header()
            child_end = reader.pos + child_size.value
            if child_id == TRACK_TYPE:
                track_type = reader.read_uint(child_size.value)
                break
            reader.seek(child_end)

        if track_type == TRACK_TYPE_SUBTITLE:
            reader.seek(fork)
            subtitles.append(_parse_track_entry(reader, entry_end, stream_index))

        reader.seek(entry_end)
        stream_index += 1
    return subtitles


def _parse_cue_track_positions(
    reader: EbmlReader, end: int, segment_data_start: int
) -> CueEntry:
    track_number = 0
    cluster_position = 0
    relative_position = 0
    duration_tc = 0
    while reader.pos < end:
        element_id, size = reader.read_element_header()
        child_end = reader.pos + size.value
        if element_id == CUE_TRACK:
            track_number = reader.read_uint(size.value)
        elif element_id == CUE_CLUSTER_POSITION:
            cluster_position = segment_data_start + reader.read_uint(size.value)
        elif element_id == CUE_RELATIVE_POSITION:
            relative_position = reader.read_uint(size.value)
        elif element_id == CUE_DURATION:
            duration_tc = reader.read_uint(size.value)
        reader.seek(child_end)
    return CueEntry(track_number, cluster_position, relative_position, duration_tc)


def parse_cues(reader: EbmlReader, end: int, segment_data_start: int) -> list[CueEntry]:
    """Read a Cues body up to ``end`` and return every CueTrackPositions.

    Cluster positions are turned from segment-relative into absolute
    file positions using ``segment_data_start``.
    """
    cues: list[CueEntry] = []
    while reader.pos < end:
        element_id, size = reader.read_element_header()
        cue_end = reader.pos + size.value
        if element_id != CUE_POINT:
            reader.seek(cue_end)
            continue
        while reader.pos < cue_end:
            child_id, child_size = reader.read_element_header()
            child_end = reader.pos + child_size.value
            if child_id == CUE_TRACK_POSITIONS:
                cues.append(
                    _parse_cue_track_positions(reader, child_end, segment_data_start)
                )
            reader.seek(child_end)
    return cues


def read_cluster_timestamp(reader: EbmlReader, cluster_pos: int) -> tuple[int, int]:
    """Read the Cluster at ``cluster_pos``; return ``(timestamp_tc, body_start)``."""
    reader.seek(cluster_pos)
    element_id = reader.read_vint(True).value
    if element_id != CLUSTER:
        raise EbmlError(f"expected a Cluster at {cluster_pos}")
    size = reader.read_vint(False)
    body_start = reader.pos
    if is_unknown_size(size.value, size.length):
        body_end = reader.file_size
    else:
        body_end = reader.pos + size.value

    while reader.pos < body_end:
        child_id, child_size = reader.read_element_header()
        child_end = reader.pos + child_size.value
        if child_id == CLUSTER_TIMESTAMP:
            return reader.read_uint(child_size.value), body_start
        reader.seek(child_end)
    raise EbmlError(f"Cluster at {cluster_pos} has no Timestamp")


def _read_inner_block(
    reader: EbmlReader,
    block_end: int,
    cluster_ts: int,
    timecode_scale_ns: int,
    track_number: int,
) -> tuple[int, bytes]:
    block_track = reader.read_vint(False).value
    if block_track != track_number:
        raise EbmlError(f"block belongs to track {block_track}, not {track_number}")
    relative_ts = reader.read_block_timestamp()
    flags = reader.read(1)[0]
    if flags & _LACING_MASK:
        raise EbmlError("laced subtitle block")
    payload_len = block_end - reader.pos
    if payload_len < 0 or payload_len > MAX_BLOCK_PAYLOAD:
        raise EbmlError(f"implausible block payload length {payload_len}")
    start_ms = _tc_to_ms(cluster_ts + relative_ts, timecode_scale_ns)
    return start_ms, reader.read(payload_len)


def read_block_at(
    reader: EbmlReader,
    block_pos: int,
    cluster_ts: int,
    timecode_scale_ns: int,
    cue_duration_tc: int,
    track_number: int,
) -> BlockEvent:
    """Read the SimpleBlock or BlockGroup at ``block_pos``.

    The duration comes from a BlockDuration sibling, else from the cue,
    else defaults to two seconds.
    """
    reader.seek(block_pos)
    element_id, size = reader.read_element_header()
    element_end = reader.pos + size.value
    duration_tc = cue_duration_tc

    if element_id == SIMPLE_BLOCK:
        start_ms, data = _read_inner_block(
            reader, element_end, cluster_ts, timecode_scale_ns, track_number
        )
    elif element_id == BLOCK_GROUP:
        found: tuple[int, bytes] | None = None
        while reader.pos < element_end:
            child_id, child_size = reader.read_element_header()
            child_end = reader.pos + child_size.value
            if child_id == BLOCK:
                found = _read_inner_block(
                    reader, child_end, cluster_ts, timecode_scale_ns, track_number
                )
            elif child_id == BLOCK_DURATION:
                duration_tc = reader.read_uint(child_size.value)
            reader.seek(child_end)
        if found is None:
            raise EbmlError(f"BlockGroup at {block_pos} holds no Block")
        start_ms, data = found
    else:
        raise EbmlError(f"no block at {block_pos}")

    if duration_tc > 0:
        duration_ms = _tc_to_ms(duration_tc, timecode_scale_ns)
    else:
        duration_ms = DEFAULT_DURATION_MS
    return BlockEvent(data=data, start_ms=start_ms, end_ms=start_ms + duration_ms)