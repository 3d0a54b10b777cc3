"""Fast subtitle extraction from Matroska/WebM files through the Cues index.

On a file whose muxer indexed its subtitle blocks in Cues, this reads a
few tens of kilobytes instead of scanning every cluster.
"""

from __future__ import annotations

import logging
import os
import threading
from itertools import groupby

from freikino.ass import dialogue_from_block, seed_ass_header
from freikino.ebml import (
    CLUSTER,
    CUES,
    EBML_HEADER,
    INFO,
    SEEK,
    SEEK_HEAD,
    SEEK_ID,
    SEEK_POSITION,
    SEGMENT,
    TRACKS,
    EbmlError,
    EbmlReader,
    is_unknown_size,
)
from freikino.matroska_parse import (
    DEFAULT_TIMECODE_SCALE_NS,
    SubtitleTrackEntry,
    parse_cues,
    parse_info,
    parse_tracks,
    read_block_at,
    read_cluster_timestamp,
)

_log = logging.getLogger(__name__)


class MatroskaFastPathUnavailable(Exception):
    """The file cannot be handled by the Cues-driven fast path.

    Raised for non-Matroska files, files without reachable Cues or without
    cues for any subtitle track, malformed structure, failed reads and
    cancellation. Callers should fall back to a full container scan.
    """


def _check_cancel(cancel: threading.Event | None) -> None:
    if cancel is not None and cancel.is_set():
        raise MatroskaFastPathUnavailable("cancelled")


def _parse_seek_head(
    reader: EbmlReader, end: int, segment_data_start: int
) -> dict[int, int]:
    targets: dict[int, int] = {}
    while reader.pos < end:
        element_id, size = reader.read_element_header()
        seek_end = reader.pos + size.value
        if element_id != SEEK:
            reader.seek(seek_end)
            continue
        target_id = 0
        target_pos = 0
        while reader.pos < seek_end:
            child_id, child_size = reader.read_element_header()
            child_end = reader.pos + child_size.value
            if child_id == SEEK_ID:
                target_id = reader.read_uint(child_size.value)
            elif child_id == SEEK_POSITION:
                target_pos = reader.read_uint(child_size.value)
            reader.seek(child_end)
        targets[target_id] = segment_data_start + target_pos
    return targets


def _locate_elements(
    reader: EbmlReader,
    segment_data_start: int,
    segment_end: int,
    cancel: threading.Event | None,
) -> tuple[int | None, int | None, int | None]:
    tracks_start: int | None = None
    cues_start: int | None = None
    info_start: int | None = None

    while reader.pos < segment_end:
        _check_cancel(cancel)
        element_start = reader.pos
        try:
            element_id, size = reader.read_element_header()
        except EbmlError:
            break
        if is_unknown_size(size.value, size.length):
            if tracks_start is None or cues_start is None:
                raise MatroskaFastPathUnavailable("unknown-size top-level element")
            break
        if element_id == CLUSTER and cues_start is None:
            raise MatroskaFastPathUnavailable("Cluster reached before Cues")
        child_end = reader.pos + size.value

        if element_id == SEEK_HEAD:
            targets = _parse_seek_head(reader, child_end, segment_data_start)
            tracks_start = targets.get(TRACKS, tracks_start)
            cues_start = targets.get(CUES, cues_start)
            info_start = targets.get(INFO, info_start)
        elif element_id == TRACKS:
            tracks_start = element_start
        elif element_id == CUES:
            cues_start = element_start
        elif element_id == INFO:
            info_start = element_start

        reader.seek(child_end)
        if tracks_start is not None and cues_start is not None:
            break
    return tracks_start, cues_start, info_start


def _enter_element(reader: EbmlReader, start: int) -> int:
    reader.seek(start)
    _, size = reader.read_element_header()
    return reader.pos + size.value


def _extract(reader: EbmlReader, cancel: threading.Event | None) -> dict[int, str]:
    element_id, size = reader.read_element_header()
    if element_id != EBML_HEADER:
        raise MatroskaFastPathUnavailable("not a Matroska/WebM file")
    reader.skip(size.value)

    element_id, size = reader.read_element_header()
    if element_id != SEGMENT:
        raise MatroskaFastPathUnavailable("no Segment after the EBML header")
    segment_data_start = reader.pos
    if is_unknown_size(size.value, size.length):
        segment_end = reader.file_size
    else:
        segment_end = reader.pos + size.value

    tracks_start, cues_start, info_start = _locate_elements(
        reader, segment_data_start, segment_end, cancel
    )
    if tracks_start is None or cues_start is None:
        raise MatroskaFastPathUnavailable("Tracks or Cues not found")

    timecode_scale = DEFAULT_TIMECODE_SCALE_NS
    if info_start is not None:
        info_end = _enter_element(reader, info_start)
        timecode_scale = parse_info(reader, info_end)

    tracks_end = _enter_element(reader, tracks_start)
    subtitles = parse_tracks(reader, tracks_end)
    if not subtitles:
        raise MatroskaFastPathUnavailable("no subtitle tracks")

    cues_end = _enter_element(reader, cues_start)
    cues = parse_cues(reader, cues_end, segment_data_start)

    by_number: dict[int, SubtitleTrackEntry] = {}
    for track in subtitles:
        by_number.setdefault(track.track_number, track)

    subtitle_cues = [cue for cue in cues if cue.track_number in by_number]
    if not subtitle_cues:
        raise MatroskaFastPathUnavailable("Cues index no subtitle blocks")
    subtitle_cues.sort(key=lambda cue: (cue.cluster_position, cue.relative_position))

    documents = {id(track): [seed_ass_header(track.codec_private)] for track in subtitles}
    has_dialogue = {id(track): False for track in subtitles}
    events_extracted = 0

    for cluster_pos, group in groupby(subtitle_cues, key=lambda cue: cue.cluster_position):
        _check_cancel(cancel)
        cluster_ts, body_start = read_cluster_timestamp(reader, cluster_pos)
        for cue in group:
            track = by_number[cue.track_number]
            event = read_block_at(
                reader,
                body_start + cue.relative_position,
                cluster_ts,
                timecode_scale,
                cue.duration_tc,
                cue.track_number,
            )
            line = dialogue_from_block(track.codec_id, event.data, event.start_ms, event.end_ms)
            if line is not None:
                documents[id(track)].append(line)
                has_dialogue[id(track)] = True
            events_extracted += 1

    result = {
        track.stream_index: "".join(documents[id(track)])
        for track in subtitles
        if has_dialogue[id(track)]
    }
    if not result:
        raise MatroskaFastPathUnavailable("no dialogue extracted")

    _log.info(
        "mkv-quick-sub: extracted %d events across %d stream(s)",
        events_extracted,
        len(result),
    )
    return result


def quick_extract_matroska_subs(
    path: str | os.PathLike[str], cancel: threading.Event | None = None
) -> dict[int, str]:
    """Extract every indexed text subtitle track as a complete ASS document.

    Returns a mapping from stream index (the 0-based TrackEntry order) to
    the document. Either the whole extraction succeeds or
    :class:`MatroskaFastPathUnavailable` is raised; ``cancel`` is checked
    between clusters.
    """
    _check_cancel(cancel)
    try:
        with open(path, "rb") as stream:
            return _extract(EbmlReader(stream), cancel)
    except (EbmlError, OSError) as exc:
        raise MatroskaFastPathUnavailable(str(exc)) from exc