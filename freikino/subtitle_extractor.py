"""Background extraction of text subtitle tracks into live ASS buffers.

The extractor first tries the Cues-driven Matroska fast path. If that is
not possible, it scans the file's clusters one after another. As it goes,
it appends Dialogue lines to one :class:`SubtitleLiveBuffer` per requested
stream. Readers poll :meth:`SubtitleExtractor.snapshot` without blocking.
"""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, replace
from typing import Iterable

from freikino.ass import dialogue_from_block, seed_ass_header
from freikino.ebml import (
    BLOCK,
    BLOCK_DURATION,
    BLOCK_GROUP,
    CLUSTER,
    CLUSTER_TIMESTAMP,
    CUES,
    EBML_HEADER,
    INFO,
    SEEK_HEAD,
    SEGMENT,
    SIMPLE_BLOCK,
    TRACKS,
    EbmlError,
    EbmlReader,
    is_unknown_size,
)
from freikino.matroska_parse import (
    DEFAULT_DURATION_MS,
    DEFAULT_TIMECODE_SCALE_NS,
    MAX_BLOCK_PAYLOAD,
    SubtitleTrackEntry,
    parse_info,
    parse_tracks,
    read_cluster_timestamp,
)
from freikino.matroska_subs import MatroskaFastPathUnavailable, quick_extract_matroska_subs
from freikino.subtitle_buffer import SubtitleLiveBuffer, SubtitleSnapshot

_log = logging.getLogger(__name__)

_ATTACHMENTS = 0x1941A469
_CHAPTERS = 0x1043A770
_TAGS = 0x1254C367
_TOP_LEVEL_IDS = frozenset({SEEK_HEAD, INFO, TRACKS, CUES, CLUSTER, _ATTACHMENTS, _CHAPTERS, _TAGS})

_LACING_MASK = 0x06
_NS_PER_MS = 1_000_000


def _tc_to_ms(tc: int, timecode_scale_ns: int) -> int:
    product = tc * timecode_scale_ns
    quotient = abs(product) // _NS_PER_MS
    return -quotient if product < 0 else quotient


@dataclass(frozen=True)
class _Layout:
    segment_end: int
    timecode_scale: int
    tracks: dict[int, SubtitleTrackEntry]
    first_cluster: int | None


@dataclass(frozen=True)
class _Block:
    track_number: int
    relative_ts: int
    data: bytes
    duration_tc: int | None = None


def _read_layout(reader: EbmlReader) -> _Layout:
    element_id, size = reader.read_element_header()
    if element_id != EBML_HEADER:
        raise EbmlError("not a Matroska/WebM file")
    reader.skip(size.value)

    element_id, size = reader.read_element_header()
    if element_id != SEGMENT:
        raise EbmlError("no Segment after the EBML header")
    if is_unknown_size(size.value, size.length):
        segment_end = reader.file_size
    else:
        segment_end = reader.pos + size.value

    timecode_scale = DEFAULT_TIMECODE_SCALE_NS
    tracks: dict[int, SubtitleTrackEntry] = {}
    first_cluster: int | None = None
    while reader.pos < segment_end:
        start = reader.pos
        try:
            element_id, size = reader.read_element_header()
        except EbmlError:
            break
        if element_id == CLUSTER:
            first_cluster = start
            break
        if is_unknown_size(size.value, size.length):
            break
        end = reader.pos + size.value
        if element_id == INFO:
            timecode_scale = parse_info(reader, end)
        elif element_id == TRACKS:
            tracks = {track.stream_index: track for track in parse_tracks(reader, end)}
        reader.seek(end)
    return _Layout(segment_end, timecode_scale, tracks, first_cluster)


def _read_block_body(reader: EbmlReader, end: int) -> _Block | None:
    track_number = reader.read_vint(False).value
    relative_ts = reader.read_block_timestamp()
    flags = reader.read(1)[0]
    if flags & _LACING_MASK:
        return None
    payload_len = end - reader.pos
    if payload_len < 0 or payload_len > MAX_BLOCK_PAYLOAD:
        return None
    return _Block(track_number, relative_ts, reader.read(payload_len))


def _read_block(reader: EbmlReader, element_id: int, end: int) -> _Block | None:
    if element_id == SIMPLE_BLOCK:
        return _read_block_body(reader, end)
    body: _Block | None = None
    duration: int | None = None
    while reader.pos < end:
        child_id, child_size = reader.read_element_header()
        child_end = reader.pos + child_size.value
        if child_id == BLOCK:
            body = _read_block_body(reader, child_end)
        elif child_id == BLOCK_DURATION:
            duration = reader.read_uint(child_size.value)
        reader.seek(child_end)
    if body is None:
        return None
    return replace(body, duration_tc=duration)


class SubtitleExtractor:
    """Extracts text subtitle streams of a file on a background thread."""

    def __init__(self, path: str | os.PathLike[str], stream_indices: Iterable[int]) -> None:
        self._path = path
        self._buffers: dict[int, SubtitleLiveBuffer] = {
            index: SubtitleLiveBuffer() for index in stream_indices if index >= 0
        }
        self._cancel = threading.Event()
        self._seek_lock = threading.Lock()
        self._seek_target_ns = -1
        self._thread: threading.Thread | None = None

    # ------------------------------------------------------------------ control

    def start(self) -> None:
        """Start the background scan; it may be started only once."""
        if self._thread is not None:
            raise RuntimeError("subtitle extraction already started")
        self._thread = threading.Thread(
            target=self._run, name="subtitle-extract", daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        """Ask the scan to stop as soon as possible."""
        self._cancel.set()

    def join(self, timeout: float | None = None) -> bool:
        """Wait for the scan to end; return True if it is no longer running."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    def request_seek(self, target_ns: int) -> None:
        """Move the scan near ``target_ns``; the latest request wins."""
        with self._seek_lock:
            self._seek_target_ns = max(target_ns, 0)

    def _take_seek(self) -> int:
        with self._seek_lock:
            target, self._seek_target_ns = self._seek_target_ns, -1
            return target

    def __enter__(self) -> SubtitleExtractor:
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel()
        self.join()

    # ------------------------------------------------------------------ readers

    def snapshot(self, stream_index: int) -> SubtitleSnapshot:
        """Return the current document for ``stream_index``.

        Unknown streams give an empty snapshot.
        """
        buffer = self._buffers.get(stream_index)
        if buffer is None:
            return SubtitleSnapshot()
        return buffer.snapshot()

    def extract_ass(self, stream_index: int) -> str:
        """Return the ASS text extracted so far for ``stream_index``."""
        return self.snapshot(stream_index).ass_text

    # ------------------------------------------------------------------ worker

    def _run(self) -> None:
        try:
            if self._cancel.is_set() or not self._buffers:
                return
            try:
                documents = quick_extract_matroska_subs(self._path, self._cancel)
            except MatroskaFastPathUnavailable:
                pass
            else:
                for index, document in documents.items():
                    buffer = self._buffers.get(index)
                    if buffer is not None:
                        buffer.publish_document(document)
                return
            if not self._cancel.is_set():
                self._scan()
        except Exception:
            _log.exception("sub-extract: scan failed")
        finally:
            for buffer in self._buffers.values():
                buffer.mark_complete()

    def _scan(self) -> None:
        try:
            stream = open(self._path, "rb")
        except OSError as exc:
            _log.warning("sub-preextract: open failed (%s)", exc)
            return
        with stream:
            reader = EbmlReader(stream)
            try:
                layout = _read_layout(reader)
            except EbmlError as exc:
                _log.warning("sub-preextract: open_input failed (%s)", exc)
                return

            for index, buffer in self._buffers.items():
                track = layout.tracks.get(index)
                buffer.set_header(seed_ass_header(track.codec_private if track else b""))

            by_number: dict[int, SubtitleTrackEntry] = {}
            for track in layout.tracks.values():
                if track.stream_index in self._buffers:
                    by_number.setdefault(track.track_number, track)

            if layout.first_cluster is None:
                _log.info("sub-extract: scan complete (%d stream(s))", len(self._buffers))
                return

            _log.info("sub-extract: scan started")
            self._scan_clusters(reader, layout, by_number)
            _log.info("sub-extract: scan complete (%d stream(s))", len(self._buffers))

    def _scan_clusters(
        self,
        reader: EbmlReader,
        layout: _Layout,
        by_number: dict[int, SubtitleTrackEntry],
    ) -> None:
        assert layout.first_cluster is not None
        reader.seek(layout.first_cluster)
        while not self._cancel.is_set():
            pending_ns = self._take_seek()
            if pending_ns >= 0:
                target = self._locate_seek_cluster(reader, layout, pending_ns // _NS_PER_MS)
                _log.info("sub-extract: seek -> %d ms", pending_ns // _NS_PER_MS)
                reader.seek(target)

            if reader.pos >= layout.segment_end:
                break
            try:
                element_id, size = reader.read_element_header()
            except EbmlError:
                break
            unknown = is_unknown_size(size.value, size.length)
            end = layout.segment_end if unknown else reader.pos + size.value
            if element_id == CLUSTER:
                reader.seek(self._scan_cluster(reader, end, unknown, layout, by_number))
            elif unknown:
                break
            else:
                reader.seek(end)

    def _locate_seek_cluster(self, reader: EbmlReader, layout: _Layout, target_ms: int) -> int:
        """Return the position of the last cluster starting at or before ``target_ms``."""
        assert layout.first_cluster is not None
        best = layout.first_cluster
        reader.seek(best)
        while reader.pos < layout.segment_end:
            start = reader.pos
            try:
                element_id, size = reader.read_element_header()
            except EbmlError:
                break
            unknown = is_unknown_size(size.value, size.length)
            end = reader.pos + size.value
            if element_id != CLUSTER:
                if unknown:
                    break
                reader.seek(end)
                continue
            try:
                cluster_ts, _ = read_cluster_timestamp(reader, start)
            except EbmlError:
                break
            if _tc_to_ms(cluster_ts, layout.timecode_scale) > target_ms:
                break
            best = start
            if unknown:
                break
            reader.seek(end)
        return best

    def _scan_cluster(
        self,
        reader: EbmlReader,
        end: int,
        unknown: bool,
        layout: _Layout,
        by_number: dict[int, SubtitleTrackEntry],
    ) -> int:
        """Emit every subtitle block of one cluster; return where to go next."""
        cluster_ts = 0
        while reader.pos < end:
            if self._cancel.is_set():
                return reader.pos
            child_start = reader.pos
            try:
                child_id, child_size = reader.read_element_header()
            except EbmlError:
                return end
            if unknown and child_id in _TOP_LEVEL_IDS:
                return child_start
            child_end = reader.pos + child_size.value
            try:
                if child_id == CLUSTER_TIMESTAMP:
                    cluster_ts = reader.read_uint(child_size.value)
                elif child_id in (SIMPLE_BLOCK, BLOCK_GROUP):
                    block = _read_block(reader, child_id, child_end)
                    if block is not None:
                        self._emit(block, cluster_ts, layout.timecode_scale, by_number)
            except EbmlError:
                return end
            reader.seek(child_end)
        return end

    def _emit(
        self,
        block: _Block,
        cluster_ts: int,
        timecode_scale: int,
        by_number: dict[int, SubtitleTrackEntry],
    ) -> None:
        track = by_number.get(block.track_number)
        if track is None:
            return
        start_ms = _tc_to_ms(cluster_ts + block.relative_ts, timecode_scale)
        if block.duration_tc:
            duration_ms = _tc_to_ms(block.duration_tc, timecode_scale)
        else:
            duration_ms = DEFAULT_DURATION_MS
        end_ms = start_ms + duration_ms
        if end_ms <= start_ms:
            end_ms = start_ms + DEFAULT_DURATION_MS
        line = dialogue_from_block(track.codec_id, block.data, start_ms, end_ms)
        if line is not None:
            self._buffers[track.stream_index].append_events(line)