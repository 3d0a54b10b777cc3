import threading

import pytest

from freikino.ass import dialogue_from_ass_event, dialogue_from_plain_text, seed_ass_header
from freikino.ebml import (
    CLUSTER,
    CLUSTER_TIMESTAMP,
    CODEC_ID,
    CODEC_PRIVATE,
    CUE_CLUSTER_POSITION,
    CUE_POINT,
    CUE_RELATIVE_POSITION,
    CUE_TIME,
    CUE_TRACK,
    CUE_TRACK_POSITIONS,
    CUES,
    EBML_HEADER,
    INFO,
    SEEK,
    SEEK_HEAD,
    SEEK_ID,
    SEEK_POSITION,
    SEGMENT,
    SIMPLE_BLOCK,
    TIMECODE_SCALE,
    TRACK_ENTRY,
    TRACK_NUMBER,
    TRACK_TYPE,
    TRACK_TYPE_SUBTITLE,
    TRACKS,
)
from freikino.matroska_subs import MatroskaFastPathUnavailable, quick_extract_matroska_subs


def encode_id(element_id):
    return element_id.to_bytes((element_id.bit_length() + 7) // 8, "big")


def encode_size(n):
    for length in range(1, 9):
        if n < (1 << (7 * length)) - 1:
            return ((1 << (7 * length)) | n).to_bytes(length, "big")
    raise ValueError(n)


def element(element_id, payload):
    return encode_id(element_id) + encode_size(len(payload)) + payload


def uint(value, width=8):
    return value.to_bytes(width, "big")


def simple_block(track, rel_ts, payload):
    inner = encode_size(track) + rel_ts.to_bytes(2, "big", signed=True) + b"\x80" + payload
    return element(SIMPLE_BLOCK, inner)


def build_cluster(timestamp, blocks):
    body = element(CLUSTER_TIMESTAMP, uint(timestamp))
    offsets = []
    for block in blocks:
        offsets.append(len(body))
        body += block
    return element(CLUSTER, body), offsets


def build_cues(entries):
    points = b""
    for track, cluster_pos, rel in entries:
        positions = (
            element(CUE_TRACK, uint(track, 1))
            + element(CUE_CLUSTER_POSITION, uint(cluster_pos))
            + element(CUE_RELATIVE_POSITION, uint(rel))
        )
        points += element(CUE_POINT, element(CUE_TIME, uint(0)) + element(CUE_TRACK_POSITIONS, positions))
    return element(CUES, points)


def build_seek_head(tracks_pos, cues_pos):
    seeks = b""
    for target, pos in ((TRACKS, tracks_pos), (CUES, cues_pos)):
        seeks += element(SEEK, element(SEEK_ID, encode_id(target)) + element(SEEK_POSITION, uint(pos)))
    return element(SEEK_HEAD, seeks)


def build_file(blocks, codec_id=b"S_TEXT/UTF8", codec_private=b"", cue_track=2, use_seek_head=False, reverse_cues=False):
    info = element(INFO, element(TIMECODE_SCALE, uint(1_000_000, 4)))
    video = element(TRACK_ENTRY, element(TRACK_NUMBER, uint(1, 1)) + element(TRACK_TYPE, uint(1, 1)))
    sub_body = element(TRACK_NUMBER, uint(2, 1)) + element(TRACK_TYPE, uint(TRACK_TYPE_SUBTITLE, 1))
    sub_body += element(CODEC_ID, codec_id)
    if codec_private:
        sub_body += element(CODEC_PRIVATE, codec_private)
    tracks = element(TRACKS, video + element(TRACK_ENTRY, sub_body))
    cluster, offsets = build_cluster(1000, blocks)

    def cues_for(cluster_pos):
        entries = [(cue_track, cluster_pos, rel) for rel in offsets]
        if reverse_cues:
            entries.reverse()
        return build_cues(entries)

    if use_seek_head:
        seek_len = len(build_seek_head(0, 0))
        tracks_pos = seek_len + len(info)
        cluster_pos = tracks_pos + len(tracks)
        cues_pos = cluster_pos + len(cluster)
        body = build_seek_head(tracks_pos, cues_pos) + info + tracks + cluster + cues_for(cluster_pos)
    else:
        cluster_pos = len(info) + len(tracks) + len(cues_for(0))
        body = info + tracks + cues_for(cluster_pos) + cluster
    ebml = element(EBML_HEADER, element(0x4286, uint(1, 1)))
    return ebml + element(SEGMENT, body)


def write(tmp_path, data):
    path = tmp_path / "movie.mkv"
    path.write_bytes(data)
    return path


def test_extracts_plain_text_track(tmp_path):
    path = write(tmp_path, build_file([simple_block(2, 0, b"Hello\r\nWorld")]))
    result = quick_extract_matroska_subs(path)
    expected = seed_ass_header(b"") + dialogue_from_plain_text("Hello\r\nWorld", 1000, 3000)
    assert result == {1: expected}


def test_extracts_ass_track_with_codec_private(tmp_path):
    private = b"[Script Info]\nScriptType: v4.00+\n"
    path = write(
        tmp_path,
        build_file([simple_block(2, 0, b"0,0,Default,,0,0,0,,Hi")], codec_id=b"S_TEXT/ASS", codec_private=private),
    )
    result = quick_extract_matroska_subs(str(path))
    expected = seed_ass_header(private) + dialogue_from_ass_event("0,0,Default,,0,0,0,,Hi", 1000, 3000)
    assert result == {1: expected}


def test_follows_seek_head(tmp_path):
    path = write(tmp_path, build_file([simple_block(2, 0, b"Hi")], use_seek_head=True))
    result = quick_extract_matroska_subs(path)
    assert result == {1: seed_ass_header(b"") + dialogue_from_plain_text("Hi", 1000, 3000)}


def test_blocks_come_out_in_cluster_order(tmp_path):
    blocks = [simple_block(2, 0, b"first"), simple_block(2, 100, b"second")]
    path = write(tmp_path, build_file(blocks, reverse_cues=True))
    document = quick_extract_matroska_subs(path)[1]
    assert document.index("first") < document.index("second")
    assert document.count("Dialogue: ") == 2


def test_non_matroska_raises(tmp_path):
    path = write(tmp_path, b"RIFF\x00\x00\x00\x00WAVEfmt ")
    with pytest.raises(MatroskaFastPathUnavailable):
        quick_extract_matroska_subs(path)


def test_missing_file_raises(tmp_path):
    with pytest.raises(MatroskaFastPathUnavailable):
        quick_extract_matroska_subs(tmp_path / "absent.mkv")


def test_cluster_before_cues_raises(tmp_path):
    info = element(INFO, element(TIMECODE_SCALE, uint(1_000_000, 4)))
    cluster, _ = build_cluster(0, [simple_block(2, 0, b"x")])
    data = element(EBML_HEADER, b"") + element(SEGMENT, info + cluster)
    path = write(tmp_path, data)
    with pytest.raises(MatroskaFastPathUnavailable):
        quick_extract_matroska_subs(path)


def test_cues_without_subtitle_track_raise(tmp_path):
    path = write(tmp_path, build_file([simple_block(2, 0, b"x")], cue_track=1))
    with pytest.raises(MatroskaFastPathUnavailable):
        quick_extract_matroska_subs(path)


def test_unsupported_codec_yields_nothing(tmp_path):
    path = write(tmp_path, build_file([simple_block(2, 0, b"\x00\x01")], codec_id=b"S_HDMV/PGS"))
    with pytest.raises(MatroskaFastPathUnavailable):
        quick_extract_matroska_subs(path)


def test_cancel_raises(tmp_path):
    path = write(tmp_path, build_file([simple_block(2, 0, b"Hi")]))
    cancel = threading.Event()
    cancel.set()
    with pytest.raises(MatroskaFastPathUnavailable):
        quick_extract_matroska_subs(path, cancel)


def test_unset_cancel_allows_extraction(tmp_path):
    path = write(tmp_path, build_file([simple_block(2, 0, b"Hi")]))
    result = quick_extract_matroska_subs(path, threading.Event())
    assert list(result) == [1]


def test_truncated_file_raises(tmp_path):
    data = build_file([simple_block(2, 0, b"Hello there")])
    path = write(tmp_path, data[:-6])
    with pytest.raises(MatroskaFastPathUnavailable):
        quick_extract_matroska_subs(path)