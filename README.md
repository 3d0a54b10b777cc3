# freikino

Building blocks for a video player's media layer, in pure Python with no
third-party dependencies:

- **Matroska / WebM subtitle extraction** that uses the container's own
  Cues index. If the muxer indexed the file's subtitle blocks, only a few
  tens of kilobytes are read instead of the whole container.
- **ASS document building**: each text subtitle track (ASS, SSA, or
  SRT-style UTF-8 text) is turned into a complete ASS document that a
  subtitle renderer can use.
- **A live subtitle buffer and background extractor**, so a UI can poll
  for the current document without blocking.
- Helpers for track and metadata descriptions, timestamp rescaling,
  filtering frames after a seek, choosing a pixel format, and a round-robin
  texture pool.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Extracting subtitles from a Matroska file

```python
import threading

from freikino.matroska_subs import (
    MatroskaFastPathUnavailable,
    quick_extract_matroska_subs,
)

cancel = threading.Event()
try:
    documents = quick_extract_matroska_subs("movie.mkv", cancel)
except MatroskaFastPathUnavailable:
    documents = {}

for stream_index, ass_text in documents.items():
    print(stream_index, ass_text.count("Dialogue: "), "events")
```

The keys are 0-based stream indices in TrackEntry order. Every track entry
counts, whatever its type.

The fast path either succeeds as a whole or raises
`MatroskaFastPathUnavailable`. It raises in these cases:

- the file is not Matroska;
- the walk reaches a Cluster before it finds Cues;
- there are no subtitle tracks, or the Cues have no entries for any of them;
- the structure is malformed or a read fails;
- no Dialogue line could be built.

Setting `cancel` makes it raise as well. The event is checked before the
file is opened and again between clusters. Only tracks that produced at
least one Dialogue line appear in the result.

## Polling subtitles in the background

`SubtitleExtractor` runs the extraction on a daemon thread and keeps one
`SubtitleLiveBuffer` per requested stream index. Negative indices are
ignored.

The worker works in this order:

1. It tries `quick_extract_matroska_subs` first. If that succeeds, it
   publishes each finished document.
2. Otherwise it walks the file's clusters one after another. It sets a
   header on each buffer, then appends Dialogue lines as they are found.
3. When it finishes, it marks every buffer complete, whether it succeeded,
   failed or was cancelled.

```python
from freikino.subtitle_extractor import SubtitleExtractor

with SubtitleExtractor("movie.mkv", [2, 3]) as extractor:   # starts the worker
    extractor.join(5.0)
    snap = extractor.snapshot(2)
    if snap.complete:
        print(snap.ass_text)
```

- Entering the `with` block calls `start()`. A second `start()` raises
  `RuntimeError`.
- Leaving the block calls `cancel()` and then `join()`.
- `join(timeout)` returns True once the worker is no longer running.
- `snapshot(stream_index)` returns a `SubtitleSnapshot`:
  - `ass_text` holds the document so far;
  - `generation` grows with every change to the buffer;
  - `complete` is set once the worker is done;
  - a stream that was not requested gives an empty snapshot.
- `extract_ass(stream_index)` returns only the text.
- `request_seek(target_ns)` takes effect during the cluster walk. It moves
  the walk to the last cluster that starts at or before the target. If
  several requests arrive before the worker reads them, the latest one wins.

`SubtitleLiveBuffer` can also be used on its own. Its methods are:

- `set_header`;
- `append_events` (appending an empty string changes nothing);
- `publish_document`, which replaces the whole content;
- `mark_complete`;
- `snapshot`.

Every change is made under a lock and bumps the generation.

## ASS helpers

`freikino.ass` builds the pieces of an ASS document:

```python
from freikino.ass import (
    dialogue_from_block,
    format_ass_timestamp,
    seed_ass_header,
)

header = seed_ass_header("")          # minimal 1920x1080 header with a Default style
line = dialogue_from_block("S_TEXT/UTF8", b"Hello\nworld", 1500, 3500)
# 'Dialogue: 0,0:00:01.50,0:00:03.50,Default,,0,0,0,,Hello\\Nworld\n'
print(format_ass_timestamp(3723450))  # 1:02:03.45
```

- `seed_ass_header` keeps a non-empty codec-private block. If that block
  has no `[Events]` section, it appends one.
- Plain-text blocks (`S_TEXT/UTF8`, `S_TEXT/ASCII`) have carriage returns
  dropped and line feeds turned into `\N`.
- ASS/SSA blocks are reshaped from their stored `ReadOrder,Layer,Style,...`
  form into `Dialogue:` lines.
- `dialogue_from_block` returns None for empty payloads, unknown codecs and
  events that lack fields.
- `codec_is_ass` and `codec_is_utf8_text` classify codec IDs.

## Lower-level pieces

- `freikino.ebml`: `EbmlReader` reads from any seekable binary stream:
  - variable-length integers (`Vint`);
  - element headers;
  - unsigned integers;
  - byte strings;
  - signed block timestamps.

  `is_unknown_size` recognises the "unknown size" marker. A malformed
  input or a short read raises `EbmlError`.
- `freikino.matroska_parse` has `parse_info`, `parse_tracks`, `parse_cues`,
  `read_cluster_timestamp` and `read_block_at`. They produce
  `SubtitleTrackEntry`, `CueEntry` and `BlockEvent` values.
- `freikino.tracks` has the value types `Metadata`, `AudioTrack`,
  `SubtitleTrack`, `FontAttachment`, `VideoInfo` and `AudioInfo`, and these
  functions:
  - `metadata_from_tags`: container tags first, then stream tags; `date`
    falls back to `year`;
  - `tag_from_any`;
  - `is_font_attachment`;
  - `average_fps`;
  - `choose_audio_bit_rate`.
- `freikino.decode` has these helpers:
  - `rescale_ns`: rounds to nearest; a missing timestamp gives 0;
  - `is_late_after_seek`: uses a 100 ms margin;
  - `choose_pixel_format`: prefers `"d3d11"`, then the first format that is
    not hardware-accelerated;
  - `TexturePool`: allocates lazily, recycles 20 slots by default, and drops
    every slot when the size or format changes.

## What this package does not do

- It does not demux, decode or play audio and video.
- It does not render subtitles, and it has no user interface.
- It does not scale layout for screen DPI.
- The helpers in `freikino.tracks` and `freikino.decode` work on values you
  pass in; they do not read media files themselves.
- Subtitle extraction understands only Matroska/WebM. For any other file,
  the background extractor logs a warning and marks its buffers complete
  with empty text.
- Image-based subtitle codecs are skipped.
- There is no command-line program.