from __future__ import annotations

import io
from pathlib import Path

import pytest

from repo_chunker.config import Chunk
from repo_chunker.sinks import FileSink, StreamSink, derive_chunk_name


class FlushRecordingStream(io.StringIO):
    def __init__(self) -> None:
        super().__init__()
        self.flushes = 0

    def flush(self) -> None:
        self.flushes += 1
        super().flush()


@pytest.mark.unit
def test_derive_chunk_name_uses_first_header() -> None:
    chunk = Chunk(index=3, text="chunk 3\n>>>> src/app.py\nx\n>>>> src/b.py\ny\n")

    assert derive_chunk_name(chunk) == "src/app.py"


@pytest.mark.unit
def test_derive_chunk_name_drops_part_suffix() -> None:
    chunk = Chunk(index=7, text="chunk 7\n>>>> big.txt:part 2\nzzz\n")

    assert derive_chunk_name(chunk) == "big.txt"


@pytest.mark.unit
def test_derive_chunk_name_falls_back_to_index() -> None:
    chunk = Chunk(index=4, text="chunk 4\nno header here\n")

    assert derive_chunk_name(chunk) == "chunk-4"


@pytest.mark.unit
def test_stream_sink_writes_exact_text_and_flushes() -> None:
    stream = FlushRecordingStream()
    sink = StreamSink(stream)

    sink.write(Chunk(index=0, text="chunk 0\n>>>> a\n1\n"))
    sink.write(Chunk(index=1, text="chunk 1\n>>>> b\n2\n"))

    assert stream.getvalue() == "chunk 0\n>>>> a\n1\nchunk 1\n>>>> b\n2\n"
    assert stream.flushes == 2


@pytest.mark.unit
def test_file_sink_creates_nested_directories(tmp_path: Path) -> None:
    sink = FileSink(tmp_path / "out")
    text = "chunk 0\n>>>> pkg/mod/a.py\nprint(1)\n"

    sink.write(Chunk(index=0, text=text))

    target = tmp_path / "out" / "pkg" / "mod" / "a.py.txt"
    assert target.read_text(encoding="utf-8") == text
    assert sink.written == [target]


@pytest.mark.unit
def test_file_sink_overwrites_existing_file(tmp_path: Path) -> None:
    target = tmp_path / "a.txt.txt"
    target.write_text("stale", encoding="utf-8")
    sink = FileSink(tmp_path)

    sink.write(Chunk(index=0, text="chunk 0\n>>>> a.txt\nfresh\n"))

    assert target.read_text(encoding="utf-8") == "chunk 0\n>>>> a.txt\nfresh\n"


@pytest.mark.unit
def test_file_sink_propagates_io_errors(tmp_path: Path) -> None:
    blocker = tmp_path / "blocker"
    blocker.write_text("not a directory", encoding="utf-8")
    sink = FileSink(blocker)

    with pytest.raises(OSError):  # noqa: PT011
        sink.write(Chunk(index=0, text="chunk 0\n>>>> a.txt\nx\n"))
