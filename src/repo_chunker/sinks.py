from __future__ import annotations

import sys
from pathlib import Path
from typing import TYPE_CHECKING, Protocol, TextIO

from repo_chunker.logging import logger
from repo_chunker.output_construction import HEADER_PREFIX

if TYPE_CHECKING:
    from repo_chunker.config import Chunk


class ChunkSink(Protocol):
    """Destination of packed chunks, called once per chunk, in order."""

    def write(self, chunk: Chunk) -> None: ...


def derive_chunk_name(chunk: Chunk) -> str:
    """Derive a file name from the first ``>>>>`` header of a chunk.

    The name is the header path up to the first ``:`` (which drops a
    ``:part <n>`` suffix). Without any header the name is ``chunk-<index>``.

    Args:
        chunk (Chunk): the chunk to name

    Returns:
        str: the name, without the ``.txt`` extension
    """
    for line in chunk.text.splitlines():
        if line.startswith(HEADER_PREFIX.rstrip()):
            name = line.removeprefix(HEADER_PREFIX.rstrip()).strip().split(":", 1)[0]
            if name:
                return name
    return f"chunk-{chunk.index}"


class StreamSink:
    """Write each chunk's exact text to a stream and flush it."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self.stream = stream if stream is not None else sys.stdout

    def write(self, chunk: Chunk) -> None:
        self.stream.write(chunk.text)
        self.stream.flush()


class FileSink:
    """Write each chunk to ``<output_dir>/<derived-name>.txt``.

    Existing files are overwritten. I/O errors propagate to the caller.
    """

    def __init__(self, output_dir: Path) -> None:
        self.output_dir = Path(output_dir)
        self.written: list[Path] = []

    def path_for(self, chunk: Chunk) -> Path:
        return self.output_dir / f"{derive_chunk_name(chunk)}.txt"

    def write(self, chunk: Chunk) -> None:
        path = self.path_for(chunk)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(chunk.text, encoding="utf-8")
        self.written.append(path)
        logger.debug("chunk_written", index=chunk.index, path=str(path))
