from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import StrEnum, auto
from itertools import pairwise
from typing import TYPE_CHECKING

from repo_chunker.config import DEFAULT_CHUNK_SIZE, HEADER_OVERHEAD, Chunk, FileEntry
from repo_chunker.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable, Iterator

    from repo_chunker.sinks import ChunkSink

HEADER_PREFIX = ">>>> "
_TOKEN_PATTERN = re.compile(r"\S+")


class MeasurementMode(StrEnum):
    """How the size of a file is measured against the chunk capacity."""

    BYTES = auto()
    TOKENS = auto()


def count_tokens(text: str) -> int:
    """Count whitespace-delimited tokens in ``text``."""
    return len(text.split())


def measure(text: str, mode: MeasurementMode) -> int:
    """Size of ``text`` in the unit of ``mode``.

    Args:
        text (str): the content to measure
        mode (MeasurementMode): bytes (UTF-8 length) or whitespace tokens

    Returns:
        int: the measured size
    """
    if mode is MeasurementMode.TOKENS:
        return count_tokens(text)
    return len(text.encode("utf-8"))


def split_by_tokens(text: str, capacity: int) -> list[str]:
    """Cut ``text`` into consecutive slices of ``capacity`` tokens.

    Cuts happen at the start of every ``capacity``-th token, so whitespace is
    kept and the slices concatenate back to ``text``. Every slice holds
    exactly ``capacity`` tokens except the last one.

    Args:
        text (str): the content to split
        capacity (int): tokens per slice

    Returns:
        list[str]: the slices, in order
    """
    starts = [m.start() for m in _TOKEN_PATTERN.finditer(text)]
    cuts = [0, *starts[capacity::capacity], len(text)]
    return [text[a:b] for a, b in pairwise(cuts)]


def split_by_bytes(text: str, capacity: int) -> list[str]:
    """Cut the UTF-8 encoding of ``text`` into slices of ``capacity`` bytes.

    Offsets are raw byte offsets: a multi-byte character straddling a cut is
    replaced by U+FFFD on both sides.

    Args:
        text (str): the content to split
        capacity (int): bytes per slice

    Returns:
        list[str]: the decoded slices, in order
    """
    data = text.encode("utf-8")
    return [data[i : i + capacity].decode("utf-8", errors="replace") for i in range(0, len(data), capacity)]


def format_record(rel_path: str, content: str, part: int | None = None) -> str:
    """Render one ``>>>>`` record block."""
    header = rel_path if part is None else f"{rel_path}:part {part}"
    return f"{HEADER_PREFIX}{header}\n{content}\n"


@dataclass
class PackingState:
    """Mutable buffer of one packing run.

    Attributes:
        next_index: index given to the next flushed chunk.
        records: rendered record blocks waiting in the buffer.
        paths: record headers of the buffered blocks.
        used: accumulated measured size, header overhead included.
    """

    next_index: int = 0
    records: list[str] = field(default_factory=list)
    paths: list[str] = field(default_factory=list)
    used: int = 0

    @property
    def is_empty(self) -> bool:
        return not self.records

    def append(self, header: str, record: str, size: int) -> None:
        self.records.append(record)
        self.paths.append(header)
        self.used += size

    def flush(self) -> Chunk:
        """Turn the buffer into a chunk and reset it."""
        chunk = Chunk(
            index=self.next_index,
            text=f"chunk {self.next_index}\n" + "".join(self.records),
            paths=tuple(self.paths),
        )
        logger.debug("chunk_flushed", index=chunk.index, records=len(self.records), used=self.used)
        self.records = []
        self.paths = []
        self.used = 0
        self.next_index += 1
        return chunk

    def emit_alone(self, header: str, record: str) -> Chunk:
        """Emit a single record as its own chunk; the buffer must be empty."""
        self.append(header, record, 0)
        return self.flush()


class ChunkPacker:
    """Greedy sequential packing of ordered entries into bounded chunks.

    Entries are consumed in the order given and never reordered. A file
    larger than the capacity is split into ``:part <n>`` chunks of its own;
    smaller files share a chunk while their size plus header overhead fits.
    """

    def __init__(self, capacity: int = DEFAULT_CHUNK_SIZE, mode: MeasurementMode = MeasurementMode.BYTES) -> None:
        if capacity <= 0:
            msg = f"Chunk capacity must be positive, got {capacity}"
            raise ValueError(msg)
        self.capacity = capacity
        self.mode = mode

    def split(self, text: str) -> list[str]:
        if self.mode is MeasurementMode.TOKENS:
            return split_by_tokens(text, self.capacity)
        return split_by_bytes(text, self.capacity)

    def pack(self, entries: Iterable[FileEntry]) -> Iterator[Chunk]:
        """Yield chunks one at a time, as soon as each one is complete.

        Args:
            entries (Iterable[FileEntry]): entries in final emission order

        Yields:
            Iterator[Chunk]: chunks with sequential indices starting at 0
        """
        state = PackingState()
        for entry in entries:
            size = measure(entry.content, self.mode)
            if size > self.capacity:
                logger.debug("forced_split", path=entry.rel_path, size=size, capacity=self.capacity)
                if not state.is_empty:
                    yield state.flush()
                for part, piece in enumerate(self.split(entry.content)):
                    header = f"{entry.rel_path}:part {part}"
                    yield state.emit_alone(header, format_record(entry.rel_path, piece, part))
                continue

            overhead = HEADER_OVERHEAD + len(entry.rel_path)
            if state.used + size + overhead > self.capacity and not state.is_empty:
                yield state.flush()
            state.append(entry.rel_path, format_record(entry.rel_path, entry.content), size + overhead)

        if not state.is_empty:
            yield state.flush()

    def run(self, entries: Iterable[FileEntry], sink: ChunkSink) -> list[Chunk]:
        """Pack ``entries`` and hand every chunk to ``sink`` as it is produced."""
        chunks: list[Chunk] = []
        for chunk in self.pack(entries):
            sink.write(chunk)
            chunks.append(chunk)
        return chunks
