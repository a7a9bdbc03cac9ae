"""
repo_chunker: serialize a repository into ordered, size-bounded chunks.

Overview
--------
Every text file of the input directories gets a priority: the best score of
the configured path rules plus a boost for files changed recently in git.
Files are emitted in ascending priority, so the most important content comes
last, closest to the end of an LLM context. Files are packed greedily into
chunks of at most `--max-size` bytes (or whitespace tokens with `--tokens`);
a file bigger than one chunk is split into `:part <n>` chunks.

Chunks are streamed to stdout (`--stream`) or written as `<name>.txt` files
under the output directory, together with a combined
`repo-chunker-output-<checksum>.txt` file whose path is printed.

Configuration is read from the nearest `repo-chunker.toml` / `.yaml` found
upward from the first input directory:

    [[priority_rules]]
    score = 100
    patterns = ["^src/", "README"]

Usage
-----
    repo-chunker --stream --max-size 128K --tokens
    repo-chunker src docs --output-dir out --max-size 1MB --debug
"""

from __future__ import annotations

import argparse
import sys
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from repo_chunker import __version__
from repo_chunker.config import (
    DEFAULT_OUTPUT_DIRNAME,
    Chunk,
    ChunkerConfig,
    find_config_file,
    load_config_file,
    merge_configs,
    report_config_errors,
    validate_config,
)
from repo_chunker.exceptions import ConfigFileError
from repo_chunker.file_manipulation import (
    compute_checksum,
    get_recent_commit_times,
    parse_size_input,
    scan_directory,
)
from repo_chunker.logging import logger, setup_logging
from repo_chunker.output_construction import ChunkPacker, MeasurementMode
from repo_chunker.prioritization import PriorityScorer, order_entries
from repo_chunker.settings import Settings, env_default
from repo_chunker.sinks import FileSink, StreamSink

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo_chunker.config import FileEntry
    from repo_chunker.sinks import ChunkSink

OUTPUT_FILE_PREFIX = "repo-chunker-output"


class RunStats(BaseModel):
    """Summary of one serialization run."""

    model_config = ConfigDict(frozen=True)

    files: int = Field(..., ge=0, description="Files packed")
    chunks: list[Chunk] = Field(default_factory=list, description="Emitted chunks, in order")

    @property
    def total_bytes(self) -> int:
        return sum(c.size for c in self.chunks)

    @property
    def output(self) -> str:
        """All chunk texts concatenated in emission order."""
        return "".join(c.text for c in self.chunks)


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="repo-chunker",
        description="Serialize a repository into priority-ordered, size-bounded chunks for LLMs.",
    )
    p.add_argument("input_dirs", nargs="*", type=Path, help="Directories to serialize (default: current).")
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    p.add_argument(
        "--max-size",
        type=str,
        default=env_default("MAX_SIZE"),
        help="Chunk capacity, e.g. 10MB, 512KB (bytes) or 128K (tokens).",
    )
    p.add_argument("--tokens", action="store_true", help="Measure sizes in whitespace tokens.")
    p.add_argument("--stream", action="store_true", help="Write chunks to stdout.")
    p.add_argument(
        "--output-dir",
        type=str,
        default=env_default("OUTPUT_DIR"),
        help="Directory receiving chunk files.",
    )
    p.add_argument("--config", dest="config_file", type=Path, default=None, help="Configuration file.")
    p.add_argument(
        "--ignore",
        dest="ignore_patterns",
        action="append",
        default=[],
        help="Ignore glob (repeatable).",
    )
    p.add_argument(
        "--binary-ext",
        dest="binary_extensions",
        action="append",
        default=[],
        help="Extra binary extension (repeatable).",
    )
    p.add_argument("--no-git", action="store_true", help="Do not use git ls-files or git history.")
    p.add_argument("--debug", action="store_true", help="Enable debug logging.")
    p.add_argument("--log-file", type=str, default="", help="Log file path.")
    return p


def parse_args(argv: Sequence[str] | None = None) -> Settings:
    p = build_parser()
    args = p.parse_args(argv)
    max_size: int | None = None
    if args.max_size:
        try:
            max_size = parse_size_input(args.max_size, is_tokens=args.tokens)
        except ValueError as e:
            p.error(str(e))
    values = vars(args) | {
        "max_size": max_size,
        "input_dirs": args.input_dirs or [Path.cwd()],
        "output_dir": Path(args.output_dir) if args.output_dir else None,
    }
    return Settings(**values)


def build_config(settings: Settings) -> ChunkerConfig:
    """Merge the configuration file (if any) with command-line settings.

    A configuration file that cannot be loaded is reported and ignored.

    Args:
        settings (Settings): parsed command-line settings

    Returns:
        ChunkerConfig: the effective configuration
    """
    base = ChunkerConfig()
    config_path = settings.config_file or find_config_file(settings.input_dirs[0])
    if config_path is not None:
        try:
            base = load_config_file(config_path)
            logger.debug("config_file_loaded", path=str(config_path))
        except ConfigFileError as e:
            logger.warning("config_file_ignored", path=str(e.path), message=e.message)

    config = merge_configs(
        base,
        {
            "ignore_patterns": settings.ignore_patterns,
            "binary_extensions": settings.binary_extensions,
            "max_size": settings.max_size,
            "output_dir": settings.output_dir,
            "stream": True if settings.stream else None,
            "token_mode": True if settings.tokens else None,
        },
    )
    if not config.stream and config.output_dir is None:
        config = config.model_copy(update={"output_dir": settings.input_dirs[0] / DEFAULT_OUTPUT_DIRNAME})
    return config


def collect_entries(config: ChunkerConfig, input_dirs: Sequence[Path], *, use_git: bool) -> list[FileEntry]:
    """Scan and score every input directory; the result is not yet ordered."""
    entries: list[FileEntry] = []
    for d in input_dirs:
        commit_times = get_recent_commit_times(d) if use_git else None
        scorer = PriorityScorer.from_commit_times(config.priority_rules, commit_times)
        entries.extend(scorer.apply(scan_directory(d, config, use_git=use_git)))
    return entries


def serialize_repo(
    config: ChunkerConfig,
    input_dirs: Sequence[Path],
    sink: ChunkSink,
    *,
    use_git: bool = True,
) -> RunStats:
    """Run the whole pipeline: validate, scan, score, order, pack, deliver.

    Configuration problems are logged as warnings and the run continues.
    I/O errors propagate and abort the run.

    Args:
        config (ChunkerConfig): the effective configuration
        input_dirs (Sequence[Path]): directories to serialize
        sink (ChunkSink): destination of each chunk, called in order
        use_git (bool): use git for discovery and recency

    Returns:
        RunStats: the number of files and the emitted chunks
    """
    report_config_errors(validate_config(config), source="effective configuration")

    ordered = order_entries(collect_entries(config, input_dirs, use_git=use_git))
    mode = MeasurementMode.TOKENS if config.token_mode else MeasurementMode.BYTES
    packer = ChunkPacker(capacity=config.chunk_capacity, mode=mode)
    chunks = packer.run(ordered, sink)
    return RunStats(files=len(ordered), chunks=chunks)


def main(argv: Sequence[str] | None = None) -> int:
    settings = parse_args(argv)
    setup_logging(settings.log_file or None, debug=settings.debug)

    config = build_config(settings)
    logger.debug("configuration", config=config.model_dump(mode="json"))
    use_git = not settings.no_git

    if config.stream:
        stats = serialize_repo(config, settings.input_dirs, StreamSink(sys.stdout), use_git=use_git)
        logger.debug("run_complete", files=stats.files, chunks=len(stats.chunks), bytes=stats.total_bytes)
        return 0

    output_dir = config.output_dir
    if output_dir is None:
        msg = "output_dir must be set when not streaming"
        raise RuntimeError(msg)
    with ThreadPoolExecutor(max_workers=1) as pool:
        checksum_future = pool.submit(compute_checksum, settings.input_dirs, [output_dir])
        stats = serialize_repo(config, settings.input_dirs, FileSink(output_dir), use_git=use_git)
        checksum = checksum_future.result()

    final_path = output_dir / f"{OUTPUT_FILE_PREFIX}-{checksum}.txt"
    final_path.write_text(stats.output, encoding="utf-8")
    logger.debug("run_complete", files=stats.files, chunks=len(stats.chunks), bytes=stats.total_bytes)
    print(final_path)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
