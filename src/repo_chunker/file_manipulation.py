from __future__ import annotations

import fnmatch
import hashlib
import os
import re
import stat
import subprocess  # noqa: S404
from pathlib import Path
from typing import TYPE_CHECKING

from repo_chunker.config import BINARY_FILE_EXTENSIONS, DEFAULT_EXCLUDES, FileEntry
from repo_chunker.exceptions import GitCommandError, NotAGitRepositoryError
from repo_chunker.logging import logger

if TYPE_CHECKING:
    from collections.abc import Sequence

    from repo_chunker.config import ChunkerConfig

TEXT_SNIFF_BYTES = 512
_SIZE_PATTERN = re.compile(r"^\s*(?P<value>\d+)\s*(?P<unit>[A-Za-z]*)\s*$")
_BYTE_UNITS = {"": 1, "B": 1, "KB": 1024, "MB": 1024**2, "GB": 1024**3}
_TOKEN_UNITS = {"": 1, "K": 1000}


def relpath(path: Path, root: Path) -> str:
    """Send the relative path of path from root.

    Args:
        path (Path): the path to "relativise"
        root (Path): the root to relativise from

    Returns:
        str: the relative path from root to path, with POSIX separators.
            If path is not under root, returns the original path as a string.
    """
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return str(path).replace("\\", "/")


def is_regular_file(path: Path) -> bool:
    """Check if a file is regular.

    Args:
        path (Path): path to test.

    Returns:
        bool: True if the file is regular, False otherwise.
    """
    try:
        st = path.stat()
        return stat.S_ISREG(st.st_mode)
    except OSError:
        return False


def run_git(repo: Path, *args: str) -> bytes:
    """Run a git command in ``repo`` and return its raw standard output.

    Raises:
        GitCommandError: if git exits with a non-zero status.
    """
    command = ["git", *args]
    out = subprocess.run(  # noqa: S603
        command,
        cwd=str(repo),
        capture_output=True,
        check=False,
    )
    if out.returncode != 0:
        raise GitCommandError(
            command=" ".join(command),
            returncode=out.returncode,
            stderr=out.stderr.decode("utf-8", errors="replace"),
        )
    return out.stdout


def git_ls_files(repo: Path) -> list[Path]:
    """List tracked and untracked, non-ignored files of a git repository.

    Args:
        repo (Path): the root of the git repository to query

    Raises:
        NotAGitRepositoryError: if `.git` is missing.

    Returns:
        list[Path]: the files git would consider part of the working tree
    """
    if not (repo / ".git").exists():
        raise NotAGitRepositoryError(folder=repo)
    stdout = run_git(
        repo,
        "-c",
        "core.quotepath=false",
        "ls-files",
        "--cached",
        "--others",
        "--exclude-standard",
    ).decode("utf-8", errors="replace")
    return [repo / line.strip() for line in stdout.splitlines() if line.strip()]


def walk_files(repo: Path) -> list[Path]:
    """Walk the directory tree rooted at `repo` and return a list of all files.

    Directories named in `DEFAULT_EXCLUDES` are pruned.

    Args:
        repo (Path): the root directory to walk

    Returns:
        list[Path]: a list of all files found
    """
    results: list[Path] = []
    for root, dirs, files in os.walk(repo):
        dirs[:] = [d for d in dirs if d not in DEFAULT_EXCLUDES]
        for f in files:
            p = Path(root) / f
            if p.is_file():
                results.append(p)
    return results


def discover_files(repo: Path, *, use_git: bool = True) -> list[Path]:
    """List candidate files, preferring `git ls-files` and falling back to a walk."""
    if use_git:
        try:
            return git_ls_files(repo)
        except (NotAGitRepositoryError, GitCommandError, OSError) as e:
            logger.debug("git_ls_files_unavailable", repo=str(repo), error=repr(e))
    return walk_files(repo)


def in_default_excludes(repo: Path, path: Path) -> bool:
    """Check if any component of ``path`` (relative to ``repo``) is a default exclude."""
    try:
        parts = path.relative_to(repo).parts
    except ValueError:
        return True
    return any(p in DEFAULT_EXCLUDES for p in parts)


def normalize_globs(globs: Sequence[str]) -> list[str]:
    """Normalize a sequence of path glob patterns.

    Normalize a sequence of glob patterns by stripping whitespace and
    replacing backslashes with forward slashes.

    Args:
        globs (Sequence[str]): the glob patterns to normalize

    Returns:
        list[str]: the normalized glob patterns
    """
    out: list[str] = []
    for g in globs:
        g2 = (g or "").strip()
        if not g2:
            continue
        out.append(g2.replace("\\", "/"))
    return out


def is_ignored(rel: str, patterns: Sequence[str]) -> bool:
    """Check if a relative path matches an ignore pattern.

    A pattern matches when it globs the whole path, or when it names a
    directory prefix of the path (``build`` or ``build/`` ignore ``build/x.py``).

    Args:
        rel (str): the relative path to check
        patterns (Sequence[str]): normalized ignore patterns

    Returns:
        bool: True if `rel` is ignored
    """
    for pat in patterns:
        prefix = pat.rstrip("/")
        if fnmatch.fnmatch(rel, pat) or (prefix and rel.startswith(prefix + "/")):
            return True
    return False


def apply_filters(
    files: Sequence[Path],
    repo: Path,
    ignore_patterns: Sequence[str],
    exclude_dirs: Sequence[Path] = (),
) -> list[Path]:
    """Drop irregular, excluded and ignored files.

    Args:
        files (Sequence[Path]): candidate file paths (absolute or under repo)
        repo (Path): the root path to relativize file paths against
        ignore_patterns (Sequence[str]): user glob patterns
        exclude_dirs (Sequence[Path]): directories whose content is skipped,
            such as the output directory

    Returns:
        list[Path]: the kept files, sorted case-insensitively by relative path
    """
    patterns = normalize_globs(ignore_patterns)
    excluded = [d.resolve() for d in exclude_dirs]

    out: list[Path] = []
    for f in files:
        if not is_regular_file(f):
            continue
        if in_default_excludes(repo, f):
            continue
        if excluded and any(f.resolve().is_relative_to(d) for d in excluded):
            continue
        if patterns and is_ignored(relpath(f, repo), patterns):
            continue
        out.append(f)
    return sorted(set(out), key=lambda p: relpath(p, repo).lower())


def is_text_file(path: Path, binary_extensions: Sequence[str] = ()) -> bool:
    """Check if a file is text.

    Known binary extensions are rejected without reading; otherwise a null
    byte in the first 512 bytes means binary.

    Args:
        path (Path): the file path to check
        binary_extensions (Sequence[str]): extra extensions, leading dot optional

    Raises:
        OSError: if the file cannot be opened.

    Returns:
        bool: True if the file is text, False otherwise
    """
    ext = path.suffix.lower().lstrip(".")
    if ext and (ext in BINARY_FILE_EXTENSIONS or ext in {e.lower().lstrip(".") for e in binary_extensions}):
        return False
    with path.open("rb") as f:
        head = f.read(TEXT_SNIFF_BYTES)
    return b"\x00" not in head


def read_text_lossy(path: Path) -> str:
    """Read a file as UTF-8, replacing undecodable bytes."""
    return path.read_bytes().decode("utf-8", errors="replace")


def get_recent_commit_times(repo: Path) -> dict[str, int] | None:
    """Get the Unix time of the most recent commit touching each file.

    Paths are relative to ``repo``. Git history is best effort: a missing
    ``.git`` directory, a failing command or an empty history all give None.

    Args:
        repo (Path): directory holding the ``.git`` folder

    Returns:
        dict[str, int] | None: path to last commit timestamp, or None
    """
    if not (repo / ".git").exists():
        logger.debug("no_git_directory", repo=str(repo))
        return None
    try:
        stdout = run_git(
            repo,
            "-c",
            "core.quotepath=false",
            "log",
            "--format=%x00%ct",
            "--name-only",
            "--no-merges",
            "--no-renames",
            "--relative",
            "--",
            ".",
        )
    except (GitCommandError, OSError) as e:
        logger.debug("git_log_failed", repo=str(repo), error=repr(e))
        return None

    times: dict[str, int] = {}
    current = 0
    for raw in stdout.decode("utf-8", errors="replace").splitlines():
        if raw.startswith("\0"):
            current = int(raw[1:].strip())
            continue
        line = raw.strip()
        if not line:
            continue
        # log is newest first: keep the first timestamp seen
        times.setdefault(line, current)

    if not times:
        logger.debug("no_git_timestamps", repo=str(repo))
        return None
    return times


def compute_checksum(dirs: Sequence[Path], exclude_dirs: Sequence[Path] = ()) -> str:
    """Compute a short SHA-256 fingerprint of the input directories.

    The digest covers relative paths, sizes and modification times, which is
    enough to name an output file after the state of the inputs.

    Args:
        dirs (Sequence[Path]): the input directories
        exclude_dirs (Sequence[Path]): directories left out, such as the output directory

    Returns:
        str: the first 16 hex characters of the digest
    """
    excluded = [Path(e).resolve() for e in exclude_dirs]
    h = hashlib.sha256()
    for d in dirs:
        root = Path(d).resolve()
        files = [p for p in walk_files(root) if not any(p.is_relative_to(e) for e in excluded)]
        for p in sorted(files, key=lambda x: relpath(x, root)):
            st = p.stat()
            h.update(f"{relpath(p, root)}\0{st.st_size}\0{st.st_mtime_ns}\n".encode())
    return h.hexdigest()[:16]


def parse_size_input(text: str, *, is_tokens: bool = False) -> int:
    """Parse a chunk size such as ``10MB``, ``512KB`` or ``128K``.

    Byte sizes accept ``KB``, ``MB`` and ``GB`` (powers of 1024); token
    sizes accept ``K`` (thousands). Units are case-insensitive.

    Args:
        text (str): the user input
        is_tokens (bool): parse as a token count instead of a byte size

    Raises:
        ValueError: if the input is not a size.

    Returns:
        int: the size in bytes or tokens
    """
    m = _SIZE_PATTERN.match(text)
    units = _TOKEN_UNITS if is_tokens else _BYTE_UNITS
    unit = m.group("unit").upper() if m else ""
    if m is None or unit not in units:
        kind = "token" if is_tokens else "byte"
        msg = f"Invalid {kind} size: {text!r}"
        raise ValueError(msg)
    return int(m.group("value")) * units[unit]


def scan_directory(repo: Path, config: ChunkerConfig, *, use_git: bool = True) -> list[FileEntry]:
    """Collect the text files of ``repo`` as unscored entries, in discovery order.

    Args:
        repo (Path): the input directory
        config (ChunkerConfig): ignore patterns, binary extensions, output dir
        use_git (bool): prefer `git ls-files` for discovery

    Raises:
        OSError: if a selected file cannot be read.

    Returns:
        list[FileEntry]: one entry per text file, priority 0
    """
    repo = repo.resolve()
    exclude_dirs = [config.output_dir] if config.output_dir is not None and not config.stream else []
    files = apply_filters(
        discover_files(repo, use_git=use_git),
        repo,
        ignore_patterns=config.ignore_patterns,
        exclude_dirs=exclude_dirs,
    )

    entries: list[FileEntry] = []
    for f in files:
        rel = relpath(f, repo)
        if not is_text_file(f, config.binary_extensions):
            logger.debug("skipping_binary_file", path=rel)
            continue
        entries.append(FileEntry(rel_path=rel, content=read_text_lossy(f)))
    logger.info("scan_complete", repo=str(repo), files=len(entries))
    return entries
