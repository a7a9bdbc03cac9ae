from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import tomlkit
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, computed_field, field_validator
from tomlkit.exceptions import TOMLKitError

from repo_chunker.exceptions import ConfigFileError, ConfigValidationError
from repo_chunker.logging import logger

if TYPE_CHECKING:
    from collections.abc import Iterable

DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024
MAX_RECENCY_BOOST = 50
HEADER_OVERHEAD = 10
MIN_RULE_SCORE = 0
MAX_RULE_SCORE = 1000
DEFAULT_OUTPUT_DIRNAME = "repo-chunker-output"

CONFIG_FILENAMES = (
    "repo-chunker.toml",
    "repo-chunker.yaml",
    "repo-chunker.yml",
)

DEFAULT_EXCLUDES = {
    ".git",
    ".hg",
    ".svn",
    ".venv",
    "venv",
    "__pycache__",
    ".mypy_cache",
    ".ruff_cache",
    ".pytest_cache",
    ".ipynb_checkpoints",
    "node_modules",
    ".idea",
    ".vscode",
    ".DS_Store",
    DEFAULT_OUTPUT_DIRNAME,
}

BINARY_FILE_EXTENSIONS = frozenset({
    "7z",
    "a",
    "avi",
    "bin",
    "bmp",
    "bz2",
    "class",
    "dll",
    "dmg",
    "doc",
    "docx",
    "dylib",
    "eot",
    "exe",
    "flac",
    "gif",
    "gz",
    "ico",
    "iso",
    "jar",
    "jpeg",
    "jpg",
    "lib",
    "mkv",
    "mov",
    "mp3",
    "mp4",
    "o",
    "obj",
    "ogg",
    "otf",
    "pdf",
    "png",
    "ppt",
    "pptx",
    "pyc",
    "pyd",
    "pyo",
    "rar",
    "so",
    "sqlite",
    "sqlite3",
    "tar",
    "tgz",
    "tiff",
    "ttf",
    "wasm",
    "wav",
    "webm",
    "webp",
    "woff",
    "woff2",
    "xls",
    "xlsx",
    "xz",
    "zip",
})


class PriorityRule(BaseModel):
    """A static scoring rule applied to relative file paths.

    Attributes:
        pattern: Substring or regular expression matched against the path.
        score: Score granted to matching paths, nominally in [0, 1000].
    """

    model_config = ConfigDict(frozen=True)

    pattern: str = Field(..., description="Substring or regular expression")
    score: int = Field(..., description="Score granted on match")


class FileEntry(BaseModel):
    """A text file discovered during the scan, ready to be packed.

    Attributes:
        rel_path: Path relative to its input directory, POSIX separators.
        content: Decoded file content.
        priority: Final priority; higher values are emitted later.
    """

    model_config = ConfigDict(frozen=True)

    rel_path: str = Field(..., description="File path relative to the input directory")
    content: str = Field(..., description="Decoded text content")
    priority: int = Field(default=0, description="Static score plus recency boost")


class Chunk(BaseModel):
    """One emitted chunk: its sequential index and literal text."""

    model_config = ConfigDict(frozen=True)

    index: int = Field(..., ge=0, description="Sequential chunk index")
    text: str = Field(..., description="Full chunk payload")
    paths: tuple[str, ...] = Field(default=(), description="Record headers, in order")

    @computed_field
    @property
    def size(self) -> int:
        """Size of the payload in bytes."""
        return len(self.text.encode("utf-8"))


class ChunkerConfig(BaseModel):
    """Effective configuration for one run, merged from file and command line."""

    model_config = ConfigDict(extra="ignore")

    ignore_patterns: list[str] = Field(default_factory=list, description="Extra glob patterns to skip.")
    priority_rules: list[PriorityRule] = Field(default_factory=list, description="Static scoring rules.")
    binary_extensions: list[str] = Field(default_factory=list, description="Extra binary extensions.")
    max_size: int | None = Field(default=None, description="Chunk capacity; None means the default.")
    output_dir: Path | None = Field(default=None, description="Directory receiving chunk files.")
    stream: bool = Field(default=False, description="Write chunks to stdout.")
    token_mode: bool = Field(default=False, description="Measure sizes in whitespace tokens.")

    @field_validator("priority_rules", mode="before")
    @classmethod
    def _expand_patterns(cls, value: Any) -> Any:  # noqa: ANN401
        if not isinstance(value, list):
            return value
        rules: list[Any] = []
        for item in value:
            if isinstance(item, dict) and "patterns" in item:
                rules.extend(
                    {"pattern": str(p), "score": item.get("score", 0)} for p in item.get("patterns") or []
                )
            elif isinstance(item, dict):
                rules.append({"pattern": str(item.get("pattern", "")), "score": item.get("score", 0)})
            else:
                rules.append(item)
        return rules

    @computed_field
    @property
    def chunk_capacity(self) -> int:
        """Capacity actually used by the packer; invalid sizes fall back to the default."""
        if self.max_size is None or self.max_size <= 0:
            return DEFAULT_CHUNK_SIZE
        return self.max_size


def find_config_file(start_path: Path) -> Path | None:
    """Find the nearest configuration file by searching upward from ``start_path``.

    Args:
        start_path (Path): Starting directory.

    Returns:
        Path | None: The first file named in ``CONFIG_FILENAMES``, or None.
    """
    current = start_path.resolve()
    while True:
        for name in CONFIG_FILENAMES:
            candidate = current / name
            if candidate.is_file():
                return candidate
        if current.parent == current:
            return None
        current = current.parent


def load_config_file(path: Path) -> ChunkerConfig:
    """Load a TOML or YAML configuration file.

    Args:
        path (Path): The configuration file; the suffix selects the parser.

    Raises:
        ConfigFileError: if the file cannot be read, parsed, or does not
            describe a configuration mapping.

    Returns:
        ChunkerConfig: The parsed configuration.
    """
    logger.debug("loading_config", path=str(path))
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigFileError(path=path, message=f"Failed to read config file: {e}") from e

    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text) or {}
        else:
            data = tomlkit.parse(text).unwrap()
    except (yaml.YAMLError, TOMLKitError) as e:
        raise ConfigFileError(path=path, message=f"Failed to parse config file: {e}") from e

    if not isinstance(data, dict):
        raise ConfigFileError(path=path, message="Config file must contain a mapping")
    try:
        return ChunkerConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigFileError(path=path, message=str(e)) from e


def merge_configs(base: ChunkerConfig, overrides: dict[str, Any]) -> ChunkerConfig:
    """Merge command-line overrides into a file configuration.

    List fields are concatenated, scalar fields are replaced when the
    override is not None.

    Args:
        base (ChunkerConfig): configuration loaded from a file (or defaults)
        overrides (dict[str, Any]): values coming from the command line

    Returns:
        ChunkerConfig: a new merged configuration
    """
    update: dict[str, Any] = {}
    for key, value in overrides.items():
        if value is None:
            continue
        current = getattr(base, key)
        if isinstance(current, list):
            update[key] = [*current, *value]
        else:
            update[key] = value
    return base.model_copy(update=update)


def validate_config(config: ChunkerConfig) -> list[ConfigValidationError]:
    """Collect every problem found in ``config``.

    The output directory is created as a side effect when possible, so that
    an uncreatable directory is reported here instead of mid-run.

    Args:
        config (ChunkerConfig): the configuration to validate

    Returns:
        list[ConfigValidationError]: the problems found, empty when valid
    """
    errors: list[ConfigValidationError] = []
    for rule in config.priority_rules:
        if not MIN_RULE_SCORE <= rule.score <= MAX_RULE_SCORE:
            errors.append(
                ConfigValidationError(
                    field="priority_rules",
                    message=f"Priority score {rule.score} must be between {MIN_RULE_SCORE} and {MAX_RULE_SCORE}",
                ),
            )
        if not rule.pattern:
            errors.append(ConfigValidationError(field="priority_rules", message="Priority rule must have a pattern"))

    if config.max_size is not None and config.max_size <= 0:
        errors.append(ConfigValidationError(field="max_size", message="Max size must be a positive integer"))

    if config.output_dir is not None:
        out = config.output_dir
        if out.exists() and not out.is_dir():
            errors.append(
                ConfigValidationError(
                    field="output_dir",
                    message=f"Output path '{out}' exists but is not a directory",
                ),
            )
        else:
            try:
                out.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                errors.append(
                    ConfigValidationError(
                        field="output_dir",
                        message=f"Cannot create output directory '{out}': {e}",
                    ),
                )
    return errors


def report_config_errors(errors: Iterable[ConfigValidationError], source: str) -> None:
    """Log each validation problem as a warning; the run continues."""
    for error in errors:
        logger.warning("invalid_configuration", source=source, field=error.field, message=error.message)
