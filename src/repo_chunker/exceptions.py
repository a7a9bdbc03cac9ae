from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class ChunkerError(Exception):
    """Base exception for errors in the repo_chunker package."""


@dataclass(frozen=True)
class GitCommandError(ChunkerError):
    """Raised when a git command fails."""

    command: str
    returncode: int
    stderr: str


@dataclass(frozen=True)
class NotAGitRepositoryError(ChunkerError):
    """Raised when the specified directory is not a Git repository."""

    folder: Path
    message: str = "The specified directory is not a Git repository."


@dataclass(frozen=True)
class ConfigFileError(ChunkerError):
    """Raised when a configuration file cannot be read or parsed."""

    path: Path
    message: str


@dataclass(frozen=True)
class ConfigValidationError:
    """A single problem found while validating a configuration.

    These are collected and reported as warnings, never raised.
    """

    field: str
    message: str

    def __str__(self) -> str:
        return f"{self.field}: {self.message}"
