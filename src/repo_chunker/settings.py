from __future__ import annotations

import os
from pathlib import Path

from dotenv import dotenv_values, find_dotenv
from pydantic import BaseModel, ConfigDict, Field

ENV_FILE = find_dotenv(usecwd=True)
ENV_PREFIX = "REPO_CHUNKER_"


def env_default(name: str) -> str:
    """Read ``REPO_CHUNKER_<name>`` from the environment, then from the ``.env`` file."""
    key = ENV_PREFIX + name
    if key in os.environ:
        return os.environ[key]
    if ENV_FILE:
        return dotenv_values(ENV_FILE).get(key) or ""
    return ""


class Settings(BaseModel):
    """Command-line settings for the repo_chunker CLI."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    input_dirs: list[Path] = Field(default_factory=lambda: [Path.cwd()], description="Directories to serialize.")
    max_size: int | None = Field(default=None, description="Chunk capacity in bytes or tokens.")
    tokens: bool = Field(default=False, description="Measure sizes in whitespace tokens.")
    stream: bool = Field(default=False, description="Write chunks to stdout.")
    output_dir: Path | None = Field(default=None, description="Directory receiving chunk files.")
    config_file: Path | None = Field(default=None, description="Explicit configuration file.")
    ignore_patterns: list[str] = Field(default_factory=list, description="Extra ignore globs.")
    binary_extensions: list[str] = Field(default_factory=list, description="Extra binary extensions.")
    no_git: bool = Field(default=False, description="Do not use git for discovery or recency.")
    debug: bool = Field(default=False, description="Enable debug logging.")
    log_file: str = Field(default="", description="Log file path.")
