from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from repo_chunker import __version__, cli
from repo_chunker.config import DEFAULT_OUTPUT_DIRNAME, PriorityRule
from repo_chunker.settings import Settings

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


@pytest.mark.unit
def test_parse_args_parses_sizes_and_flags(tmp_path: Path) -> None:
    settings = cli.parse_args(
        [
            str(tmp_path),
            "--max-size",
            "2KB",
            "--stream",
            "--ignore",
            "*.lock",
            "--ignore",
            "dist/",
            "--binary-ext",
            "dat",
        ],
    )

    assert settings.input_dirs == [tmp_path]
    assert settings.max_size == 2048
    assert settings.stream is True
    assert settings.tokens is False
    assert settings.ignore_patterns == ["*.lock", "dist/"]
    assert settings.binary_extensions == ["dat"]


@pytest.mark.unit
def test_parse_args_token_sizes() -> None:
    settings = cli.parse_args(["--tokens", "--max-size", "128K"])

    assert settings.tokens is True
    assert settings.max_size == 128_000


@pytest.mark.unit
def test_parse_args_rejects_invalid_size(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--max-size", "lots"])

    assert exc_info.value.code == 2
    assert "Invalid byte size" in capsys.readouterr().err


@pytest.mark.unit
def test_parse_args_version_flag(capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as exc_info:
        cli.parse_args(["--version"])

    assert exc_info.value.code == 0
    captured = capsys.readouterr()
    assert __version__ in captured.out


@pytest.mark.unit
def test_build_config_merges_file_and_cli(tmp_path: Path) -> None:
    (tmp_path / "repo-chunker.toml").write_text(
        'ignore_patterns = ["*.lock"]\n\n[[priority_rules]]\nscore = 7\npattern = "src"\n',
        encoding="utf-8",
    )
    settings = Settings(input_dirs=[tmp_path], max_size=100, tokens=True, ignore_patterns=["tmp/"])

    config = cli.build_config(settings)

    assert config.priority_rules == [PriorityRule(pattern="src", score=7)]
    assert config.ignore_patterns == ["*.lock", "tmp/"]
    assert config.max_size == 100
    assert config.token_mode is True
    assert config.output_dir == tmp_path / DEFAULT_OUTPUT_DIRNAME


@pytest.mark.unit
def test_build_config_ignores_broken_config_file(tmp_path: Path) -> None:
    broken = tmp_path / "custom.toml"
    broken.write_text("[[[", encoding="utf-8")
    settings = Settings(input_dirs=[tmp_path], config_file=broken, stream=True)

    config = cli.build_config(settings)

    assert config.priority_rules == []
    assert config.stream is True
    assert config.output_dir is None


@pytest.mark.unit
def test_main_streams_chunks_to_stdout(
    tmp_path: Path,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    (tmp_path / "a.txt").write_text("alpha", encoding="utf-8")
    mocker.patch.object(cli, "get_recent_commit_times", return_value=None)

    exit_code = cli.main([str(tmp_path), "--stream", "--no-git"])

    assert exit_code == 0
    assert capsys.readouterr().out == "chunk 0\n>>>> a.txt\nalpha\n"


@pytest.mark.unit
def test_main_no_git_skips_history(tmp_path: Path, mocker: MockerFixture) -> None:
    (tmp_path / "a.txt").write_text("alpha", encoding="utf-8")
    history = mocker.patch.object(cli, "get_recent_commit_times")

    cli.main([str(tmp_path), "--stream", "--no-git"])

    history.assert_not_called()


@pytest.mark.unit
def test_main_writes_chunk_files_and_combined_output(
    tmp_path: Path,
    mocker: MockerFixture,
    capsys: pytest.CaptureFixture[str],
) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "a.txt").write_text("alpha", encoding="utf-8")
    out = tmp_path / "out"
    mocker.patch.object(cli, "compute_checksum", return_value="feedfacecafebeef")

    exit_code = cli.main([str(repo), "--output-dir", str(out), "--no-git"])

    assert exit_code == 0
    final = out / "repo-chunker-output-feedfacecafebeef.txt"
    assert capsys.readouterr().out.strip() == str(final)
    assert final.read_text(encoding="utf-8") == "chunk 0\n>>>> a.txt\nalpha\n"
    assert (out / "a.txt.txt").read_text(encoding="utf-8") == "chunk 0\n>>>> a.txt\nalpha\n"
