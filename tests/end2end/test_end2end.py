import shutil
import subprocess  # noqa: S404
from pathlib import Path

import pytest

from repo_chunker import cli


def git(repo: Path, *args: str, env_date: str | None = None) -> None:
    env = {
        "GIT_AUTHOR_NAME": "Test",
        "GIT_AUTHOR_EMAIL": "test@example.com",
        "GIT_COMMITTER_NAME": "Test",
        "GIT_COMMITTER_EMAIL": "test@example.com",
        "PATH": "/usr/bin:/bin:/usr/local/bin",
        "HOME": str(repo),
    }
    if env_date:
        env["GIT_AUTHOR_DATE"] = env_date
        env["GIT_COMMITTER_DATE"] = env_date
    subprocess.run(["git", *args], cwd=repo, check=True, capture_output=True, env=env)  # noqa: S603, S607


@pytest.mark.end2end
def test_end_to_end_stream_export(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = tmp_path
    (repo / "src").mkdir()
    (repo / "src" / "app.py").write_text("print('app')\n", encoding="utf-8")
    (repo / "notes.txt").write_text("notes", encoding="utf-8")
    (repo / "repo-chunker.toml").write_text(
        '[[priority_rules]]\nscore = 500\npatterns = ["^src/"]\n',
        encoding="utf-8",
    )

    exit_code = cli.main([str(repo), "--stream", "--no-git"])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert out.startswith("chunk 0\n")
    assert out.index(">>>> notes.txt") < out.index(">>>> src/app.py")
    assert "print('app')\n" in out


@pytest.mark.end2end
def test_end_to_end_file_export_with_forced_split(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = tmp_path / "repo"
    repo.mkdir()
    (repo / "small.txt").write_text("tiny", encoding="utf-8")
    (repo / "big.txt").write_text("x" * 2500, encoding="utf-8")

    exit_code = cli.main([str(repo), "--max-size", "1KB", "--no-git"])

    assert exit_code == 0
    final = Path(capsys.readouterr().out.strip())
    assert final.parent == repo / "repo-chunker-output"
    combined = final.read_text(encoding="utf-8")
    assert ">>>> big.txt:part 2\n" in combined
    assert (final.parent / "small.txt.txt").exists()
    assert (final.parent / "big.txt.txt").exists()


@pytest.mark.end2end
@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_end_to_end_recent_commits_come_last(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = tmp_path
    git(repo, "init", "-q")
    (repo / "recent.txt").write_text("recent", encoding="utf-8")
    (repo / "stale.txt").write_text("stale", encoding="utf-8")
    git(repo, "add", "stale.txt")
    git(repo, "commit", "-q", "-m", "stale", env_date="2020-01-01T00:00:00 +0000")
    git(repo, "add", "recent.txt")
    git(repo, "commit", "-q", "-m", "recent", env_date="2024-01-01T00:00:00 +0000")

    exit_code = cli.main([str(repo), "--stream"])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert out.index(">>>> stale.txt") < out.index(">>>> recent.txt")


@pytest.mark.end2end
@pytest.mark.skipif(shutil.which("git") is None, reason="git is not installed")
def test_end_to_end_includes_uncommitted_files(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    repo = tmp_path
    git(repo, "init", "-q")
    (repo / "tracked.txt").write_text("tracked", encoding="utf-8")
    git(repo, "add", "tracked.txt")
    git(repo, "commit", "-q", "-m", "tracked")
    (repo / "new_work.txt").write_text("new work", encoding="utf-8")
    (repo / ".gitignore").write_text("ignored.txt\n", encoding="utf-8")
    (repo / "ignored.txt").write_text("ignored", encoding="utf-8")

    exit_code = cli.main([str(repo), "--stream"])

    assert exit_code == 0
    out = capsys.readouterr().out
    assert ">>>> tracked.txt\n" in out
    assert ">>>> new_work.txt\nnew work\n" in out
    assert ">>>> ignored.txt" not in out
