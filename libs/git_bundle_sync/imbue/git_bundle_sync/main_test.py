"""Tests for the git-bundle-sync command line."""

from datetime import timedelta
from pathlib import Path

import pytest
from click.testing import CliRunner

from imbue.git_bundle_sync.config import SyncServerConfig
from imbue.git_bundle_sync.main import cli
from imbue.git_bundle_sync.primitives import AccessTokenPolicy
from imbue.git_bundle_sync.testing import RemoteWithHistory
from imbue.git_bundle_sync.testing import get_branch_tip


def test_help_lists_commands() -> None:
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command_name in ("serve", "pull", "push"):
        assert command_name in result.output


def test_pull_then_push(tmp_path: Path, root_dir: Path, source_remote: RemoteWithHistory, empty_remote_path: Path) -> None:
    commit_id = source_remote.add_commit("a.txt", "a")
    bundle_path = tmp_path / "out.bundle"
    runner = CliRunner()

    pull_result = runner.invoke(
        cli,
        [
            "-q",
            "pull",
            "--root-dir",
            str(root_dir),
            "--repository",
            source_remote.url,
            "--branch",
            "main",
            "--output",
            str(bundle_path),
        ],
    )
    assert pull_result.exit_code == 0, pull_result.output
    assert f"head: {commit_id}" in pull_result.output
    assert "partial: false" in pull_result.output
    assert bundle_path.read_bytes().startswith(b"# v")

    push_result = runner.invoke(
        cli,
        [
            "-q",
            "push",
            "--root-dir",
            str(root_dir),
            "--repository",
            str(empty_remote_path),
            "--branch",
            "main",
            "--input",
            str(bundle_path),
        ],
    )
    assert push_result.exit_code == 0, push_result.output
    assert get_branch_tip(empty_remote_path) == commit_id


def test_pull_with_nothing_new(tmp_path: Path, root_dir: Path, source_remote: RemoteWithHistory) -> None:
    source_remote.add_commit("a.txt", "a", age=timedelta(hours=2))
    bundle_path = tmp_path / "out.bundle"

    result = CliRunner().invoke(
        cli,
        [
            "-q",
            "pull",
            "--root-dir",
            str(root_dir),
            "--repository",
            source_remote.url,
            "--branch",
            "main",
            "--since",
            "1h",
            "--output",
            str(bundle_path),
        ],
    )

    assert result.exit_code == 0, result.output
    assert "Nothing to export: no new commits since" in result.output
    assert not bundle_path.exists()


def test_pull_rejects_bad_duration(tmp_path: Path, root_dir: Path) -> None:
    result = CliRunner().invoke(
        cli,
        [
            "-q",
            "pull",
            "--root-dir",
            str(root_dir),
            "--repository",
            "/srv/repo.git",
            "--branch",
            "main",
            "--since",
            "soon",
            "--output",
            str(tmp_path / "out.bundle"),
        ],
    )
    assert result.exit_code == 1
    assert "Invalid duration" in result.output


def test_pull_of_missing_repository_fails(tmp_path: Path, root_dir: Path) -> None:
    result = CliRunner().invoke(
        cli,
        [
            "-q",
            "pull",
            "--root-dir",
            str(root_dir),
            "--repository",
            str(tmp_path / "nowhere.git"),
            "--branch",
            "main",
            "--output",
            str(tmp_path / "out.bundle"),
        ],
    )
    assert result.exit_code == 1
    assert "not_found: repository not found" in result.output


def test_push_requires_input(root_dir: Path, empty_remote_path: Path) -> None:
    result = CliRunner().invoke(
        cli,
        ["push", "--root-dir", str(root_dir), "--repository", str(empty_remote_path), "--branch", "main"],
    )
    assert result.exit_code == 2
    assert "--input" in result.output


def test_serve_builds_config_from_options_and_environment(
    root_dir: Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    started: list[SyncServerConfig] = []
    monkeypatch.setattr("imbue.git_bundle_sync.cli.serve.start_sync_server", started.append)
    monkeypatch.setenv("GIT_SYNC_PORT", "9999")

    result = CliRunner().invoke(
        cli,
        ["--log-level", "debug", "serve", "--root-dir", str(root_dir), "--pull-token-policy", "optional"],
    )

    assert result.exit_code == 0, result.output
    config = started[0]
    assert config.port == 9999
    assert config.root_dir == root_dir
    assert config.pull_token_policy == AccessTokenPolicy.OPTIONAL
    assert config.push_token_policy == AccessTokenPolicy.REQUIRED
    assert config.log_level == "DEBUG"


def test_serve_rejects_half_tls_config(root_dir: Path, tmp_path: Path) -> None:
    result = CliRunner().invoke(cli, ["serve", "--root-dir", str(root_dir), "--cert-file", str(tmp_path / "cert.pem")])
    assert result.exit_code == 2
    assert "cert_file and key_file" in result.output
