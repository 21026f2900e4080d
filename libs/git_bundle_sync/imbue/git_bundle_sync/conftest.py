from pathlib import Path

import pytest

from imbue.git_bundle_sync.context import SyncContext
from imbue.git_bundle_sync.testing import RemoteWithHistory
from imbue.git_bundle_sync.testing import create_bare_remote


@pytest.fixture(autouse=True)
def _isolated_git_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep git away from the real home directory and system config."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    monkeypatch.delenv("GIT_DIR", raising=False)
    monkeypatch.delenv("GIT_WORK_TREE", raising=False)


@pytest.fixture
def root_dir(tmp_path: Path) -> Path:
    """Directory that holds mirrors, locks and scratch files."""
    return tmp_path / "sync-root"


@pytest.fixture
def sync_context(root_dir: Path) -> SyncContext:
    return SyncContext.build(root_dir=root_dir, command_timeout_seconds=60.0, lock_timeout_seconds=30.0)


@pytest.fixture
def remotes_dir(tmp_path: Path) -> Path:
    path = tmp_path / "remotes"
    path.mkdir()
    return path


@pytest.fixture
def source_remote(remotes_dir: Path) -> RemoteWithHistory:
    """A remote with no commits yet; tests add the history they need."""
    return RemoteWithHistory(remotes_dir, "source")


@pytest.fixture
def empty_remote_path(remotes_dir: Path) -> Path:
    """A freshly created bare remote without any commits."""
    return create_bare_remote(remotes_dir / "sink.git")
