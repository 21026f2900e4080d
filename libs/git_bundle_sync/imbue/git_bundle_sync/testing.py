import os
import subprocess
from datetime import datetime
from datetime import timedelta
from datetime import timezone
from pathlib import Path

from imbue.git_bundle_sync.data_types import RemoteRepoRef
from imbue.git_bundle_sync.primitives import CommitId

TEST_BRANCH = "main"


def run_git_command(cwd: Path, *args: str, env: dict[str, str] | None = None) -> subprocess.CompletedProcess[str]:
    """Run a git command in the given directory.

    Raises an exception if the command fails.
    """
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        capture_output=True,
        text=True,
        env={**os.environ, **env} if env else None,
    )
    if result.returncode != 0:
        raise AssertionError(f"git {' '.join(args)} failed: {result.stderr}")
    return result


def init_work_repo(path: Path, branch: str = TEST_BRANCH) -> None:
    """Initialize a non-bare repository with a local identity and no commits."""
    path.mkdir(parents=True, exist_ok=True)
    run_git_command(path, "init", "-b", branch)
    run_git_command(path, "config", "user.email", "test@example.com")
    run_git_command(path, "config", "user.name", "Test User")


def commit_file(
    repo_path: Path,
    file_name: str,
    content: str,
    age: timedelta = timedelta(0),
) -> CommitId:
    """Write and commit a file, dating the commit `age` in the past. Returns the new commit id."""
    (repo_path / file_name).write_text(content)
    run_git_command(repo_path, "add", file_name)
    commit_timestamp = int((datetime.now(timezone.utc) - age).timestamp())
    commit_date = f"{commit_timestamp} +0000"
    run_git_command(
        repo_path,
        "commit",
        "-m",
        f"Update {file_name}",
        env={"GIT_AUTHOR_DATE": commit_date, "GIT_COMMITTER_DATE": commit_date},
    )
    return get_branch_tip(repo_path)


def get_branch_tip(repo_path: Path, branch: str = TEST_BRANCH) -> CommitId:
    result = run_git_command(repo_path, "rev-parse", f"refs/heads/{branch}")
    return CommitId(result.stdout.strip())


def create_bare_remote(path: Path, branch: str = TEST_BRANCH) -> Path:
    """Create an empty bare repository standing in for the remote server."""
    path.mkdir(parents=True)
    run_git_command(path, "init", "--bare", "-b", branch)
    return path


class RemoteWithHistory:
    """A bare remote plus the working repository used to add commits to it."""

    def __init__(self, root: Path, name: str) -> None:
        self.bare_path = create_bare_remote(root / f"{name}.git")
        self.work_path = root / f"{name}-work"
        init_work_repo(self.work_path)
        run_git_command(self.work_path, "remote", "add", "origin", str(self.bare_path))

    @property
    def url(self) -> str:
        return str(self.bare_path)

    def add_commit(self, file_name: str, content: str, age: timedelta = timedelta(0)) -> CommitId:
        """Commit in the working repository and push it to the bare remote."""
        commit_id = commit_file(self.work_path, file_name, content, age)
        run_git_command(self.work_path, "push", "origin", TEST_BRANCH)
        return commit_id

    def get_tip(self) -> CommitId:
        return get_branch_tip(self.bare_path)


def make_repo_ref(url: str | Path, branch: str = TEST_BRANCH, token: str | None = None) -> RemoteRepoRef:
    return RemoteRepoRef.build(str(url), branch, token)
