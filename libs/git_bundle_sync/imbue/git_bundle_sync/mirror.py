import shutil
from pathlib import Path
from threading import Event
from typing import Final

from loguru import logger

from imbue.git_bundle_sync.classifier import OutcomeClassifier
from imbue.git_bundle_sync.data_types import RemoteRepoRef
from imbue.git_bundle_sync.errors import GitCommandError
from imbue.git_bundle_sync.errors import RemoteNotFoundError
from imbue.git_bundle_sync.errors import RemoteRefMissingError
from imbue.git_bundle_sync.git_runner import GitCommandResult
from imbue.git_bundle_sync.git_runner import GitCommandRunner
from imbue.git_bundle_sync.primitives import CommitId
from imbue.git_bundle_sync.primitives import MirrorSyncStatus
from imbue.git_bundle_sync.workdir import resolve_workdir

REMOTE_NAME: Final[str] = "origin"

_SUSPECT_SUFFIX: Final[str] = ".suspect"


class LocalMirror:
    """The local repository kept on behalf of one (remote URL, branch) pair.

    A mirror is cached state: it is created by the first sync, refreshed by every later one, and
    thrown away and rebuilt whenever it has been marked suspect.
    """

    def __init__(
        self,
        root_dir: Path,
        repo: RemoteRepoRef,
        runner: GitCommandRunner,
        classifier: OutcomeClassifier,
        cancel_event: Event | None = None,
    ) -> None:
        self.root_dir = root_dir
        self.repo = repo
        self.runner = runner
        self.classifier = classifier
        self.cancel_event = cancel_event
        self.workdir = resolve_workdir(root_dir, repo.url, repo.branch)

    @property
    def suspect_marker_path(self) -> Path:
        return self.workdir.with_name(self.workdir.name + _SUSPECT_SUFFIX)

    def run_git(
        self,
        *args: str,
        cwd: Path | None = None,
        stdin: bytes | None = None,
        is_checked: bool = True,
    ) -> GitCommandResult:
        """Run git for this mirror (in the mirror directory unless cwd is given), classifying failures."""
        try:
            return self.runner.run(
                args,
                cwd=cwd if cwd is not None else self.workdir,
                stdin=stdin,
                access_token=self.repo.access_token,
                cancel_event=self.cancel_event,
                is_checked=is_checked,
            )
        except GitCommandError as e:
            typed_error = self.classifier.to_typed_error(e)
            if typed_error is e:
                raise
            raise typed_error from e

    def exists_locally(self) -> bool:
        """True iff the mirror directory is itself the top level of a git repository."""
        if not self.workdir.is_dir():
            return False
        result = self.run_git("rev-parse", "--show-toplevel", is_checked=False)
        if result.exit_code != 0:
            return False
        return Path(result.stdout_text.strip()).resolve() == self.workdir.resolve()

    def is_suspect(self) -> bool:
        return self.suspect_marker_path.exists()

    def mark_suspect(self) -> None:
        """Force the next sync for this key to rebuild the mirror from scratch."""
        logger.warning("Marking mirror {} as suspect", self.workdir)
        self.suspect_marker_path.parent.mkdir(parents=True, exist_ok=True)
        self.suspect_marker_path.touch()

    def discard(self) -> None:
        """Remove the mirror directory and any suspect marker."""
        if self.workdir.exists():
            logger.debug("Removing mirror directory {}", self.workdir)
            shutil.rmtree(self.workdir)
        self.suspect_marker_path.unlink(missing_ok=True)

    def sync_to_local(self) -> MirrorSyncStatus:
        """Bring the mirror up to date with the remote branch, creating it if needed.

        Returns REMOTE_NOT_FOUND when the remote repository does not exist. Raises
        RemoteAuthenticationError when the remote rejects the credentials and GitCommandError for
        anything else.
        """
        if self.is_suspect():
            logger.info("Rebuilding suspect mirror for {}", self.repo.url)
            self.discard()

        if self.exists_locally():
            try:
                self._pull_from_remote()
                return MirrorSyncStatus.READY
            except RemoteNotFoundError:
                return MirrorSyncStatus.REMOTE_NOT_FOUND
            except RemoteRefMissingError:
                if not self.has_local_commits():
                    # orphan mirror and the remote still has no such branch
                    return MirrorSyncStatus.READY
                logger.info("Remote no longer has branch {}, rebuilding mirror", self.repo.branch)
                self.discard()
        elif self.workdir.exists():
            logger.warning("Mirror directory {} is not a repository, removing it", self.workdir)
            self.discard()

        return self._create()

    def _pull_from_remote(self) -> None:
        result = self.run_git("pull", "--ff-only", REMOTE_NAME, self.repo.branch)
        logger.trace("Refreshed mirror: {}", result.stdout_text.strip())

    def _create(self) -> MirrorSyncStatus:
        self.root_dir.mkdir(parents=True, exist_ok=True)
        try:
            remote_head = self.get_remote_head()
        except RemoteNotFoundError:
            return MirrorSyncStatus.REMOTE_NOT_FOUND

        self.workdir.parent.mkdir(parents=True, exist_ok=True)
        try:
            if remote_head is None:
                self._initialize_orphan_branch()
            else:
                logger.debug("Cloning branch {} at {}", self.repo.branch, remote_head)
                self.run_git(
                    "clone",
                    "--quiet",
                    "--branch",
                    self.repo.branch,
                    "--single-branch",
                    "--",
                    self.repo.url,
                    str(self.workdir),
                    cwd=self.root_dir,
                )
        except GitCommandError:
            self.discard()
            raise
        return MirrorSyncStatus.READY

    def get_remote_head(self) -> CommitId | None:
        """Commit the remote branch points at, or None if the remote has no such branch."""
        result = self.run_git("ls-remote", self.repo.url, self.repo.branch.ref_name, cwd=self.root_dir)
        for line in result.stdout_text.splitlines():
            parts = line.split()
            if len(parts) == 2 and parts[1] == self.repo.branch.ref_name:
                return CommitId(parts[0])
        return None

    def _initialize_orphan_branch(self) -> None:
        # HEAD has to point at the branch before any commit exists; the checkout happens when the
        # first bundle is applied.
        branch = self.repo.branch
        logger.debug("Remote has no branch {}, initializing an empty mirror", branch)
        self.workdir.mkdir(parents=True)
        self.run_git("init", "--quiet")
        self.run_git("remote", "add", REMOTE_NAME, self.repo.url)
        self.run_git("config", f"branch.{branch}.remote", REMOTE_NAME)
        self.run_git("config", f"branch.{branch}.merge", branch.ref_name)
        self.run_git("symbolic-ref", "HEAD", branch.ref_name)

    def has_local_branch(self) -> bool:
        """True if the branch ref exists, or the branch is configured but has no commits yet."""
        ref_result = self.run_git("rev-parse", "--verify", "--quiet", self.repo.branch.ref_name, is_checked=False)
        if ref_result.exit_code == 0:
            return True
        config_result = self.run_git("config", "--get", f"branch.{self.repo.branch}.merge", is_checked=False)
        return config_result.exit_code == 0

    def has_local_commits(self) -> bool:
        return self.get_local_head() is not None

    def get_local_head(self) -> CommitId | None:
        result = self.run_git(
            "rev-parse",
            "--verify",
            "--quiet",
            f"{self.repo.branch.ref_name}^{{commit}}",
            is_checked=False,
        )
        if result.exit_code != 0:
            return None
        return CommitId(result.stdout_text.strip())

    def push_to_remote(self) -> None:
        """Push the tracked branch to the remote. Nothing to push is not an error."""
        ref_name = self.repo.branch.ref_name
        self.run_git("push", "--quiet", REMOTE_NAME, f"{ref_name}:{ref_name}")
