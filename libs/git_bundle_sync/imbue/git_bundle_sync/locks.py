import fcntl
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from loguru import logger

from imbue.git_bundle_sync.errors import MirrorLockTimeoutError
from imbue.git_bundle_sync.primitives import BranchName
from imbue.git_bundle_sync.primitives import RemoteUrl
from imbue.git_bundle_sync.workdir import resolve_lock_path


class MirrorLockArena:
    """Exclusive per-mirror locks, one lock file per (url, branch) key.

    flock locks belong to the open file, so two threads of this process conflict just like two
    processes sharing the same root directory do.
    """

    def __init__(self, root_dir: Path, poll_seconds: float = 0.05) -> None:
        self.root_dir = root_dir
        self.poll_seconds = poll_seconds

    @contextmanager
    def hold(self, url: RemoteUrl, branch: BranchName, timeout_seconds: float) -> Iterator[None]:
        """Hold the lock for this key for the duration of the block.

        Raises MirrorLockTimeoutError if another holder keeps it longer than timeout_seconds.
        """
        lock_file_path = resolve_lock_path(self.root_dir, url, branch)
        lock_file_path.parent.mkdir(parents=True, exist_ok=True)

        start_time = time.monotonic()
        elapsed_time = 0.0
        lock_file = open(lock_file_path, "w")
        try:
            while elapsed_time <= timeout_seconds:
                try:
                    fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                    logger.trace("Mirror lock acquired after {:.2f}s", time.monotonic() - start_time)
                    break
                except BlockingIOError:
                    time.sleep(self.poll_seconds)
                    elapsed_time = time.monotonic() - start_time
            else:
                raise MirrorLockTimeoutError(f"Failed to acquire mirror lock within {timeout_seconds}s")

            try:
                yield
            finally:
                logger.trace("Releasing mirror lock")
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            lock_file.close()
