import hashlib
import secrets
import shutil
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Final

from loguru import logger

from imbue.git_bundle_sync.primitives import BranchName
from imbue.git_bundle_sync.primitives import RemoteUrl
from imbue.git_bundle_sync.utils.pure import pure

MIRRORS_DIR_NAME: Final[str] = "mirrors"
SCRATCH_DIR_NAME: Final[str] = "scratch"
LOCKS_DIR_NAME: Final[str] = "locks"
SCRATCH_FILE_NAME: Final[str] = "bundle"


@pure
def compute_workdir_key(url: RemoteUrl, branch: BranchName) -> str:
    """Filesystem-safe key for a (url, branch) pair.

    The NUL separator cannot occur in either value, so distinct pairs never share a key.
    """
    return hashlib.sha256(f"{url}\x00{branch}".encode("utf-8")).hexdigest()


@pure
def resolve_workdir(root_dir: Path, url: RemoteUrl, branch: BranchName) -> Path:
    """Directory of the local mirror for a (url, branch) pair."""
    return root_dir / MIRRORS_DIR_NAME / compute_workdir_key(url, branch)


@pure
def resolve_lock_path(root_dir: Path, url: RemoteUrl, branch: BranchName) -> Path:
    return root_dir / LOCKS_DIR_NAME / f"{compute_workdir_key(url, branch)}.lock"


@contextmanager
def scratch_file(root_dir: Path) -> Iterator[Path]:
    """Yield a path for a temporary file in a fresh scratch directory under root_dir.

    The directory and everything in it are removed when the block exits, however it exits.
    """
    scratch_dir = root_dir / SCRATCH_DIR_NAME / secrets.token_hex(8)
    scratch_dir.mkdir(parents=True)
    try:
        yield scratch_dir / SCRATCH_FILE_NAME
    finally:
        logger.trace("Removing scratch directory {}", scratch_dir)
        shutil.rmtree(scratch_dir, ignore_errors=True)
