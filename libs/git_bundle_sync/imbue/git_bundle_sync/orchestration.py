"""Pieces shared by the push and pull orchestrators."""

import time
from collections.abc import Callable

from loguru import logger

from imbue.git_bundle_sync.context import SyncContext
from imbue.git_bundle_sync.data_types import RemoteRepoRef
from imbue.git_bundle_sync.data_types import SyncOutcome
from imbue.git_bundle_sync.errors import GitBundleSyncError
from imbue.git_bundle_sync.errors import GitCommandError
from imbue.git_bundle_sync.errors import MirrorLockTimeoutError
from imbue.git_bundle_sync.errors import RemoteAuthenticationError
from imbue.git_bundle_sync.mirror import LocalMirror
from imbue.git_bundle_sync.primitives import MirrorSyncStatus
from imbue.git_bundle_sync.primitives import SyncOperation
from imbue.git_bundle_sync.primitives import SyncOutcomeKind
from imbue.git_bundle_sync.utils.logging import log_span


def run_sync_operation(
    operation: SyncOperation,
    repo: RemoteRepoRef,
    context: SyncContext,
    steps: Callable[[], SyncOutcome],
) -> SyncOutcome:
    """Run an orchestrator's steps while holding the mirror lock, recording metrics for the outcome."""
    context.metrics.record_attempt(operation, repo.url)
    start_time = time.monotonic()
    with log_span("Handling {} of branch {}", operation.lower(), repo.branch, url=str(repo.url), branch=str(repo.branch)):
        try:
            with context.lock_arena.hold(repo.url, repo.branch, context.lock_timeout_seconds):
                outcome = steps()
        except MirrorLockTimeoutError as e:
            logger.warning("Rejecting {}: {}", operation.lower(), e)
            outcome = SyncOutcome(kind=SyncOutcomeKind.INTERNAL_ERROR, message="repository is busy")
        logger.info("{} of {} finished: {} ({})", operation.lower(), repo.branch, outcome.kind, outcome.message)
    context.metrics.record_outcome(operation, repo.url, outcome, time.monotonic() - start_time)
    return outcome


def build_internal_error(
    message: str,
    error: GitBundleSyncError,
    mirror: LocalMirror | None = None,
) -> SyncOutcome:
    """Log the full diagnostic for operators and return a generic outcome for the caller.

    Passing the mirror marks it suspect so the next request rebuilds it.
    """
    if isinstance(error, GitCommandError):
        logger.error("{}: {}", message, error.describe_for_operator())
    else:
        logger.error("{}: {}", message, error)
    if mirror is not None:
        mirror.mark_suspect()
    return SyncOutcome(kind=SyncOutcomeKind.INTERNAL_ERROR, message=message)


def sync_mirror_step(mirror: LocalMirror) -> SyncOutcome | None:
    """Bring the mirror up to date. Returns the terminal outcome if the operation cannot continue."""
    with log_span("Syncing mirror"):
        try:
            status = mirror.sync_to_local()
        except RemoteAuthenticationError as e:
            logger.warning("Remote rejected credentials: {}", e.describe_for_operator())
            return SyncOutcome(kind=SyncOutcomeKind.AUTH_FAILED, message="remote rejected the access token")
        except GitCommandError as e:
            return build_internal_error("failed to sync repository", e, mirror)
    if status == MirrorSyncStatus.REMOTE_NOT_FOUND:
        return SyncOutcome(kind=SyncOutcomeKind.NOT_FOUND, message="repository not found")
    return None
