from threading import Event
from typing import BinaryIO

from loguru import logger

from imbue.git_bundle_sync.bundle import BundleCodec
from imbue.git_bundle_sync.context import SyncContext
from imbue.git_bundle_sync.data_types import RemoteRepoRef
from imbue.git_bundle_sync.data_types import SyncOutcome
from imbue.git_bundle_sync.errors import GitCommandError
from imbue.git_bundle_sync.errors import MissingPrerequisiteCommitsError
from imbue.git_bundle_sync.errors import RemoteAuthenticationError
from imbue.git_bundle_sync.errors import RemoteNotFoundError
from imbue.git_bundle_sync.orchestration import build_internal_error
from imbue.git_bundle_sync.orchestration import run_sync_operation
from imbue.git_bundle_sync.orchestration import sync_mirror_step
from imbue.git_bundle_sync.primitives import SyncOperation
from imbue.git_bundle_sync.primitives import SyncOutcomeKind
from imbue.git_bundle_sync.utils.logging import log_span


def push_bundle(
    context: SyncContext,
    repo: RemoteRepoRef,
    payload: bytes | BinaryIO,
    cancel_event: Event | None = None,
) -> SyncOutcome:
    """Apply a received bundle to the mirror of repo and push the result to the remote.

    Steps: sync the mirror, apply the bundle (fast-forward only), push the branch. Pushing a
    bundle that was already applied succeeds without changing anything.
    """
    return run_sync_operation(
        SyncOperation.PUSH,
        repo,
        context,
        lambda: _push_while_locked(context, repo, payload, cancel_event),
    )


def _push_while_locked(
    context: SyncContext,
    repo: RemoteRepoRef,
    payload: bytes | BinaryIO,
    cancel_event: Event | None,
) -> SyncOutcome:
    mirror = context.open_mirror(repo, cancel_event)
    sync_outcome = sync_mirror_step(mirror)
    if sync_outcome is not None:
        return sync_outcome

    codec = BundleCodec(mirror)
    with log_span("Applying bundle"):
        try:
            codec.apply_bundle(payload)
        except MissingPrerequisiteCommitsError as e:
            logger.info("Bundle needs commits the mirror does not have: {}", e.stderr.strip())
            return SyncOutcome(
                kind=SyncOutcomeKind.CONFLICT,
                message="bundle requires commits that the repository does not have",
            )
        except GitCommandError as e:
            return build_internal_error("failed to apply bundle", e, mirror)

    with log_span("Pushing to remote"):
        try:
            mirror.push_to_remote()
        except RemoteAuthenticationError as e:
            logger.warning("Remote rejected credentials on push: {}", e.describe_for_operator())
            mirror.mark_suspect()
            return SyncOutcome(kind=SyncOutcomeKind.AUTH_FAILED, message="remote rejected the access token")
        except RemoteNotFoundError:
            mirror.mark_suspect()
            return SyncOutcome(kind=SyncOutcomeKind.NOT_FOUND, message="repository not found")
        except GitCommandError as e:
            return build_internal_error("failed to push to remote", e, mirror)

    return SyncOutcome(kind=SyncOutcomeKind.SUCCESS, message="bundle pushed")
