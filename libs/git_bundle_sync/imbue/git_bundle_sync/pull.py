import hashlib
from collections.abc import Callable
from datetime import datetime
from datetime import timezone
from threading import Event

from loguru import logger

from imbue.git_bundle_sync.bundle import BundleCodec
from imbue.git_bundle_sync.bundle import get_single_head
from imbue.git_bundle_sync.context import SyncContext
from imbue.git_bundle_sync.data_types import BundleOptions
from imbue.git_bundle_sync.data_types import PulledBundle
from imbue.git_bundle_sync.data_types import RemoteRepoRef
from imbue.git_bundle_sync.data_types import SyncOutcome
from imbue.git_bundle_sync.errors import BundleError
from imbue.git_bundle_sync.errors import EmptyBundleError
from imbue.git_bundle_sync.errors import GitCommandError
from imbue.git_bundle_sync.mirror import LocalMirror
from imbue.git_bundle_sync.orchestration import build_internal_error
from imbue.git_bundle_sync.orchestration import run_sync_operation
from imbue.git_bundle_sync.orchestration import sync_mirror_step
from imbue.git_bundle_sync.primitives import BundleFilterKind
from imbue.git_bundle_sync.primitives import CommitId
from imbue.git_bundle_sync.primitives import IdempotencyHash
from imbue.git_bundle_sync.primitives import SyncOperation
from imbue.git_bundle_sync.primitives import SyncOutcomeKind
from imbue.git_bundle_sync.utils.logging import log_span
from imbue.git_bundle_sync.utils.pure import pure


@pure
def compute_idempotency_hash(
    commit_id: CommitId,
    filter_kind: BundleFilterKind,
    filter_value: str,
) -> IdempotencyHash:
    digest = hashlib.sha256(f"{commit_id}|{filter_kind}|{filter_value}".encode("utf-8")).hexdigest()
    return IdempotencyHash(digest)


@pure
def compute_bundle_hash(commit_id: CommitId, options: BundleOptions, is_complete: bool) -> IdempotencyHash:
    """Hash identifying the logical content of a pulled bundle.

    A filtered bundle that still records the complete history has the same content as an
    unfiltered one, so it gets the same hash.
    """
    if is_complete:
        return compute_idempotency_hash(commit_id, BundleFilterKind.NONE, "")
    return compute_idempotency_hash(commit_id, options.filter_kind, options.filter_value)


def pull_bundle(
    context: SyncContext,
    repo: RemoteRepoRef,
    options: BundleOptions,
    cancel_event: Event | None = None,
    codec_factory: Callable[[LocalMirror], BundleCodec] = BundleCodec,
) -> SyncOutcome:
    """Export the tracked branch of repo as a bundle, optionally limited to recent commits.

    Steps: sync the mirror, check that the branch exists, check that it has commits, create and
    inspect the bundle. The successful outcome carries the bundle and its metadata.
    """
    return run_sync_operation(
        SyncOperation.PULL,
        repo,
        context,
        lambda: _pull_while_locked(context, repo, options, cancel_event, codec_factory),
    )


def _pull_while_locked(
    context: SyncContext,
    repo: RemoteRepoRef,
    options: BundleOptions,
    cancel_event: Event | None,
    codec_factory: Callable[[LocalMirror], BundleCodec],
) -> SyncOutcome:
    mirror = context.open_mirror(repo, cancel_event)
    sync_outcome = sync_mirror_step(mirror)
    if sync_outcome is not None:
        return sync_outcome

    try:
        with log_span("Checking branch"):
            if not mirror.has_local_branch():
                return SyncOutcome(kind=SyncOutcomeKind.NO_CONTENT, message="branch not found")
        with log_span("Checking commits"):
            if not mirror.has_local_commits():
                return SyncOutcome(kind=SyncOutcomeKind.NO_CONTENT, message="no commits")
    except GitCommandError as e:
        return build_internal_error("failed to inspect repository", e)

    codec = codec_factory(mirror)
    with log_span("Creating bundle"):
        try:
            data = codec.create_bundle(options)
        except EmptyBundleError as e:
            cutoff = options.cutoff(datetime.now(timezone.utc))
            # only a time filter can legitimately leave nothing to bundle
            if cutoff is None:
                return build_internal_error("failed to create bundle", e)
            return SyncOutcome(
                kind=SyncOutcomeKind.NO_CONTENT,
                message=f"no new commits since {cutoff.strftime('%Y-%m-%dT%H:%M:%SZ')}",
            )
        except GitCommandError as e:
            return build_internal_error("failed to create bundle", e)

    with log_span("Inspecting bundle"):
        try:
            info = codec.verify_bundle(data)
            head = get_single_head(codec.list_heads(data))
        except (GitCommandError, BundleError) as e:
            return build_internal_error("failed to inspect bundle", e)

    idempotency_hash = compute_bundle_hash(head.commit_id, options, info.is_complete)
    logger.debug("Bundle head {} (complete history: {})", head.commit_id, info.is_complete)
    pulled_bundle = PulledBundle(
        data=data,
        head_commit_id=head.commit_id,
        is_partial=options.has_any(),
        idempotency_hash=idempotency_hash,
    )
    return SyncOutcome(kind=SyncOutcomeKind.SUCCESS, message="bundle created", pulled_bundle=pulled_bundle)
