from datetime import datetime
from datetime import timedelta
from datetime import timezone
from typing import Final
from typing import Self

from pydantic import Field
from pydantic import ValidationError
from pydantic import field_validator
from pydantic import model_validator

from imbue.git_bundle_sync.errors import BundleVerificationError
from imbue.git_bundle_sync.errors import InvalidBundleOptionsError
from imbue.git_bundle_sync.errors import InvalidRemoteRepoRefError
from imbue.git_bundle_sync.frozen_model import FrozenModel
from imbue.git_bundle_sync.primitives import AccessToken
from imbue.git_bundle_sync.primitives import BranchName
from imbue.git_bundle_sync.primitives import BundleFilterKind
from imbue.git_bundle_sync.primitives import CommitId
from imbue.git_bundle_sync.primitives import IdempotencyHash
from imbue.git_bundle_sync.primitives import RemoteUrl
from imbue.git_bundle_sync.primitives import SyncOutcomeKind

MIN_SINCE_WINDOW: Final[timedelta] = timedelta(seconds=1)

_AFTER_CANONICAL_FORMAT: Final[str] = "%Y-%m-%dT%H:%M:%SZ"

# git's approxidate parser reliably understands this form
_AFTER_GIT_FORMAT: Final[str] = "%Y-%m-%d %H:%M:%S +0000"


def _format_validation_error(error: ValidationError) -> str:
    return "; ".join(str(item["msg"]).removeprefix("Value error, ") for item in error.errors())


class RemoteRepoRef(FrozenModel):
    """Identifies one logical sync endpoint: a remote repository and the single branch tracked for it."""

    url: RemoteUrl = Field(description="Location of the remote repository")
    branch: BranchName = Field(description="The tracked branch")
    access_token: AccessToken | None = Field(
        default=None,
        description="Token presented to the remote server, if any",
    )

    @classmethod
    def build(cls, url: str | None, branch: str | None, access_token: str | None = None) -> Self:
        """Construct from raw request values, raising InvalidRemoteRepoRefError on bad input."""
        if not url:
            raise InvalidRemoteRepoRefError("missing repository")
        if not branch:
            raise InvalidRemoteRepoRefError("missing branch")
        try:
            return cls(
                url=RemoteUrl(url),
                branch=BranchName(branch),
                access_token=AccessToken(access_token) if access_token else None,
            )
        except ValueError as e:
            raise InvalidRemoteRepoRefError(str(e)) from e


class BundleOptions(FrozenModel):
    """Optional revision limit applied when creating a bundle.

    A bundle request names either a lookback window (since) or an absolute cutoff (after), never both.
    """

    since: timedelta | None = Field(default=None, description="Only include commits newer than this window")
    after: datetime | None = Field(default=None, description="Only include commits after this instant (UTC)")

    @field_validator("after")
    @classmethod
    def _normalize_after_to_utc(cls, value: datetime | None) -> datetime | None:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    @model_validator(mode="after")
    def _check_filters(self) -> Self:
        if self.since is not None and self.after is not None:
            raise ValueError("since and after cannot both be set")
        if self.since is not None and self.since < MIN_SINCE_WINDOW:
            raise ValueError(f"since must be at least {MIN_SINCE_WINDOW.total_seconds():.0f}s")
        return self

    @classmethod
    def build(cls, since: timedelta | None = None, after: datetime | None = None) -> Self:
        """Construct from caller values, raising InvalidBundleOptionsError on bad input."""
        try:
            return cls(since=since, after=after)
        except ValidationError as e:
            raise InvalidBundleOptionsError(_format_validation_error(e)) from e

    def has_any(self) -> bool:
        return self.since is not None or self.after is not None

    @property
    def filter_kind(self) -> BundleFilterKind:
        if self.since is not None:
            return BundleFilterKind.SINCE
        if self.after is not None:
            return BundleFilterKind.AFTER
        return BundleFilterKind.NONE

    @property
    def filter_value(self) -> str:
        """Canonical rendering of the active filter (empty when there is none)."""
        if self.since is not None:
            return f"{int(self.since.total_seconds())}s"
        if self.after is not None:
            return self.after.strftime(_AFTER_CANONICAL_FORMAT)
        return ""

    def cutoff(self, now: datetime) -> datetime | None:
        """The instant before which commits are excluded, or None when unfiltered."""
        if self.since is not None:
            return now - self.since
        return self.after

    def get_revision_limit_arg(self) -> str | None:
        """The rev-list option git uses to restrict the bundle, or None when unfiltered."""
        if self.since is not None:
            return f"--since={int(self.since.total_seconds())}.seconds.ago"
        if self.after is not None:
            return f"--after={self.after.strftime(_AFTER_GIT_FORMAT)}"
        return None


class BundleInfo(FrozenModel):
    """What `git bundle verify` reported about a bundle."""

    is_complete: bool = False
    contains_ref: str = ""
    requires_ref: str = ""
    hash_algorithm: str = ""
    is_well_formed: bool = False

    def is_usable(self) -> bool:
        if not self.is_well_formed or not self.contains_ref:
            return False
        return self.is_complete or bool(self.requires_ref)

    def ensure_usable(self) -> Self:
        """Return self, or raise BundleVerificationError if the bundle must not be used."""
        if self.is_usable():
            return self
        if not self.is_well_formed:
            raise BundleVerificationError("bundle did not verify as well formed")
        if not self.contains_ref:
            raise BundleVerificationError("bundle does not declare the ref it contains")
        raise BundleVerificationError("partial bundle does not declare its prerequisite")


class Head(FrozenModel):
    """One reference contained in a bundle."""

    commit_id: CommitId
    ref: str


class PulledBundle(FrozenModel):
    """A bundle produced by a pull, plus the metadata callers receive alongside it."""

    data: bytes = Field(repr=False)
    head_commit_id: CommitId
    is_partial: bool = Field(description="Whether a revision filter was applied")
    idempotency_hash: IdempotencyHash

    @property
    def filename(self) -> str:
        return f"git_{self.head_commit_id}_{self.idempotency_hash}.bundle"


class SyncOutcome(FrozenModel):
    """The result of a push or pull. Every orchestrator call ends in exactly one of these."""

    kind: SyncOutcomeKind
    message: str = Field(description="Short explanation that is safe to show to the caller")
    pulled_bundle: PulledBundle | None = None

    def is_failure(self) -> bool:
        return self.kind not in (SyncOutcomeKind.SUCCESS, SyncOutcomeKind.NO_CONTENT)
