from pathlib import Path
from threading import Event
from typing import Final
from typing import Self

from pydantic import ConfigDict
from pydantic import Field

from imbue.git_bundle_sync.classifier import OutcomeClassifier
from imbue.git_bundle_sync.data_types import RemoteRepoRef
from imbue.git_bundle_sync.frozen_model import FrozenModel
from imbue.git_bundle_sync.git_runner import DEFAULT_COMMAND_TIMEOUT_SECONDS
from imbue.git_bundle_sync.git_runner import GitCommandRunner
from imbue.git_bundle_sync.locks import MirrorLockArena
from imbue.git_bundle_sync.metrics import SyncMetrics
from imbue.git_bundle_sync.mirror import LocalMirror

DEFAULT_LOCK_TIMEOUT_SECONDS: Final[float] = 120.0


class SyncContext(FrozenModel):
    """Everything an orchestrator needs besides the request itself."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    root_dir: Path = Field(description="All mirrors, locks and scratch files live under this directory")
    runner: GitCommandRunner
    classifier: OutcomeClassifier
    lock_arena: MirrorLockArena
    metrics: SyncMetrics
    lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS

    @classmethod
    def build(
        cls,
        root_dir: Path,
        command_timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        lock_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        metrics: SyncMetrics | None = None,
    ) -> Self:
        root_dir.mkdir(parents=True, exist_ok=True)
        return cls(
            root_dir=root_dir,
            runner=GitCommandRunner(timeout_seconds=command_timeout_seconds),
            classifier=OutcomeClassifier(),
            lock_arena=MirrorLockArena(root_dir),
            metrics=metrics if metrics is not None else SyncMetrics(),
            lock_timeout_seconds=lock_timeout_seconds,
        )

    def open_mirror(self, repo: RemoteRepoRef, cancel_event: Event | None = None) -> LocalMirror:
        return LocalMirror(
            root_dir=self.root_dir,
            repo=repo,
            runner=self.runner,
            classifier=self.classifier,
            cancel_event=cancel_event,
        )
