import click
import pytest

from imbue.git_bundle_sync.cli.options import env_var_name
from imbue.git_bundle_sync.cli.options import exit_for_outcome
from imbue.git_bundle_sync.cli.options import log_level_from_verbose_and_quiet
from imbue.git_bundle_sync.data_types import SyncOutcome
from imbue.git_bundle_sync.primitives import SyncOutcomeKind


def test_env_var_name() -> None:
    assert env_var_name("ROOT_DIR") == "GIT_SYNC_ROOT_DIR"


@pytest.mark.parametrize(
    ("verbose", "quiet", "expected"),
    [(0, False, "INFO"), (1, False, "DEBUG"), (2, False, "TRACE"), (3, False, "TRACE"), (2, True, "ERROR")],
)
def test_log_level_from_verbose_and_quiet(verbose: int, quiet: bool, expected: str) -> None:
    assert log_level_from_verbose_and_quiet(verbose, quiet) == expected


@pytest.mark.parametrize("kind", [SyncOutcomeKind.SUCCESS, SyncOutcomeKind.NO_CONTENT])
def test_exit_for_outcome_accepts_non_failures(kind: SyncOutcomeKind) -> None:
    exit_for_outcome(SyncOutcome(kind=kind, message="fine"))


def test_exit_for_outcome_reports_failures() -> None:
    with pytest.raises(click.ClickException, match="conflict: bundle requires commits"):
        exit_for_outcome(
            SyncOutcome(kind=SyncOutcomeKind.CONFLICT, message="bundle requires commits that the repository does not have")
        )
