import click

from imbue.git_bundle_sync.config import ENV_VAR_PREFIX
from imbue.git_bundle_sync.data_types import SyncOutcome
from imbue.git_bundle_sync.utils.pure import pure


@pure
def env_var_name(option_name: str) -> str:
    """Environment variable that can supply an option, e.g. ROOT_DIR -> GIT_SYNC_ROOT_DIR."""
    return f"{ENV_VAR_PREFIX}_{option_name}"


@pure
def log_level_from_verbose_and_quiet(verbose: int, quiet: bool) -> str:
    if quiet:
        return "ERROR"
    if verbose >= 2:
        return "TRACE"
    if verbose == 1:
        return "DEBUG"
    return "INFO"


def exit_for_outcome(outcome: SyncOutcome) -> None:
    """Report a failed outcome on stderr and exit with status 1; return normally otherwise."""
    if outcome.is_failure():
        raise click.ClickException(f"{outcome.kind.lower()}: {outcome.message}")
