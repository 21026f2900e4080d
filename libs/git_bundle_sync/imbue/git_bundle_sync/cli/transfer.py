from pathlib import Path

import click

from imbue.git_bundle_sync.cli.options import env_var_name
from imbue.git_bundle_sync.cli.options import exit_for_outcome
from imbue.git_bundle_sync.config import get_default_root_dir
from imbue.git_bundle_sync.context import SyncContext
from imbue.git_bundle_sync.data_types import BundleOptions
from imbue.git_bundle_sync.data_types import RemoteRepoRef
from imbue.git_bundle_sync.errors import BadInputError
from imbue.git_bundle_sync.primitives import SyncOutcomeKind
from imbue.git_bundle_sync.pull import pull_bundle
from imbue.git_bundle_sync.push import push_bundle
from imbue.git_bundle_sync.utils.duration import parse_duration
from imbue.git_bundle_sync.utils.duration import parse_timestamp

_root_dir_option = click.option(
    "--root-dir",
    type=click.Path(file_okay=False, resolve_path=True),
    default=None,
    envvar=env_var_name("ROOT_DIR"),
    help="Directory for mirrors and scratch files (default: <temp dir>/git-bundle-sync)",
)
_repository_option = click.option("--repository", required=True, help="URL or path of the remote repository")
_branch_option = click.option("--branch", required=True, help="Branch to synchronize")
_token_option = click.option("--token", default=None, envvar=env_var_name("TOKEN"), help="Access token for the remote")


def _build_context(root_dir: str | None) -> SyncContext:
    return SyncContext.build(root_dir=Path(root_dir) if root_dir else get_default_root_dir())


@click.command()
@_root_dir_option
@_repository_option
@_branch_option
@_token_option
@click.option("--since", default=None, help="Only include commits newer than this duration (e.g. 1h30m)")
@click.option("--after", default=None, help="Only include commits after this RFC 3339 timestamp")
@click.option("--output", type=click.Path(dir_okay=False, writable=True), required=True, help="Where to write the bundle")
def pull(
    root_dir: str | None,
    repository: str,
    branch: str,
    token: str | None,
    since: str | None,
    after: str | None,
    output: str,
) -> None:
    """Export a branch of a repository as a bundle file."""
    try:
        repo = RemoteRepoRef.build(repository, branch, token)
        options = BundleOptions.build(
            since=parse_duration(since) if since else None,
            after=parse_timestamp(after) if after else None,
        )
    except BadInputError as e:
        raise click.ClickException(str(e)) from e

    outcome = pull_bundle(_build_context(root_dir), repo, options)
    exit_for_outcome(outcome)

    pulled_bundle = outcome.pulled_bundle
    if outcome.kind == SyncOutcomeKind.NO_CONTENT or pulled_bundle is None:
        click.echo(f"Nothing to export: {outcome.message}")
        return

    Path(output).write_bytes(pulled_bundle.data)
    click.echo(f"Wrote {len(pulled_bundle.data)} bytes to {output}")
    click.echo(f"head: {pulled_bundle.head_commit_id}")
    click.echo(f"partial: {'true' if pulled_bundle.is_partial else 'false'}")
    click.echo(f"hash: {pulled_bundle.idempotency_hash}")


@click.command()
@_root_dir_option
@_repository_option
@_branch_option
@_token_option
@click.option(
    "--input",
    "input_path",
    type=click.Path(exists=True, dir_okay=False),
    required=True,
    help="Bundle file to apply",
)
def push(
    root_dir: str | None,
    repository: str,
    branch: str,
    token: str | None,
    input_path: str,
) -> None:
    """Apply a bundle file to a branch of a repository and push it."""
    try:
        repo = RemoteRepoRef.build(repository, branch, token)
    except BadInputError as e:
        raise click.ClickException(str(e)) from e

    with open(input_path, "rb") as bundle_file:
        outcome = push_bundle(_build_context(root_dir), repo, bundle_file)
    exit_for_outcome(outcome)
    click.echo(f"Pushed {input_path} to {repository} ({branch})")
