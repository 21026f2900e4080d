import click

from imbue.git_bundle_sync.cli.options import env_var_name
from imbue.git_bundle_sync.cli.options import log_level_from_verbose_and_quiet
from imbue.git_bundle_sync.cli.serve import serve
from imbue.git_bundle_sync.cli.transfer import pull
from imbue.git_bundle_sync.cli.transfer import push
from imbue.git_bundle_sync.utils.logging import setup_logging


@click.group()
@click.option("-v", "--verbose", count=True, help="Increase verbosity; -v for DEBUG, -vv for TRACE")
@click.option("-q", "--quiet", is_flag=True, default=False, help="Only log errors")
@click.option("--log-level", default=None, envvar=env_var_name("LOG_LEVEL"), help="Explicit log level (overrides -v/-q)")
@click.option("--log-json", is_flag=True, default=False, envvar=env_var_name("LOG_JSON"), help="Log as JSON lines")
@click.pass_context
def cli(ctx: click.Context, verbose: int, quiet: bool, log_level: str | None, log_json: bool) -> None:
    """git-bundle-sync: synchronize one branch of a git repository through bundle files."""
    level = log_level.upper() if log_level else log_level_from_verbose_and_quiet(verbose, quiet)
    setup_logging(level, is_json=log_json)
    ctx.ensure_object(dict)
    ctx.obj["log_level"] = level
    ctx.obj["is_log_json"] = log_json


cli.add_command(serve)
cli.add_command(pull)
cli.add_command(push)
