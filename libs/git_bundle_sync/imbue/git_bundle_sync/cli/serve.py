from pathlib import Path

import click
from pydantic import SecretStr
from pydantic import ValidationError

from imbue.git_bundle_sync.cli.options import env_var_name
from imbue.git_bundle_sync.config import DEFAULT_HOST
from imbue.git_bundle_sync.config import DEFAULT_PORT
from imbue.git_bundle_sync.config import SyncServerConfig
from imbue.git_bundle_sync.config import get_default_root_dir
from imbue.git_bundle_sync.context import DEFAULT_LOCK_TIMEOUT_SECONDS
from imbue.git_bundle_sync.git_runner import DEFAULT_COMMAND_TIMEOUT_SECONDS
from imbue.git_bundle_sync.primitives import AccessToken
from imbue.git_bundle_sync.primitives import AccessTokenPolicy
from imbue.git_bundle_sync.primitives import RemoteUrl
from imbue.git_bundle_sync.server.runner import start_sync_server

_POLICY_CHOICE = click.Choice([policy.value for policy in AccessTokenPolicy], case_sensitive=False)


def build_server_config(
    host: str,
    port: int,
    root_dir: str | None,
    source_repo: str | None,
    sink_repo: str | None,
    remote_token: str | None,
    auth_token: str | None,
    push_token_policy: str,
    pull_token_policy: str,
    command_timeout: float,
    lock_timeout: float,
    cert_file: str | None,
    key_file: str | None,
    log_level: str,
    is_log_json: bool,
) -> SyncServerConfig:
    """Turn raw option values into a validated config, reporting problems as usage errors."""
    try:
        return SyncServerConfig(
            host=host,
            port=port,
            root_dir=Path(root_dir) if root_dir else get_default_root_dir(),
            source_repo=RemoteUrl(source_repo) if source_repo else None,
            sink_repo=RemoteUrl(sink_repo) if sink_repo else None,
            remote_token=AccessToken(remote_token) if remote_token else None,
            auth_token=SecretStr(auth_token) if auth_token else None,
            push_token_policy=AccessTokenPolicy(push_token_policy.upper()),
            pull_token_policy=AccessTokenPolicy(pull_token_policy.upper()),
            command_timeout_seconds=command_timeout,
            lock_timeout_seconds=lock_timeout,
            cert_file=Path(cert_file) if cert_file else None,
            key_file=Path(key_file) if key_file else None,
            log_level=log_level,
            is_log_json=is_log_json,
        )
    except ValueError as e:
        raise click.UsageError(str(e)) from e


@click.command()
@click.option("--host", default=DEFAULT_HOST, show_default=True, envvar=env_var_name("HOST"), help="Host to bind to")
@click.option("--port", default=DEFAULT_PORT, show_default=True, envvar=env_var_name("PORT"), help="Port to bind to")
@click.option(
    "--root-dir",
    type=click.Path(file_okay=False, resolve_path=True),
    default=None,
    envvar=env_var_name("ROOT_DIR"),
    help="Directory for mirrors and scratch files (default: <temp dir>/git-bundle-sync)",
)
@click.option("--source-repo", default=None, envvar=env_var_name("SOURCE_REPO"), help="Repository served by GET /pull/<branch>")
@click.option("--sink-repo", default=None, envvar=env_var_name("SINK_REPO"), help="Repository served by POST /push/<branch>")
@click.option(
    "--remote-token",
    default=None,
    envvar=env_var_name("REMOTE_TOKEN"),
    help="Token presented to the source and sink repositories",
)
@click.option(
    "--auth-token",
    default=None,
    envvar=env_var_name("AUTH_TOKEN"),
    help="Bearer token callers must present on /pull/<branch> and /push/<branch>",
)
@click.option(
    "--push-token-policy",
    type=_POLICY_CHOICE,
    default=AccessTokenPolicy.REQUIRED.value,
    show_default=True,
    envvar=env_var_name("PUSH_TOKEN_POLICY"),
    help="Whether push requests must carry a token",
)
@click.option(
    "--pull-token-policy",
    type=_POLICY_CHOICE,
    default=AccessTokenPolicy.REQUIRED.value,
    show_default=True,
    envvar=env_var_name("PULL_TOKEN_POLICY"),
    help="Whether pull requests must carry a token",
)
@click.option(
    "--command-timeout",
    type=float,
    default=DEFAULT_COMMAND_TIMEOUT_SECONDS,
    show_default=True,
    envvar=env_var_name("COMMAND_TIMEOUT"),
    help="Seconds before a git invocation is stopped",
)
@click.option(
    "--lock-timeout",
    type=float,
    default=DEFAULT_LOCK_TIMEOUT_SECONDS,
    show_default=True,
    envvar=env_var_name("LOCK_TIMEOUT"),
    help="Seconds to wait for a busy repository before rejecting the request",
)
@click.option("--cert-file", default=None, envvar=env_var_name("CERT_FILE"), help="TLS certificate (enables HTTPS)")
@click.option("--key-file", default=None, envvar=env_var_name("KEY_FILE"), help="TLS private key")
@click.pass_context
def serve(
    ctx: click.Context,
    host: str,
    port: int,
    root_dir: str | None,
    source_repo: str | None,
    sink_repo: str | None,
    remote_token: str | None,
    auth_token: str | None,
    push_token_policy: str,
    pull_token_policy: str,
    command_timeout: float,
    lock_timeout: float,
    cert_file: str | None,
    key_file: str | None,
) -> None:
    """Run the HTTP server that exports and imports bundles."""
    config = build_server_config(
        host=host,
        port=port,
        root_dir=root_dir,
        source_repo=source_repo,
        sink_repo=sink_repo,
        remote_token=remote_token,
        auth_token=auth_token,
        push_token_policy=push_token_policy,
        pull_token_policy=pull_token_policy,
        command_timeout=command_timeout,
        lock_timeout=lock_timeout,
        cert_file=cert_file,
        key_file=key_file,
        log_level=ctx.obj["log_level"],
        is_log_json=ctx.obj["is_log_json"],
    )
    start_sync_server(config)
