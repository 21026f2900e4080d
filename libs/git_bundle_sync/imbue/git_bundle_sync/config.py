import tempfile
from pathlib import Path
from typing import Final
from typing import Self

from pydantic import Field
from pydantic import SecretStr
from pydantic import model_validator

from imbue.git_bundle_sync.context import DEFAULT_LOCK_TIMEOUT_SECONDS
from imbue.git_bundle_sync.frozen_model import FrozenModel
from imbue.git_bundle_sync.git_runner import DEFAULT_COMMAND_TIMEOUT_SECONDS
from imbue.git_bundle_sync.primitives import AccessToken
from imbue.git_bundle_sync.primitives import AccessTokenPolicy
from imbue.git_bundle_sync.primitives import RemoteUrl

DEFAULT_HOST: Final[str] = "127.0.0.1"

DEFAULT_PORT: Final[int] = 8185

DEFAULT_LOG_LEVEL: Final[str] = "INFO"

ENV_VAR_PREFIX: Final[str] = "GIT_SYNC"

_ROOT_DIR_NAME: Final[str] = "git-bundle-sync"


def get_default_root_dir() -> Path:
    """Return the default directory for mirrors and scratch files (<system temp dir>/git-bundle-sync)."""
    return Path(tempfile.gettempdir()) / _ROOT_DIR_NAME


class SyncServerConfig(FrozenModel):
    """Settings for the sync server."""

    host: str = Field(default=DEFAULT_HOST, description="Interface to listen on")
    port: int = Field(default=DEFAULT_PORT, description="Port to listen on")
    root_dir: Path = Field(default_factory=get_default_root_dir, description="Directory for mirrors and scratch files")
    source_repo: RemoteUrl | None = Field(default=None, description="Fixed repository served by GET /pull/{branch}")
    sink_repo: RemoteUrl | None = Field(default=None, description="Fixed repository served by POST /push/{branch}")
    remote_token: AccessToken | None = Field(default=None, description="Token presented to the fixed repositories")
    auth_token: SecretStr | None = Field(
        default=None,
        description="Bearer token callers must present on the fixed-repository routes",
    )
    push_token_policy: AccessTokenPolicy = Field(default=AccessTokenPolicy.REQUIRED)
    pull_token_policy: AccessTokenPolicy = Field(default=AccessTokenPolicy.REQUIRED)
    command_timeout_seconds: float = Field(default=DEFAULT_COMMAND_TIMEOUT_SECONDS, gt=0)
    lock_timeout_seconds: float = Field(default=DEFAULT_LOCK_TIMEOUT_SECONDS, ge=0)
    cert_file: Path | None = Field(default=None, description="TLS certificate (enables HTTPS together with key_file)")
    key_file: Path | None = Field(default=None, description="TLS private key")
    log_level: str = Field(default=DEFAULT_LOG_LEVEL)
    is_log_json: bool = Field(default=False, description="Emit logs as JSON lines")

    @model_validator(mode="after")
    def _check_tls_files(self) -> Self:
        if (self.cert_file is None) != (self.key_file is None):
            raise ValueError("cert_file and key_file must be given together")
        return self

    @property
    def is_https(self) -> bool:
        return self.cert_file is not None

    def get_token_policy(self, is_push: bool) -> AccessTokenPolicy:
        return self.push_token_policy if is_push else self.pull_token_policy
