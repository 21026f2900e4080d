import base64
import os
import shlex
import subprocess
import time
from collections.abc import Mapping
from collections.abc import Sequence
from pathlib import Path
from threading import Event
from typing import Final

from loguru import logger
from pydantic import Field

from imbue.git_bundle_sync.errors import GitCommandCancelledError
from imbue.git_bundle_sync.errors import GitCommandError
from imbue.git_bundle_sync.errors import GitCommandTimeoutError
from imbue.git_bundle_sync.errors import GitNotInstalledError
from imbue.git_bundle_sync.frozen_model import FrozenModel
from imbue.git_bundle_sync.primitives import AccessToken
from imbue.git_bundle_sync.utils.pure import pure

DEFAULT_COMMAND_TIMEOUT_SECONDS: Final[float] = 300.0

# Basic auth needs a username, but the servers we talk to only look at the token.
_TOKEN_USERNAME: Final[str] = "not_used"


class GitCommandResult(FrozenModel):
    """A git invocation that exited with status zero (or was run unchecked)."""

    command: tuple[str, ...]
    exit_code: int
    stdout: bytes = Field(repr=False)
    stderr: str

    @property
    def stdout_text(self) -> str:
        return self.stdout.decode("utf-8", errors="replace")


@pure
def build_auth_header(access_token: AccessToken) -> str:
    credentials = f"{_TOKEN_USERNAME}:{access_token.get_secret_value()}"
    return "Authorization: Basic " + base64.b64encode(credentials.encode("utf-8")).decode("ascii")


def build_git_environment(
    access_token: AccessToken | None,
    base_environment: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Environment for a git child process.

    The token travels as an extra HTTP header through GIT_CONFIG_* variables, so it never
    shows up in argv, in a repository's config file, or in git's error messages.
    """
    environment = dict(os.environ if base_environment is None else base_environment)
    environment["LC_ALL"] = "C"
    environment["LANGUAGE"] = "C"
    environment["GIT_TERMINAL_PROMPT"] = "0"
    environment.pop("GIT_DIR", None)
    environment.pop("GIT_WORK_TREE", None)
    if access_token is not None:
        environment["GIT_CONFIG_COUNT"] = "1"
        environment["GIT_CONFIG_KEY_0"] = "http.extraHeader"
        environment["GIT_CONFIG_VALUE_0"] = build_auth_header(access_token)
    return environment


def _shutdown_process(process: subprocess.Popen[bytes], shutdown_timeout_seconds: float) -> None:
    logger.debug("Stopping git (sigterm to {})", process.pid)
    process.terminate()
    try:
        process.wait(timeout=shutdown_timeout_seconds)
    except subprocess.TimeoutExpired:
        logger.warning("git didn't exit within {} seconds of SIGTERM, killing it", shutdown_timeout_seconds)
        process.kill()
        process.wait()


class GitCommandRunner:
    """Runs git as a child process with a timeout and cooperative cancellation."""

    def __init__(
        self,
        git_executable: str = "git",
        timeout_seconds: float = DEFAULT_COMMAND_TIMEOUT_SECONDS,
        poll_seconds: float = 0.05,
        shutdown_timeout_seconds: float = 5.0,
    ) -> None:
        self.git_executable = git_executable
        self.timeout_seconds = timeout_seconds
        self.poll_seconds = poll_seconds
        self.shutdown_timeout_seconds = shutdown_timeout_seconds

    def run(
        self,
        args: Sequence[str],
        cwd: Path | None = None,
        stdin: bytes | None = None,
        access_token: AccessToken | None = None,
        cancel_event: Event | None = None,
        is_checked: bool = True,
    ) -> GitCommandResult:
        """Run `git <args>` and return its output.

        Raises GitCommandError on a non-zero exit (when is_checked), GitCommandTimeoutError when the
        timeout elapses and GitCommandCancelledError when cancel_event is set while git is running.
        """
        command = (self.git_executable, *args)
        logger.trace("Running {}", " ".join(shlex.quote(arg) for arg in command))
        try:
            process = subprocess.Popen(
                command,
                cwd=cwd,
                stdin=subprocess.PIPE if stdin is not None else subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                env=build_git_environment(access_token),
            )
        except OSError as e:
            raise GitNotInstalledError(
                message=f"could not start git: {e}",
                exit_code=None,
                stderr="",
                command=command,
            ) from e

        deadline = time.monotonic() + self.timeout_seconds
        pending_input = stdin
        while True:
            try:
                stdout, stderr_bytes = process.communicate(input=pending_input, timeout=self.poll_seconds)
                break
            except subprocess.TimeoutExpired:
                # input may only be handed over on the first call
                pending_input = None
                if cancel_event is not None and cancel_event.is_set():
                    _shutdown_process(process, self.shutdown_timeout_seconds)
                    _, stderr_bytes = process.communicate()
                    raise GitCommandCancelledError(
                        message=f"git {args[0]} was cancelled",
                        exit_code=process.returncode,
                        stderr=stderr_bytes.decode("utf-8", errors="replace"),
                        command=command,
                    )
                if time.monotonic() > deadline:
                    _shutdown_process(process, self.shutdown_timeout_seconds)
                    _, stderr_bytes = process.communicate()
                    raise GitCommandTimeoutError(
                        message=f"git {args[0]} timed out after {self.timeout_seconds:.0f}s",
                        exit_code=process.returncode,
                        stderr=stderr_bytes.decode("utf-8", errors="replace"),
                        command=command,
                    )

        stderr = stderr_bytes.decode("utf-8", errors="replace")
        if is_checked and process.returncode != 0:
            raise GitCommandError(
                message=f"git {args[0]} failed",
                exit_code=process.returncode,
                stderr=stderr,
                command=command,
            )
        return GitCommandResult(command=command, exit_code=process.returncode, stdout=stdout, stderr=stderr)
