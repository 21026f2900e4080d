from typing import Final

_MAX_DIAGNOSTIC_LENGTH: Final[int] = 8000


class GitBundleSyncError(Exception):
    """Base exception for all git-bundle-sync errors."""

    ...


class BadInputError(GitBundleSyncError, ValueError):
    """Base class for malformed or missing caller input."""

    ...


class InvalidRemoteRepoRefError(BadInputError):
    """Raised when a repository URL or branch name is missing or malformed."""

    ...


class InvalidBundleOptionsError(BadInputError):
    """Raised when bundle filter options are malformed or contradictory."""

    ...


class InvalidDurationError(InvalidBundleOptionsError):
    """Raised when a duration string cannot be parsed."""

    def __init__(self, value: str) -> None:
        self.value = value
        super().__init__(f"Invalid duration: {value!r} (expected something like '90s', '15m' or '1h30m')")


class AccessTokenMissingError(BadInputError):
    """Raised when a request must carry an access token but does not."""

    def __init__(self) -> None:
        super().__init__("missing access token")


class GitCommandError(GitBundleSyncError):
    """Raised when an invocation of git fails.

    Carries the exit code and the full diagnostic (stderr) text for operator-facing logs.
    The string form never includes the diagnostic text, so it is safe to hand to callers.
    """

    def __init__(
        self,
        message: str,
        exit_code: int | None,
        stderr: str,
        command: tuple[str, ...] = (),
    ) -> None:
        self.message = message
        self.exit_code = exit_code
        self.stderr = stderr
        self.command = command
        super().__init__(message)

    def describe_for_operator(self) -> str:
        """Full description including the command and its (possibly truncated) diagnostic output."""
        command_str = " ".join(self.command)
        diagnostic = self.stderr
        if len(diagnostic) > _MAX_DIAGNOSTIC_LENGTH:
            half = _MAX_DIAGNOSTIC_LENGTH // 2
            diagnostic = diagnostic[:half] + "\n... OUTPUT TRUNCATED ...\n" + diagnostic[-half:]
        return f"{self.message} (exit code {self.exit_code}). command=`{command_str}`\nstderr:\n{diagnostic}"


class GitCommandTimeoutError(GitCommandError):
    """Raised when git does not finish within the configured timeout."""

    ...


class GitCommandCancelledError(GitCommandError):
    """Raised when git is stopped because the caller cancelled the operation."""

    ...


class GitNotInstalledError(GitCommandError):
    """Raised when the git executable cannot be started."""

    ...


class RemoteAuthenticationError(GitCommandError):
    """Raised when the remote rejects the supplied credentials."""

    ...


class RemoteNotFoundError(GitCommandError):
    """Raised when the remote repository does not exist."""

    ...


class RemoteRefMissingError(GitCommandError):
    """Raised when the remote repository exists but does not have the tracked branch."""

    ...


class MissingPrerequisiteCommitsError(GitCommandError):
    """Raised when a bundle depends on commits that the mirror does not have."""

    ...


class EmptyBundleError(GitCommandError):
    """Raised when a time-filtered bundle would contain no commits."""

    ...


class BundleError(GitBundleSyncError):
    """Base class for problems with bundle contents."""

    ...


class BundleParseError(BundleError):
    """Raised when git's bundle output does not have the expected shape."""

    def __init__(self, line: str) -> None:
        self.line = line
        super().__init__(f"Unexpected line in bundle listing: {line!r}")


class BundleVerificationError(BundleError):
    """Raised when a verified bundle does not satisfy the usability rules."""

    ...


class UnexpectedHeadCountError(BundleError):
    """Raised when a bundle does not contain exactly one head."""

    def __init__(self, head_count: int) -> None:
        self.head_count = head_count
        super().__init__(f"Expected exactly one head in bundle, found {head_count}")


class MirrorLockTimeoutError(GitBundleSyncError):
    """Raised when the lock for a mirror cannot be acquired in time."""

    ...

