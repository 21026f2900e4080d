import re
from enum import StrEnum
from enum import auto
from typing import Any
from typing import Final
from typing import Self

from pydantic import GetCoreSchemaHandler
from pydantic import SecretStr
from pydantic_core import CoreSchema
from pydantic_core import core_schema

_WHITESPACE_PATTERN: Final[re.Pattern[str]] = re.compile(r"\s")

_CONTROL_CHARACTER_PATTERN: Final[re.Pattern[str]] = re.compile(r"[\x00-\x1f\x7f]")


class UpperCaseStrEnum(StrEnum):
    """A StrEnum whose auto() values are the upper-cased member names."""

    @staticmethod
    def _generate_next_value_(
        name: str,
        start: int,
        count: int,
        last_values: list[str],
    ) -> str:
        return name.upper()


class NonEmptyStr(str):
    """A string that cannot be empty or whitespace-only."""

    def __new__(cls, value: str) -> Self:
        if not value or not value.strip():
            raise ValueError(f"{cls.__name__} cannot be empty")
        return super().__new__(cls, value.strip())

    @classmethod
    def __get_pydantic_core_schema__(
        cls,
        source_type: Any,
        handler: GetCoreSchemaHandler,
    ) -> CoreSchema:
        return core_schema.no_info_after_validator_function(
            cls,
            core_schema.str_schema(min_length=1),
            serialization=core_schema.to_string_ser_schema(),
        )


class RemoteUrl(NonEmptyStr):
    """Location of the remote repository, as understood by git (URL or path)."""

    def __new__(cls, value: str) -> Self:
        instance = super().__new__(cls, value)
        if instance.startswith("-"):
            raise ValueError(f"Remote URL must not start with '-', got: {value!r}")
        return instance


class BranchName(NonEmptyStr):
    """Name of the single branch tracked for a remote repository (without refs/heads/)."""

    def __new__(cls, value: str) -> Self:
        # checked before stripping, so a trailing newline is refused rather than trimmed away
        if _CONTROL_CHARACTER_PATTERN.search(value):
            raise ValueError(f"Branch name must not contain control characters, got: {value!r}")
        instance = super().__new__(cls, value)
        if instance.startswith("-"):
            raise ValueError(f"Branch name must not start with '-', got: {value!r}")
        if _WHITESPACE_PATTERN.search(instance):
            raise ValueError(f"Branch name must not contain whitespace, got: {value!r}")
        return instance

    @property
    def ref_name(self) -> str:
        return f"refs/heads/{self}"


class CommitId(NonEmptyStr):
    """Object id of a commit, as printed by git."""

    ...


class IdempotencyHash(NonEmptyStr):
    """Hex digest callers use to recognize an unchanged pull result."""

    ...


class AccessToken(SecretStr):
    """Token presented to the remote repository server."""

    ...


class SyncOperation(UpperCaseStrEnum):
    """The two directions a bundle can travel."""

    PUSH = auto()
    PULL = auto()


class SyncOutcomeKind(UpperCaseStrEnum):
    """Every orchestrator operation ends in exactly one of these."""

    SUCCESS = auto()
    NO_CONTENT = auto()
    NOT_FOUND = auto()
    AUTH_FAILED = auto()
    CONFLICT = auto()
    BAD_INPUT = auto()
    INTERNAL_ERROR = auto()


class BundleFilterKind(UpperCaseStrEnum):
    """Which revision limit, if any, was applied when creating a bundle."""

    NONE = auto()
    SINCE = auto()
    AFTER = auto()


class MirrorSyncStatus(UpperCaseStrEnum):
    """Result of bringing the local mirror up to date with the remote."""

    READY = auto()
    REMOTE_NOT_FOUND = auto()


class AccessTokenPolicy(UpperCaseStrEnum):
    """Whether a request must carry an access token for the remote."""

    REQUIRED = auto()
    OPTIONAL = auto()
