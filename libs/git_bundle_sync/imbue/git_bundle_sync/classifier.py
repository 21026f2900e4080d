"""Turns opaque git failures into the handful of conditions the orchestrators act on.

This is the only place that looks at git's diagnostic text. The marker table is versioned so
that a change in git's wording is a one-line update here and nowhere else.
"""

import re
from collections.abc import Sequence
from enum import auto
from typing import Final

from pydantic import ConfigDict

from imbue.git_bundle_sync.errors import EmptyBundleError
from imbue.git_bundle_sync.errors import GitCommandError
from imbue.git_bundle_sync.errors import MissingPrerequisiteCommitsError
from imbue.git_bundle_sync.errors import RemoteAuthenticationError
from imbue.git_bundle_sync.errors import RemoteNotFoundError
from imbue.git_bundle_sync.errors import RemoteRefMissingError
from imbue.git_bundle_sync.frozen_model import FrozenModel
from imbue.git_bundle_sync.primitives import UpperCaseStrEnum
from imbue.git_bundle_sync.utils.pure import pure


class FailureClass(UpperCaseStrEnum):
    """Recognized reasons a git invocation can fail."""

    AUTH_FAILED = auto()
    REMOTE_NOT_FOUND = auto()
    REMOTE_REF_MISSING = auto()
    MISSING_PREREQUISITES = auto()
    EMPTY_BUNDLE = auto()
    GENERIC = auto()


class DiagnosticMarker(FrozenModel):
    """A pattern in git's stderr that identifies a failure class."""

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    failure_class: FailureClass
    pattern: re.Pattern[str]


def _marker(failure_class: FailureClass, pattern: str) -> DiagnosticMarker:
    return DiagnosticMarker(failure_class=failure_class, pattern=re.compile(pattern, re.IGNORECASE))


# Matched against the output of git running with LC_ALL=C. Order matters: first match wins.
DIAGNOSTIC_MARKERS_VERSION: Final[int] = 1

DEFAULT_DIAGNOSTIC_MARKERS: Final[tuple[DiagnosticMarker, ...]] = (
    _marker(FailureClass.MISSING_PREREQUISITES, r"lacks these prerequisite commits"),
    _marker(FailureClass.EMPTY_BUNDLE, r"refusing to create empty bundle"),
    _marker(FailureClass.AUTH_FAILED, r"authentication failed"),
    _marker(FailureClass.AUTH_FAILED, r"could not read (username|password)"),
    _marker(FailureClass.AUTH_FAILED, r"terminal prompts disabled"),
    _marker(FailureClass.AUTH_FAILED, r"returned error: 40[13]\b"),
    _marker(FailureClass.AUTH_FAILED, r"permission denied \(publickey"),
    _marker(FailureClass.REMOTE_NOT_FOUND, r"does not appear to be a git repository"),
    _marker(FailureClass.REMOTE_NOT_FOUND, r"repository '[^']*' not found"),
    _marker(FailureClass.REMOTE_NOT_FOUND, r"returned error: 404\b"),
    _marker(FailureClass.REMOTE_REF_MISSING, r"couldn't find remote ref"),
)

_ERROR_TYPE_BY_FAILURE_CLASS: Final[dict[FailureClass, type[GitCommandError]]] = {
    FailureClass.AUTH_FAILED: RemoteAuthenticationError,
    FailureClass.REMOTE_NOT_FOUND: RemoteNotFoundError,
    FailureClass.REMOTE_REF_MISSING: RemoteRefMissingError,
    FailureClass.MISSING_PREREQUISITES: MissingPrerequisiteCommitsError,
    FailureClass.EMPTY_BUNDLE: EmptyBundleError,
}


class OutcomeClassifier:
    """Classifies git failures using a table of diagnostic markers."""

    def __init__(self, markers: Sequence[DiagnosticMarker] = DEFAULT_DIAGNOSTIC_MARKERS) -> None:
        self.markers = tuple(markers)

    def classify_text(self, diagnostic_text: str) -> FailureClass:
        for marker in self.markers:
            if marker.pattern.search(diagnostic_text):
                return marker.failure_class
        return FailureClass.GENERIC

    def classify(self, error: GitCommandError) -> FailureClass:
        return self.classify_text(error.stderr)

    def to_typed_error(self, error: GitCommandError) -> GitCommandError:
        """Return the specific GitCommandError subclass for this failure (or the error itself when generic)."""
        failure_class = self.classify(error)
        return _build_typed_error(error, failure_class)


@pure
def _build_typed_error(error: GitCommandError, failure_class: FailureClass) -> GitCommandError:
    error_type = _ERROR_TYPE_BY_FAILURE_CLASS.get(failure_class)
    if error_type is None or isinstance(error, error_type):
        return error
    return error_type(
        message=error.message,
        exit_code=error.exit_code,
        stderr=error.stderr,
        command=error.command,
    )
