import re
from datetime import datetime
from datetime import timedelta
from typing import Final

import deal

from imbue.git_bundle_sync.errors import InvalidBundleOptionsError
from imbue.git_bundle_sync.errors import InvalidDurationError

_DURATION_PART_PATTERN: Final[re.Pattern[str]] = re.compile(r"(\d+(?:\.\d+)?)(ms|h|m|s)")

_SECONDS_PER_UNIT: Final[dict[str, float]] = {
    "h": 3600.0,
    "m": 60.0,
    "s": 1.0,
    "ms": 0.001,
}


@deal.has()
def parse_duration(duration_str: str) -> timedelta:
    """Parse a duration such as '90s', '15m', '1h30m' or '2h45m30s'.

    Units are h, m, s and ms; a value may be fractional ('1.5h').
    """
    stripped = duration_str.strip()
    if not stripped:
        raise InvalidDurationError(duration_str)

    total_seconds = 0.0
    position = 0
    for match in _DURATION_PART_PATTERN.finditer(stripped):
        if match.start() != position:
            raise InvalidDurationError(duration_str)
        total_seconds += float(match.group(1)) * _SECONDS_PER_UNIT[match.group(2)]
        position = match.end()
    if position != len(stripped):
        raise InvalidDurationError(duration_str)

    return timedelta(seconds=total_seconds)


@deal.has()
def parse_timestamp(timestamp_str: str) -> datetime:
    """Parse an RFC 3339 timestamp such as '2024-05-01T12:00:00Z' or '2024-05-01T14:00:00+02:00'."""
    try:
        return datetime.fromisoformat(timestamp_str.strip())
    except ValueError as e:
        raise InvalidBundleOptionsError(f"Invalid timestamp: {timestamp_str!r} (expected RFC 3339)") from e
