import re
import shutil
from collections.abc import Sequence
from pathlib import Path
from typing import BinaryIO
from typing import Final

from loguru import logger

from imbue.git_bundle_sync.data_types import BundleInfo
from imbue.git_bundle_sync.data_types import BundleOptions
from imbue.git_bundle_sync.data_types import Head
from imbue.git_bundle_sync.errors import BundleParseError
from imbue.git_bundle_sync.errors import EmptyBundleError
from imbue.git_bundle_sync.errors import GitCommandError
from imbue.git_bundle_sync.errors import UnexpectedHeadCountError
from imbue.git_bundle_sync.mirror import LocalMirror
from imbue.git_bundle_sync.primitives import CommitId
from imbue.git_bundle_sync.utils.pure import pure
from imbue.git_bundle_sync.workdir import scratch_file

_REF_BLOCK_PATTERN: Final[re.Pattern[str]] = re.compile(r"^The bundle (contains|requires) (?:this ref|these \d+ refs):$")
_COMPLETE_HISTORY_MARKER: Final[str] = "The bundle records a complete history."
_HASH_ALGORITHM_PREFIX: Final[str] = "The bundle uses this hash algorithm:"
_WELL_FORMED_SUFFIX: Final[str] = "is okay"

_COPY_CHUNK_SIZE: Final[int] = 2**20


@pure
def parse_verify_output(text: str) -> BundleInfo:
    """Parse the report printed by `git bundle verify` (stdout and stderr together).

    The "contains"/"requires" declarations are followed by the ref itself on the next line, so
    those values are captured positionally.
    """
    lines = [line.strip() for line in text.splitlines()]
    is_complete = False
    contains_ref = ""
    requires_ref = ""
    hash_algorithm = ""
    is_well_formed = False
    for index, line in enumerate(lines):
        block_match = _REF_BLOCK_PATTERN.match(line)
        if block_match is not None:
            next_line = lines[index + 1] if index + 1 < len(lines) else ""
            if block_match.group(1) == "contains":
                contains_ref = next_line
            else:
                requires_ref = next_line
        elif line == _COMPLETE_HISTORY_MARKER:
            is_complete = True
        elif line.startswith(_HASH_ALGORITHM_PREFIX):
            hash_algorithm = line.removeprefix(_HASH_ALGORITHM_PREFIX).strip()
        elif line.endswith(_WELL_FORMED_SUFFIX):
            is_well_formed = True
    return BundleInfo(
        is_complete=is_complete,
        contains_ref=contains_ref,
        requires_ref=requires_ref,
        hash_algorithm=hash_algorithm,
        is_well_formed=is_well_formed,
    )


@pure
def parse_list_heads_output(text: str) -> tuple[Head, ...]:
    """Parse `git bundle list-heads` output: one `<commit id> <ref>` pair per line."""
    heads = []
    for line in text.splitlines():
        if not line.strip():
            continue
        fields = line.split()
        if len(fields) != 2:
            raise BundleParseError(line)
        heads.append(Head(commit_id=CommitId(fields[0]), ref=fields[1]))
    return tuple(heads)


@pure
def get_single_head(heads: Sequence[Head]) -> Head:
    """The one head of a single-branch bundle. Any other count is an internal inconsistency."""
    if len(heads) != 1:
        raise UnexpectedHeadCountError(len(heads))
    return heads[0]


def _write_payload(payload: bytes | BinaryIO, path: Path) -> None:
    with open(path, "wb") as output_file:
        if isinstance(payload, bytes):
            output_file.write(payload)
        else:
            shutil.copyfileobj(payload, output_file, _COPY_CHUNK_SIZE)


class BundleCodec:
    """Creates, inspects and applies bundles for one local mirror."""

    def __init__(self, mirror: LocalMirror) -> None:
        self.mirror = mirror

    def create_bundle(self, options: BundleOptions) -> bytes:
        """Bundle the tracked branch, optionally restricted by a lookback window or cutoff.

        Raises EmptyBundleError when a filter leaves no commits to bundle.
        """
        args = ["bundle", "create", "-"]
        revision_limit_arg = options.get_revision_limit_arg()
        if revision_limit_arg is not None:
            args.append(revision_limit_arg)
        args.append(self.mirror.repo.branch.ref_name)
        try:
            result = self.mirror.run_git(*args)
        except EmptyBundleError as e:
            if options.has_any():
                raise
            # without a filter an empty bundle means the branch itself is broken
            raise GitCommandError(
                message="git bundle create produced no commits",
                exit_code=e.exit_code,
                stderr=e.stderr,
                command=e.command,
            ) from e
        logger.debug("Created bundle of {} bytes", len(result.stdout))
        return result.stdout

    def verify_bundle(self, data: bytes) -> BundleInfo:
        """Run `git bundle verify` and return the parsed report.

        Raises BundleVerificationError if the report says the bundle must not be used.
        """
        with scratch_file(self.mirror.root_dir) as bundle_path:
            _write_payload(data, bundle_path)
            result = self.mirror.run_git("bundle", "verify", str(bundle_path))
        info = parse_verify_output(result.stdout_text + "\n" + result.stderr)
        return info.ensure_usable()

    def list_heads(self, data: bytes) -> tuple[Head, ...]:
        with scratch_file(self.mirror.root_dir) as bundle_path:
            _write_payload(data, bundle_path)
            result = self.mirror.run_git("bundle", "list-heads", str(bundle_path))
        return parse_list_heads_output(result.stdout_text)

    def apply_bundle(self, payload: bytes | BinaryIO) -> None:
        """Fast-forward the tracked branch from a bundle.

        git can only fetch from a bundle that is a seekable file, so the payload is copied to a
        scratch file first. Raises MissingPrerequisiteCommitsError when the bundle builds on
        commits the mirror does not have.
        """
        with scratch_file(self.mirror.root_dir) as bundle_path:
            _write_payload(payload, bundle_path)
            logger.debug("Applying bundle of {} bytes", bundle_path.stat().st_size)
            self.mirror.run_git("pull", "--ff-only", str(bundle_path), self.mirror.repo.branch.ref_name)
