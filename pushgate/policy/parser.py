from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Tuple, Union

from pushgate.policy.types import (
    COMMIT_PREFIX_LENGTH,
    EntryKind,
    PolicyEntry,
    StructuredPolicy,
    normalize_commit,
)

logger = logging.getLogger(__name__)


_HEX_RE = re.compile(r"^[0-9a-fA-F]+$")
# Lower-case hex with at least one digit: almost certainly a sha typed without its leading ':'.
_AMBIGUOUS_REF_RE = re.compile(r"^[0-9a-f]*[0-9][0-9a-f]*$")


class PolicySourceError(OSError):
    """Raised when the denylist file cannot be read."""


@dataclass(frozen=True)
class ParseWarning:
    line_number: int
    line: str
    code: str
    message: str


@dataclass
class ParseResult:
    policy: StructuredPolicy = field(default_factory=StructuredPolicy)
    warnings: List[ParseWarning] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.warnings


class _LineRejected(Exception):
    def __init__(self, code: str, message: str):
        super().__init__(message)
        self.code = code
        self.message = message


def split_comment(line: str) -> Tuple[str, Optional[str]]:
    body, sep, comment = line.partition("#")
    if not sep:
        return line, None
    annotation = comment.strip()
    return body, annotation or None


def ref_looks_like_commit(ref_part: str) -> bool:
    """
    Heuristic guard against a sha typed in the ref position.

    Deliberately imperfect: `deadfeed` passes (no digit) while `deadfeed1`
    is rejected.
    """
    return bool(_AMBIGUOUS_REF_RE.match(ref_part))


def _validate_commit(sha_part: str) -> str:
    if len(sha_part) < COMMIT_PREFIX_LENGTH:
        raise _LineRejected(
            "COMMIT_TOO_SHORT",
            f"commit '{sha_part}' is shorter than {COMMIT_PREFIX_LENGTH} characters and could be ambiguous",
        )
    if not _HEX_RE.match(sha_part):
        raise _LineRejected("COMMIT_NOT_HEX", f"commit '{sha_part}' is not a hexadecimal identifier")
    return normalize_commit(sha_part)


def parse_line(line: str, *, line_number: Optional[int] = None) -> Optional[PolicyEntry]:
    """
    Parse one denylist line.

    Returns None for blank and comment-only lines. Raises _LineRejected for
    lines that must be dropped; parse_policy turns those into warnings.
    """
    body, annotation = split_comment(line)
    body = body.strip()
    if not body:
        return None

    ref_part, _, sha_part = body.partition(":")
    ref_part = ref_part.strip()
    sha_part = sha_part.strip()

    if ref_part:
        if ref_looks_like_commit(ref_part):
            raise _LineRejected(
                "REF_LOOKS_LIKE_COMMIT",
                f"ref '{ref_part}' looks like a commit id; prefix commits with ':'",
            )
        if sha_part:
            return PolicyEntry(
                kind=EntryKind.REF_SHA,
                ref_name=ref_part,
                commit_prefix=_validate_commit(sha_part),
                annotation=annotation,
                line_number=line_number,
            )
        return PolicyEntry(
            kind=EntryKind.REF_ALL,
            ref_name=ref_part,
            annotation=annotation,
            line_number=line_number,
        )

    if sha_part:
        return PolicyEntry(
            kind=EntryKind.SHA_ALL,
            commit_prefix=_validate_commit(sha_part),
            annotation=annotation,
            line_number=line_number,
        )

    raise _LineRejected("EMPTY_RULE", "line names neither a ref nor a commit")


def parse_policy(text: str) -> ParseResult:
    """
    Build a StructuredPolicy from denylist source text.

    Never fails as a whole: each malformed line is logged and skipped so one
    typo cannot disable the rest of the denylist.
    """
    result = ParseResult()
    for line_number, raw in enumerate(str(text or "").splitlines(), start=1):
        try:
            entry = parse_line(raw, line_number=line_number)
        except _LineRejected as exc:
            warning = ParseWarning(line_number=line_number, line=raw, code=exc.code, message=exc.message)
            result.warnings.append(warning)
            logger.warning("denylist line %d dropped (%s): %s", line_number, exc.code, exc.message)
            continue
        if entry is not None:
            result.policy.add(entry)
    return result


def read_policy_source(path: Union[str, Path]) -> str:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except OSError as exc:
        raise PolicySourceError(f"cannot read denylist {path}: {exc.strerror or exc}") from exc
    except UnicodeDecodeError as exc:
        raise PolicySourceError(f"denylist {path} is not valid UTF-8: {exc}") from exc


def load_policy_file(path: Union[str, Path]) -> ParseResult:
    return parse_policy(read_policy_source(path))


def check_source_readable(path: Union[str, Path]) -> None:
    try:
        with open(path, "rb"):
            pass
    except OSError as exc:
        raise PolicySourceError(f"cannot read denylist {path}: {exc.strerror or exc}") from exc
