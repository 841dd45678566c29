from __future__ import annotations

from enum import Enum
from typing import Tuple

NULL_SHA = "0" * 40

_BRANCH_PREFIX = "refs/heads/"
_TAG_PREFIX = "refs/tags/"


class UnrecognizedRefType(ValueError):
    """Raised for pushes to anything other than a branch or a tag."""


class RefType(str, Enum):
    BRANCH = "branch"
    TAG = "tag"


def is_null_sha(sha: str) -> bool:
    """Git uses an all-zero id for "ref did not exist" / "ref is being deleted"."""
    text = str(sha or "").strip()
    return bool(text) and set(text) == {"0"}


def classify_ref(ref_path: str) -> Tuple[RefType, str]:
    ref_path = str(ref_path or "").strip()
    if ref_path.startswith(_BRANCH_PREFIX) and len(ref_path) > len(_BRANCH_PREFIX):
        return RefType.BRANCH, ref_path[len(_BRANCH_PREFIX):]
    if ref_path.startswith(_TAG_PREFIX) and len(ref_path) > len(_TAG_PREFIX):
        return RefType.TAG, ref_path[len(_TAG_PREFIX):]
    raise UnrecognizedRefType(f"unrecognized ref type for '{ref_path}' (expected refs/heads/* or refs/tags/*)")
