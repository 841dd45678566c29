from __future__ import annotations

from enum import Enum
from typing import Optional, Protocol

from pydantic import BaseModel, ConfigDict

from pushgate.policy.types import Hit, normalize_commit


class PolicyLookup(Protocol):
    def ref_block(self, ref_name: str) -> Optional[Hit]: ...

    def ref_commit(self, ref_name: str, prefix: str) -> Optional[Hit]: ...

    def commit_block(self, prefix: str) -> Optional[Hit]: ...


class MatchReason(str, Enum):
    REF_BLOCKED = "REF_BLOCKED"
    COMMIT_BLOCKED = "COMMIT_BLOCKED"
    REF_COMMIT_BLOCKED = "REF_COMMIT_BLOCKED"


class MatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    blocked: bool
    reason: Optional[MatchReason] = None
    ref_name: Optional[str] = None
    commit_prefix: Optional[str] = None
    annotation: Optional[str] = None

    @classmethod
    def no_match(cls) -> "MatchResult":
        return cls(blocked=False)

    @classmethod
    def hit(
        cls,
        reason: MatchReason,
        hit: Hit,
        *,
        ref_name: Optional[str] = None,
        commit_prefix: Optional[str] = None,
    ) -> "MatchResult":
        return cls(
            blocked=True,
            reason=reason,
            ref_name=ref_name,
            commit_prefix=commit_prefix,
            annotation=hit.annotation,
        )


def check_ref(lookup: PolicyLookup, ref_name: str, commit_id: Optional[str] = None) -> MatchResult:
    """
    Ref-scoped tiers: a block-all marker on the ref wins over any ref+commit rule.
    """
    hit = lookup.ref_block(ref_name)
    if hit is not None:
        return MatchResult.hit(MatchReason.REF_BLOCKED, hit, ref_name=ref_name)
    if commit_id:
        return check_ref_commit(lookup, ref_name, commit_id)
    return MatchResult.no_match()


def check_ref_commit(lookup: PolicyLookup, ref_name: str, commit_id: str) -> MatchResult:
    prefix = normalize_commit(commit_id)
    if not prefix:
        return MatchResult.no_match()
    hit = lookup.ref_commit(ref_name, prefix)
    if hit is not None:
        return MatchResult.hit(
            MatchReason.REF_COMMIT_BLOCKED,
            hit,
            ref_name=ref_name,
            commit_prefix=prefix,
        )
    return MatchResult.no_match()


def check_commit(lookup: PolicyLookup, commit_id: str) -> MatchResult:
    prefix = normalize_commit(commit_id)
    if not prefix:
        return MatchResult.no_match()
    hit = lookup.commit_block(prefix)
    if hit is not None:
        return MatchResult.hit(MatchReason.COMMIT_BLOCKED, hit, commit_prefix=prefix)
    return MatchResult.no_match()


def check(lookup: PolicyLookup, ref_name: str, commit_id: Optional[str] = None) -> MatchResult:
    result = check_ref(lookup, ref_name, commit_id)
    if result.blocked or not commit_id:
        return result
    return check_commit(lookup, commit_id)
