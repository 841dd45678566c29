from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from pushgate.engine import PolicyEngine
from pushgate.git.history import HistoryProvider
from pushgate.git.refs import RefType, classify_ref, is_null_sha
from pushgate.policy.matcher import MatchResult

logger = logging.getLogger(__name__)


class DecisionStatus(str, Enum):
    ACCEPTED = "ACCEPTED"
    REJECTED = "REJECTED"


class PushRequest(BaseModel):
    """One ref update, as git hands it to the update hook."""
    ref_path: str
    old_sha: str
    new_sha: str


class PushDecision(BaseModel):
    """
    Outcome of evaluating one ref update.

    `match` is populated only for rejections; `commit_id` is the full id of
    the commit that hit a commit rule.
    """
    status: DecisionStatus
    ref_path: str
    ref_type: RefType
    ref_name: str
    reason_code: str
    match: Optional[MatchResult] = None
    commit_id: Optional[str] = None
    commits_checked: int = 0
    new_ref: bool = False

    @property
    def accepted(self) -> bool:
        return self.status == DecisionStatus.ACCEPTED


def _reject(base: dict, match: MatchResult, *, commit_id: Optional[str] = None, commits_checked: int = 0) -> PushDecision:
    return PushDecision(
        status=DecisionStatus.REJECTED,
        reason_code=str(match.reason.value if match.reason else "BLOCKED"),
        match=match,
        commit_id=commit_id,
        commits_checked=commits_checked,
        **base,
    )


def evaluate_push(engine: PolicyEngine, request: PushRequest, history: HistoryProvider) -> PushDecision:
    """
    Walk a ref update through the denylist.

    Order: classify ref, accept deletions outright, check ref-wide rules
    once, then for each pushed commit check commit-wide rules before
    ref+commit rules. The first match rejects.

    Raises UnrecognizedRefType for refs outside refs/heads and refs/tags,
    PolicySourceError when the denylist is unreadable, and HistoryError when
    the commit range cannot be listed.
    """
    ref_type, ref_name = classify_ref(request.ref_path)
    new_ref = is_null_sha(request.old_sha)
    base = {
        "ref_path": request.ref_path,
        "ref_type": ref_type,
        "ref_name": ref_name,
        "new_ref": new_ref,
    }

    if is_null_sha(request.new_sha):
        logger.debug("%s %s deleted; denylist not consulted", ref_type.value, ref_name)
        return PushDecision(status=DecisionStatus.ACCEPTED, reason_code="REF_DELETED", **base)

    engine.ensure_fresh()

    match = engine.check_ref(ref_name)
    if match.blocked:
        return _reject(base, match)

    commits = history(None if new_ref else request.old_sha, request.new_sha)
    checked = 0
    for commit_id in commits:
        checked += 1
        match = engine.check_commit(commit_id)
        if not match.blocked:
            match = engine.check_ref_commit(ref_name, commit_id)
        if match.blocked:
            return _reject(base, match, commit_id=commit_id, commits_checked=checked)

    return PushDecision(
        status=DecisionStatus.ACCEPTED,
        reason_code="ALLOWED",
        commits_checked=checked,
        **base,
    )
