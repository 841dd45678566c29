from pushgate.policy.matcher import MatchReason, MatchResult, check, check_commit, check_ref, check_ref_commit
from pushgate.policy.parser import (
    ParseResult,
    ParseWarning,
    PolicySourceError,
    load_policy_file,
    parse_policy,
)
from pushgate.policy.types import (
    COMMIT_PREFIX_LENGTH,
    EntryKind,
    PolicyEntry,
    RefRules,
    StructuredPolicy,
    normalize_commit,
)
