from __future__ import annotations

import logging
import sqlite3
from pathlib import Path
from typing import List, Optional, Union

from pushgate.policy.matcher import MatchResult, check, check_commit, check_ref, check_ref_commit
from pushgate.policy.parser import ParseWarning, check_source_readable, parse_policy, read_policy_source
from pushgate.policy.types import StructuredPolicy
from pushgate.storage.cache import CacheError, LookupCache, recorded_source_mtime_ns, source_mtime_ns

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


class PolicyEngine:
    """
    Denylist engine for one hook invocation.

    Owns the lookup cache handle; callers construct one engine per push and
    pass it to the decision driver instead of sharing a module-level cache.
    """

    def __init__(self, source_path: PathLike, cache_path: PathLike):
        self.source_path = str(source_path)
        self.cache_path = str(cache_path)
        self.rebuild_count = 0
        self.last_warnings: List[ParseWarning] = []
        self._cache: Optional[LookupCache] = None
        self._cache_mtime_ns: Optional[int] = None

    def ensure_fresh(self) -> bool:
        """
        Make sure the cache reflects the denylist file, rebuilding if stale.

        Returns True when a rebuild happened. Raises PolicySourceError when
        the denylist cannot be read: an unreadable policy is never treated
        as an empty one.
        """
        check_source_readable(self.source_path)
        current = source_mtime_ns(self.source_path)

        if self._cache is not None and self._cache_mtime_ns is not None and self._cache_mtime_ns >= current:
            return False

        recorded = recorded_source_mtime_ns(self.cache_path)
        rebuilt = False
        if recorded is None or recorded < current:
            self.rebuild(source_mtime=current)
            rebuilt = True
        self._reopen()
        return rebuilt

    def rebuild(self, *, source_mtime: Optional[int] = None) -> StructuredPolicy:
        # Stat before reading so an edit racing the rebuild still leaves the cache stale.
        mtime = source_mtime if source_mtime is not None else source_mtime_ns(self.source_path)
        text = read_policy_source(self.source_path)
        result = parse_policy(text)
        self.last_warnings = list(result.warnings)
        try:
            LookupCache.build(
                result.policy,
                self.cache_path,
                source_mtime_ns=mtime,
                source_path=self.source_path,
            )
        except (sqlite3.Error, OSError) as exc:
            raise CacheError(f"failed to build cache {self.cache_path}: {exc}") from exc
        self.rebuild_count += 1
        logger.info(
            "denylist %s compiled: %d rules, %d lines skipped",
            self.source_path,
            len(result.policy),
            len(result.warnings),
        )
        return result.policy

    def _reopen(self) -> None:
        if self._cache is not None:
            self._cache.close()
            self._cache = None
        self._cache = LookupCache.open(self.cache_path)
        self._cache_mtime_ns = self._cache.built_from_mtime_ns()

    @property
    def cache(self) -> LookupCache:
        if self._cache is None:
            self.ensure_fresh()
        assert self._cache is not None
        return self._cache

    def check(self, ref_name: str, commit_id: Optional[str] = None) -> MatchResult:
        return check(self.cache, ref_name, commit_id)

    def check_ref(self, ref_name: str, commit_id: Optional[str] = None) -> MatchResult:
        return check_ref(self.cache, ref_name, commit_id)

    def check_ref_commit(self, ref_name: str, commit_id: str) -> MatchResult:
        return check_ref_commit(self.cache, ref_name, commit_id)

    def check_commit(self, commit_id: str) -> MatchResult:
        return check_commit(self.cache, commit_id)

    def policy(self) -> StructuredPolicy:
        return self.cache.load_policy()

    def close(self) -> None:
        if self._cache is not None:
            self._cache.close()
            self._cache = None
            self._cache_mtime_ns = None

    def __enter__(self) -> "PolicyEngine":
        return self

    def __exit__(self, *exc) -> None:
        self.close()
