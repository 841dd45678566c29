from __future__ import annotations

import logging
import os
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, Optional, Union

from pushgate.policy.parser import PolicySourceError
from pushgate.policy.types import Hit, RefRules, StructuredPolicy
from pushgate.storage.atomic import atomic_temp_path

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

# Bump when the table layout changes; older caches are then rebuilt.
CACHE_SCHEMA_VERSION = "pushgate-cache-v1"

_SCHEMA = """
CREATE TABLE meta (
    key TEXT PRIMARY KEY,
    value TEXT
);
CREATE TABLE ref_rules (
    ref_name TEXT PRIMARY KEY,
    annotation TEXT
);
CREATE TABLE ref_commits (
    ref_name TEXT NOT NULL,
    commit_prefix TEXT NOT NULL,
    annotation TEXT,
    PRIMARY KEY (ref_name, commit_prefix)
);
CREATE TABLE commit_rules (
    commit_prefix TEXT PRIMARY KEY,
    annotation TEXT
);
"""


class CacheError(RuntimeError):
    """Raised when a cache file is missing, corrupt, or from another schema version."""


def source_mtime_ns(source_path: PathLike) -> int:
    try:
        return os.stat(source_path).st_mtime_ns
    except OSError as exc:
        raise PolicySourceError(f"cannot stat denylist {source_path}: {exc.strerror or exc}") from exc


def _connect_readonly(path: PathLike) -> sqlite3.Connection:
    uri = Path(path).resolve().as_uri() + "?mode=ro"
    conn = sqlite3.connect(uri, uri=True)
    conn.row_factory = sqlite3.Row
    return conn


def _read_meta(conn: sqlite3.Connection) -> Dict[str, str]:
    rows = conn.execute("SELECT key, value FROM meta").fetchall()
    return {str(row["key"]): str(row["value"]) for row in rows}


class LookupCache:
    """
    Read-only handle on a persisted denylist projection.

    Built by LookupCache.build() and never modified in place afterwards;
    a rebuild installs a whole new file over the old one.
    """

    def __init__(self, path: PathLike, conn: sqlite3.Connection, meta: Dict[str, str]):
        self.path = str(path)
        self._conn = conn
        self._meta = meta

    @classmethod
    def open(cls, path: PathLike) -> "LookupCache":
        if not os.path.exists(path):
            raise CacheError(f"cache {path} does not exist")
        conn = None
        try:
            conn = _connect_readonly(path)
            meta = _read_meta(conn)
        except sqlite3.DatabaseError as exc:
            if conn is not None:
                conn.close()
            raise CacheError(f"cache {path} is unreadable: {exc}") from exc
        if meta.get("schema_version") != CACHE_SCHEMA_VERSION:
            conn.close()
            raise CacheError(
                f"cache {path} has schema {meta.get('schema_version')!r}, expected {CACHE_SCHEMA_VERSION!r}"
            )
        return cls(path, conn, meta)

    @classmethod
    def build(
        cls,
        policy: StructuredPolicy,
        path: PathLike,
        *,
        source_mtime_ns: int,
        source_path: Optional[PathLike] = None,
    ) -> None:
        """
        Serialize `policy` into a new cache file and install it at `path`.

        The file is written next to `path` and swapped in with one rename;
        the previous cache survives as `<path>~`.
        """
        target = str(path)
        with atomic_temp_path(target) as temp_path:
            # mkstemp creates 0600; other pushers must be able to read the cache.
            os.chmod(temp_path, 0o644)
            conn = sqlite3.connect(temp_path)
            try:
                conn.executescript(_SCHEMA)
                conn.executemany(
                    "INSERT INTO meta (key, value) VALUES (?, ?)",
                    [
                        ("schema_version", CACHE_SCHEMA_VERSION),
                        ("source_mtime_ns", str(int(source_mtime_ns))),
                        ("source_path", str(source_path or "")),
                        ("built_at", datetime.now(timezone.utc).isoformat()),
                    ],
                )
                for ref_name, rules in policy.refs.items():
                    if rules.block_all:
                        conn.execute(
                            "INSERT INTO ref_rules (ref_name, annotation) VALUES (?, ?)",
                            (ref_name, rules.block_all_annotation),
                        )
                    conn.executemany(
                        "INSERT INTO ref_commits (ref_name, commit_prefix, annotation) VALUES (?, ?, ?)",
                        [(ref_name, prefix, note) for prefix, note in rules.commits.items()],
                    )
                conn.executemany(
                    "INSERT INTO commit_rules (commit_prefix, annotation) VALUES (?, ?)",
                    list(policy.commits.items()),
                )
                conn.commit()
            finally:
                conn.close()
        logger.info("rebuilt denylist cache %s (%d rules)", target, len(policy))

    def built_from_mtime_ns(self) -> int:
        return int(self._meta.get("source_mtime_ns") or 0)

    @property
    def meta(self) -> Dict[str, str]:
        return dict(self._meta)

    def _one(self, query: str, params: tuple) -> Optional[Hit]:
        row = self._conn.execute(query, params).fetchone()
        if row is None:
            return None
        return Hit(annotation=row["annotation"])

    def ref_block(self, ref_name: str) -> Optional[Hit]:
        return self._one("SELECT annotation FROM ref_rules WHERE ref_name = ?", (ref_name,))

    def ref_commit(self, ref_name: str, prefix: str) -> Optional[Hit]:
        return self._one(
            "SELECT annotation FROM ref_commits WHERE ref_name = ? AND commit_prefix = ?",
            (ref_name, prefix),
        )

    def commit_block(self, prefix: str) -> Optional[Hit]:
        return self._one("SELECT annotation FROM commit_rules WHERE commit_prefix = ?", (prefix,))

    def load_policy(self) -> StructuredPolicy:
        policy = StructuredPolicy()
        for row in self._conn.execute("SELECT ref_name, annotation FROM ref_rules"):
            policy.refs[row["ref_name"]] = RefRules(block_all=True, block_all_annotation=row["annotation"])
        for row in self._conn.execute("SELECT ref_name, commit_prefix, annotation FROM ref_commits"):
            rules = policy.refs.setdefault(row["ref_name"], RefRules())
            rules.commits[row["commit_prefix"]] = row["annotation"]
        for row in self._conn.execute("SELECT commit_prefix, annotation FROM commit_rules"):
            policy.commits[row["commit_prefix"]] = row["annotation"]
        return policy

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "LookupCache":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


def recorded_source_mtime_ns(cache_path: PathLike) -> Optional[int]:
    """Source mtime the cache was built from, or None if there is no usable cache."""
    try:
        with LookupCache.open(cache_path) as cache:
            return cache.built_from_mtime_ns()
    except CacheError as exc:
        logger.debug("cache not usable: %s", exc)
        return None


def is_stale(source_path: PathLike, cache_path: PathLike) -> bool:
    """
    True when the cache is missing or predates the denylist file.

    Timestamp based: touching the denylist forces a rebuild even if its
    content did not change.
    """
    current = source_mtime_ns(source_path)
    recorded = recorded_source_mtime_ns(cache_path)
    return recorded is None or recorded < current
