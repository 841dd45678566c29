from __future__ import annotations

from enum import Enum
from typing import Dict, Iterator, Optional

from pydantic import BaseModel, ConfigDict, Field


# All commit comparisons use this many leading hex characters.
COMMIT_PREFIX_LENGTH = 7


def normalize_commit(commit_id: str) -> str:
    return str(commit_id or "").strip().lower()[:COMMIT_PREFIX_LENGTH]


class EntryKind(str, Enum):
    REF_ALL = "REF_ALL"
    REF_SHA = "REF_SHA"
    SHA_ALL = "SHA_ALL"


class PolicyEntry(BaseModel):
    """One denylist rule, as written on a single line of the source file."""
    model_config = ConfigDict(frozen=True)

    kind: EntryKind
    ref_name: Optional[str] = None
    commit_prefix: Optional[str] = None
    annotation: Optional[str] = None
    line_number: Optional[int] = None

    def to_line(self) -> str:
        """Render back into denylist file syntax."""
        if self.kind == EntryKind.REF_ALL:
            line = str(self.ref_name)
        elif self.kind == EntryKind.REF_SHA:
            line = f"{self.ref_name}:{self.commit_prefix}"
        else:
            line = f":{self.commit_prefix}"
        if self.annotation:
            line = f"{line}  # {self.annotation}"
        return line


class Hit(BaseModel):
    """A denylist lookup that found a rule; annotation may still be empty."""
    model_config = ConfigDict(frozen=True)

    annotation: Optional[str] = None


class RefRules(BaseModel):
    """Everything the denylist says about a single reference."""
    block_all: bool = False
    block_all_annotation: Optional[str] = None
    commits: Dict[str, Optional[str]] = Field(default_factory=dict)


def _merge_annotation(existing: Optional[str], incoming: Optional[str]) -> Optional[str]:
    # A repeated rule never loses a reason it already had.
    return incoming if incoming else existing


class StructuredPolicy(BaseModel):
    """
    Lookup-shaped view of the denylist.

    refs:    ref name -> block-all marker plus 7-char prefix -> annotation
    commits: 7-char prefix -> annotation, for rules that apply to every ref
    """
    refs: Dict[str, RefRules] = Field(default_factory=dict)
    commits: Dict[str, Optional[str]] = Field(default_factory=dict)

    def add(self, entry: PolicyEntry) -> None:
        if entry.kind == EntryKind.SHA_ALL:
            prefix = normalize_commit(entry.commit_prefix or "")
            self.commits[prefix] = _merge_annotation(self.commits.get(prefix), entry.annotation)
            return

        rules = self.refs.setdefault(str(entry.ref_name), RefRules())
        if entry.kind == EntryKind.REF_ALL:
            if rules.block_all:
                rules.block_all_annotation = _merge_annotation(rules.block_all_annotation, entry.annotation)
            else:
                rules.block_all = True
                rules.block_all_annotation = entry.annotation
            return

        prefix = normalize_commit(entry.commit_prefix or "")
        rules.commits[prefix] = _merge_annotation(rules.commits.get(prefix), entry.annotation)

    def entries(self) -> Iterator[PolicyEntry]:
        for ref_name in sorted(self.refs):
            rules = self.refs[ref_name]
            if rules.block_all:
                yield PolicyEntry(
                    kind=EntryKind.REF_ALL,
                    ref_name=ref_name,
                    annotation=rules.block_all_annotation,
                )
            for prefix in sorted(rules.commits):
                yield PolicyEntry(
                    kind=EntryKind.REF_SHA,
                    ref_name=ref_name,
                    commit_prefix=prefix,
                    annotation=rules.commits[prefix],
                )
        for prefix in sorted(self.commits):
            yield PolicyEntry(
                kind=EntryKind.SHA_ALL,
                commit_prefix=prefix,
                annotation=self.commits[prefix],
            )

    def __len__(self) -> int:
        return sum(1 for _ in self.entries())

    # Same lookup surface as storage.cache.LookupCache, so the matcher can run
    # against an in-memory policy without a cache file.
    def ref_block(self, ref_name: str) -> Optional[Hit]:
        rules = self.refs.get(ref_name)
        if rules is None or not rules.block_all:
            return None
        return Hit(annotation=rules.block_all_annotation)

    def ref_commit(self, ref_name: str, prefix: str) -> Optional[Hit]:
        rules = self.refs.get(ref_name)
        if rules is None or prefix not in rules.commits:
            return None
        return Hit(annotation=rules.commits[prefix])

    def commit_block(self, prefix: str) -> Optional[Hit]:
        if prefix not in self.commits:
            return None
        return Hit(annotation=self.commits[prefix])
