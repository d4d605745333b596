from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field

from .backup_config import FileTypeRule
from .blacklist import glob_matches


@dataclass
class RuleGroup:
    level: int
    patterns: list[str] = field(default_factory=list)

    def matches(self, rel_path: str) -> bool:
        return any(glob_matches(rel_path, pattern) for pattern in self.patterns)


def group_rules(rules: Sequence[FileTypeRule]) -> list[RuleGroup]:
    """Group patterns by compression level, lowest level first, keeping rule order."""
    groups: list[RuleGroup] = []
    for rule in sorted(rules, key=lambda item: item.compression_level):
        if groups and groups[-1].level == rule.compression_level:
            groups[-1].patterns.append(rule.pattern)
        else:
            groups.append(RuleGroup(rule.compression_level, [rule.pattern]))
    return groups


def level_for(rel_path: str, rules: Sequence[FileTypeRule]) -> int | None:
    for rule in rules:
        if glob_matches(rel_path, rule.pattern):
            return rule.compression_level
    return None


def partition(
    paths: Iterable[str],
    rules: Sequence[FileTypeRule],
) -> tuple[list[str], list[tuple[int, list[str]]]]:
    """Split paths into the main pass and one list per type-rule level.

    The first matching rule decides a file's level.
    """
    main: list[str] = []
    by_level: dict[int, list[str]] = {}
    for path in paths:
        level = level_for(path, rules)
        if level is None:
            main.append(path)
        else:
            by_level.setdefault(level, []).append(path)
    return main, sorted(by_level.items())
