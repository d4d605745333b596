from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass
from enum import Enum
from fnmatch import fnmatchcase
from pathlib import Path, PureWindowsPath

from .backup_config import FilterSettings

logger = logging.getLogger(__name__)

REGEX_PREFIX = "regex:"


class RuleKind(Enum):
    LITERAL = "literal"
    GLOB = "glob"
    PATH = "path"
    REGEX = "regex"


@dataclass(frozen=True)
class BlacklistRule:
    kind: RuleKind
    value: str
    regex: re.Pattern[str] | None = None

    def matches(self, rel_path: str) -> bool:
        candidate = rel_path.replace("\\", "/")
        if self.kind is RuleKind.REGEX:
            return self.regex is not None and self.regex.search(candidate) is not None
        lowered = candidate.lower()
        value = self.value.lower()
        if self.kind is RuleKind.LITERAL:
            return value in lowered
        if self.kind is RuleKind.GLOB:
            return glob_matches(candidate, self.value)
        return lowered == value or lowered.startswith(value + "/")


def glob_matches(rel_path: str, pattern: str) -> bool:
    candidate = rel_path.replace("\\", "/").lower()
    lowered = pattern.replace("\\", "/").lower()
    name = candidate.rsplit("/", 1)[-1]
    return fnmatchcase(candidate, lowered) or fnmatchcase(name, lowered)


def _is_absolute(text: str) -> bool:
    return os.path.isabs(text) or PureWindowsPath(text).is_absolute()


def _relative_to_root(root: Path, text: str) -> str | None:
    root_text = os.path.normcase(os.path.abspath(root)).replace("\\", "/").rstrip("/")
    rule_text = os.path.normcase(os.path.abspath(text)).replace("\\", "/").rstrip("/")
    if not rule_text.startswith(root_text + "/"):
        return None
    # keep the caller's spelling of the remainder, normcase lowers it on Windows
    original = os.path.abspath(text).replace("\\", "/").rstrip("/")
    return original[len(root_text) + 1:]


# literal, glob, absolute path or "regex:" rule; regex rules need use_regex and
# have no archiver exclude equivalent
def parse_rules(root: Path, filters: FilterSettings) -> list[BlacklistRule]:
    rules: list[BlacklistRule] = []
    for raw in filters.blacklist:
        text = raw.strip()
        if not text:
            continue
        if text.lower().startswith(REGEX_PREFIX):
            if not filters.use_regex:
                logger.debug("Ignoring regex rule %r: regex filters are disabled", text)
                continue
            expression = text[len(REGEX_PREFIX):]
            try:
                compiled = re.compile(expression, re.IGNORECASE)
            except re.error as exc:
                logger.warning("Ignoring invalid regex rule %r: %s", text, exc)
                continue
            rules.append(BlacklistRule(RuleKind.REGEX, expression, compiled))
            continue
        if _is_absolute(text):
            relative = _relative_to_root(root, text)
            if relative is None:
                logger.debug("Ignoring path rule %r outside of %s", text, root)
                continue
            rules.append(BlacklistRule(RuleKind.PATH, relative))
            continue
        normalized = text.replace("\\", "/")
        if "*" in normalized or "?" in normalized:
            rules.append(BlacklistRule(RuleKind.GLOB, normalized))
        else:
            rules.append(BlacklistRule(RuleKind.LITERAL, normalized))
    return rules


class Blacklist:
    def __init__(self, root: Path, filters: FilterSettings | None) -> None:
        self._rules = parse_rules(root, filters) if filters is not None else []

    @property
    def rules(self) -> list[BlacklistRule]:
        return list(self._rules)

    @property
    def has_regex(self) -> bool:
        return any(rule.kind is RuleKind.REGEX for rule in self._rules)

    def is_excluded(self, rel_path: str) -> bool:
        return any(rule.matches(rel_path) for rule in self._rules)

    def archiver_switches(self) -> list[str]:
        switches: list[str] = []
        for rule in self._rules:
            if rule.kind is RuleKind.GLOB:
                switches.append(f"-xr!{rule.value}")
            elif rule.kind is RuleKind.LITERAL:
                switches.append(f"-xr!*{rule.value}*")
            elif rule.kind is RuleKind.PATH:
                switches.append(f"-x!{rule.value}")
        return switches
