"""Secrets redaction for captured prompt text.

Applies built-in secret patterns, optional e-mail redaction, user-supplied
regexes from ``privacy.additionalRedactionPatterns`` and, optionally, named
patterns from a YAML file. Each match is replaced with a label naming what
was removed so the surrounding text stays readable.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from context_ledger.config import PrivacyConfig

logger = logging.getLogger(__name__)

REDACTED_CUSTOM = "[REDACTED_CUSTOM]"
REDACTED_EMAIL = "[REDACTED_EMAIL]"


@dataclass(frozen=True)
class RedactionRule:
    """A compiled pattern and the label that replaces its matches."""

    name: str
    pattern: re.Pattern[str]
    replacement: str

    def apply(self, text: str) -> str:
        return self.pattern.sub(self.replacement, text)


# Order matters: the Anthropic prefix is a superset of the OpenAI one.
_BUILTIN_PATTERNS: list[tuple[str, str, str, int]] = [
    ("Anthropic API Key", r"\bsk-ant-[A-Za-z0-9_-]{8,}", "[REDACTED_ANTHROPIC_KEY]", 0),
    ("OpenAI API Key", r"\bsk-[A-Za-z0-9_-]{8,}", "[REDACTED_OPENAI_KEY]", 0),
    ("GitHub Token", r"\bgh[pousr]_[A-Za-z0-9]{20,}\b", "[REDACTED_GITHUB_TOKEN]", 0),
    ("GitHub Fine-Grained PAT", r"\bgithub_pat_[A-Za-z0-9_]{22,}", "[REDACTED_GITHUB_TOKEN]", 0),
    ("AWS Access Key ID", r"\bAKIA[0-9A-Z]{16}\b", "[REDACTED_AWS_KEY]", 0),
    (
        "Slack Token",
        r"\bxox[abpr]-[0-9]{10,}-[0-9]{10,}-[A-Za-z0-9]{20,}",
        "[REDACTED_SLACK_TOKEN]",
        0,
    ),
    (
        "JSON Web Token",
        r"\beyJ[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}\.[A-Za-z0-9_-]{10,}",
        "[REDACTED_JWT]",
        0,
    ),
    ("Bearer Token", r"\bBearer\s+[A-Za-z0-9\-._~+/]+=*", "Bearer [REDACTED_TOKEN]", re.IGNORECASE),
    (
        "PEM Private Key Header",
        r"-----BEGIN (?:RSA |EC |DSA |OPENSSH )?PRIVATE KEY-----",
        "[REDACTED_PRIVATE_KEY]",
        0,
    ),
]

_EMAIL_PATTERN = r"\b[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}\b"


@lru_cache(maxsize=1)
def _builtin_rules() -> tuple[RedactionRule, ...]:
    return tuple(
        RedactionRule(name, re.compile(regex, flags), replacement)
        for name, regex, replacement, flags in _BUILTIN_PATTERNS
    )


@lru_cache(maxsize=1)
def _email_rule() -> RedactionRule:
    return RedactionRule("Email Address", re.compile(_EMAIL_PATTERN), REDACTED_EMAIL)


@lru_cache(maxsize=32)
def _custom_rules(patterns: tuple[str, ...]) -> tuple[RedactionRule, ...]:
    """Compile user regexes case-insensitively, skipping invalid ones."""
    rules: list[RedactionRule] = []
    for regex_str in patterns:
        try:
            compiled = re.compile(regex_str, re.IGNORECASE)
        except re.error as e:
            logger.debug(f"Skipping invalid redaction pattern {regex_str!r}: {e}")
            continue
        if compiled.match(""):
            # A pattern matching the empty string would splice markers everywhere
            logger.debug(f"Skipping redaction pattern that matches empty text: {regex_str!r}")
            continue
        rules.append(RedactionRule("Custom Pattern", compiled, REDACTED_CUSTOM))
    return tuple(rules)


def parse_yaml_patterns(path: Path) -> list[tuple[str, str]]:
    """Parse a YAML patterns file.

    Accepts the secrets-patterns-db layout
    (``patterns: [{pattern: {name, regex, confidence}}]``) and a flat
    ``patterns: [{name, regex}]`` list. Entries with a confidence other than
    ``high`` are ignored.

    Returns:
        List of (name, regex_str) pairs.
    """
    import yaml

    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except (OSError, yaml.YAMLError) as e:
        logger.warning(f"Failed to parse redaction patterns YAML: {e}")
        return []

    if not isinstance(data, dict):
        return []

    patterns: list[tuple[str, str]] = []
    for entry in data.get("patterns") or []:
        if not isinstance(entry, dict):
            continue
        pattern_info = entry.get("pattern", entry)
        if not isinstance(pattern_info, dict):
            continue

        confidence = str(pattern_info.get("confidence", "high")).lower()
        if confidence != "high":
            continue

        name = str(pattern_info.get("name", "unknown"))
        regex_str = pattern_info.get("regex", "")
        if isinstance(regex_str, str) and regex_str:
            patterns.append((name, regex_str))

    return patterns


@lru_cache(maxsize=8)
def _file_rules(path_str: str, mtime: float) -> tuple[RedactionRule, ...]:
    rules: list[RedactionRule] = []
    for name, regex_str in parse_yaml_patterns(Path(path_str)):
        try:
            rules.append(RedactionRule(name, re.compile(regex_str), REDACTED_CUSTOM))
        except re.error as e:
            logger.debug(f"Skipping invalid redaction pattern {name!r}: {e}")
    return tuple(rules)


def build_redaction_rules(privacy: PrivacyConfig) -> list[RedactionRule]:
    """Assemble the ordered rule list for a privacy configuration."""
    rules: list[RedactionRule] = []
    if privacy.redact_secrets:
        rules.extend(_builtin_rules())
    if privacy.redact_emails:
        rules.append(_email_rule())
    rules.extend(_custom_rules(tuple(privacy.additional_redaction_patterns)))

    if privacy.patterns_file:
        path = Path(privacy.patterns_file).expanduser()
        try:
            mtime = path.stat().st_mtime
        except OSError:
            logger.warning(f"Redaction patterns file not found: {path}")
        else:
            rules.extend(_file_rules(str(path), mtime))
    return rules


def redact_text(text: str, privacy: PrivacyConfig) -> str:
    """Return ``text`` with every configured pattern replaced by its label."""
    if not text:
        return text
    for rule in build_redaction_rules(privacy):
        text = rule.apply(text)
    return text
