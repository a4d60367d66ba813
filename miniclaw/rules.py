"""Project rule files appended to the system prompt.

Rule files are collected from every ancestor of the project root (the
filesystem root first), then the project root itself, then its
``.miniclaw/`` directory, so the most specific rules come last.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

RULE_FILENAMES = ("AGENTS.md", "CLAUDE.md")
RULES_SUBDIR = ".miniclaw"


@dataclass
class RuleFile:
    path: Path
    content: str


def _try_load(directory: Path, out: list[RuleFile]) -> None:
    for filename in RULE_FILENAMES:
        path = directory / filename
        if not path.is_file():
            continue
        try:
            content = path.read_text(encoding="utf-8")
        except OSError as e:
            logger.warning("Could not read rule file %s: %s", path, e)
            continue
        if content.strip():
            out.append(RuleFile(path=path, content=content))


def load_rules(project_root: Path) -> list[RuleFile]:
    """Discover rule files for ``project_root`` in application order."""
    try:
        root = project_root.resolve(strict=True)
    except OSError:
        root = project_root

    ancestors: list[RuleFile] = []
    for directory in reversed(root.parents):
        _try_load(directory, ancestors)
        _try_load(directory / RULES_SUBDIR, ancestors)

    rules = ancestors
    _try_load(root, rules)
    _try_load(root / RULES_SUBDIR, rules)
    return rules


def build_rules_context(project_root: Path) -> str | None:
    """Concatenate all rule files, or None if there are none."""
    rules = load_rules(project_root)
    if not rules:
        return None
    parts = [f"# Rules from {rule.path}\n\n{rule.content.strip()}" for rule in rules]
    return "\n\n---\n\n".join(parts)


def build_system_prompt(base: str, project_root: Path) -> str:
    """Base system prompt, augmented with project rules when present."""
    rules = build_rules_context(project_root)
    if rules is None:
        return base
    logger.info("Loaded project rules for %s", project_root)
    return f"{base}\n\n<project_rules>\n{rules}\n</project_rules>"
