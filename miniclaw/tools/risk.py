"""Risk tiers for tool calls.

A best-effort static heuristic over shell command text, not a sandbox.
Dangerous calls need an explicit yes from the user before they run;
Safe and Moderate calls run immediately.
"""

from __future__ import annotations

import json
from enum import IntEnum
from typing import Any


class RiskLevel(IntEnum):
    SAFE = 0
    MODERATE = 1
    DANGEROUS = 2

    @property
    def label(self) -> str:
        return self.name.lower()


SAFE_TOOLS = frozenset({"read_file", "list_directory"})
MODERATE_TOOLS = frozenset({"write_file", "edit"})
SHELL_TOOL = "bash"

# First words that escalate any pipeline stage to Dangerous
DANGEROUS_COMMAND_WORDS = (
    "rm", "rmdir", "sudo", "su", "kill", "pkill", "killall",
    "chmod", "chown", "chgrp", "dd", "mkfs", "fdisk", "parted",
    "mount", "umount", "shutdown", "reboot", "systemctl", "service",
    "iptables", "useradd", "userdel", "passwd",
)

# First words of read-only / build commands
SAFE_COMMAND_WORDS = (
    "ls", "cat", "head", "tail", "less", "more", "wc", "echo", "printf",
    "pwd", "whoami", "which", "where", "type", "file", "stat", "du", "df",
    "date", "uname", "env", "printenv", "grep", "rg", "find", "fd", "ag",
    "awk", "sed", "sort", "uniq", "diff", "tree", "git", "cargo", "rustc",
    "rustup", "npm", "node", "python", "python3", "pip", "pip3", "go",
    "make", "cmake", "docker", "kubectl", "cd", "sleep",
)

TEMP_DIRS = ("/tmp", "/var/tmp")


def _parse_args(arguments: str) -> dict[str, Any]:
    try:
        value = json.loads(arguments)
    except (json.JSONDecodeError, TypeError):
        return {}
    return value if isinstance(value, dict) else {}


def _first_word(text: str) -> str:
    words = text.split()
    return words[0] if words else ""


def is_safe_redirect_target(target: str) -> bool:
    """``/dev/null``, fd duplication (``&1``) and temp-dir paths are harmless."""
    t = target.strip()
    if not t or t == "/dev/null":
        return True
    if len(t) > 1 and t[0] == "&" and t[1:].isdigit():
        return True
    return any(t == d or t.startswith(d + "/") for d in TEMP_DIRS)


def has_dangerous_redirect(command: str) -> bool:
    """True if any ``>`` / ``>>`` writes to something other than a safe target."""
    i = 0
    n = len(command)
    while i < n:
        if command[i] == ">":
            j = i + 1
            if j < n and command[j] == ">":
                j += 1
            while j < n and command[j] == " ":
                j += 1
            end = j
            while end < n and not command[end].isspace():
                end += 1
            target = command[j:end]
            if target and not is_safe_redirect_target(target):
                return True
        i += 1
    return False


def _classify_single(command: str) -> RiskLevel:
    for stage in command.split("|"):
        if _first_word(stage) in DANGEROUS_COMMAND_WORDS:
            return RiskLevel.DANGEROUS

    if has_dangerous_redirect(command):
        return RiskLevel.DANGEROUS

    first = _first_word(command)
    for word in SAFE_COMMAND_WORDS:
        if first == word or ("/" in first and first.endswith(word)):
            return RiskLevel.SAFE
    return RiskLevel.MODERATE


def classify_command(command: str) -> RiskLevel:
    """Risk of a shell command line: the maximum over its ``&&``/``||`` parts."""
    parts = [
        part.strip()
        for chunk in command.strip().split("&&")
        for part in chunk.split("||")
    ]
    worst = RiskLevel.SAFE
    for part in parts:
        if not part:
            continue
        level = _classify_single(part)
        if level == RiskLevel.DANGEROUS:
            return level
        worst = max(worst, level)
    return worst


def classify(tool_name: str, arguments: str) -> RiskLevel:
    """Risk tier for a tool call; unknown tools are Moderate."""
    if tool_name in SAFE_TOOLS:
        return RiskLevel.SAFE
    if tool_name in MODERATE_TOOLS:
        return RiskLevel.MODERATE
    if tool_name == SHELL_TOOL:
        command = _parse_args(arguments).get("command")
        return classify_command(command if isinstance(command, str) else "")
    return RiskLevel.MODERATE


def describe_tool_call(tool_name: str, arguments: str) -> str:
    """Human-readable one-liner for a confirmation prompt."""
    args = _parse_args(arguments)
    if tool_name == SHELL_TOOL:
        return f"Run command: {args.get('command', '?')}"
    if tool_name == "write_file":
        return f"Write file: {args.get('path', '?')}"
    if tool_name == "edit":
        return f"Edit file: {args.get('path', '?')}"
    if tool_name == "read_file":
        return f"Read file: {args.get('path', '?')}"
    return f"Call tool: {tool_name}"
