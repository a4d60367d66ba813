"""Built-in tools: read_file, write_file, edit, list_directory, bash.

Relative paths resolve against the project root.  Failures are raised as
ToolError so the agent loop can hand them back to the model as text.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Any

from miniclaw.config import Settings
from miniclaw.tools.router import ToolError, ToolRouter

logger = logging.getLogger(__name__)

# Limits
DEFAULT_BASH_TIMEOUT = 30  # seconds
MAX_BASH_TIMEOUT = 300  # seconds
MAX_OUTPUT_BYTES = 100_000
MAX_LIST_ENTRIES = 500
DEFAULT_MAX_DEPTH = 3
_PREVIEW_CHARS = 80


def _resolve(path: str, project_root: str) -> Path:
    target = Path(path).expanduser()
    if not target.is_absolute():
        target = Path(project_root) / target
    return target


def truncate_output(data: bytes, max_bytes: int) -> str:
    """Decode ``data``, keeping its head and tail when it exceeds ``max_bytes``."""
    if len(data) <= max_bytes:
        return data.decode("utf-8", errors="replace")
    half = max_bytes // 2
    head = data[:half].decode("utf-8", errors="ignore")
    tail = data[-half:].decode("utf-8", errors="ignore")
    omitted = len(data) - 2 * half
    return f"{head}\n\n... ({omitted} bytes omitted) ...\n\n{tail}"


def format_size(size: int) -> str:
    if size >= 1_048_576:
        return f"{size / 1_048_576:.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"


# ---------------------------------------------------------------------------
# Tool handlers
# ---------------------------------------------------------------------------


async def read_file_tool(path: str, *, _project_root: str = ".") -> str:
    """Return the full text of a file."""
    target = _resolve(path, _project_root)
    try:
        return await asyncio.to_thread(target.read_text, encoding="utf-8", errors="replace")
    except OSError as e:
        raise ToolError(f"Failed to read file: {path}: {e}") from e


async def write_file_tool(path: str, content: str, *, _project_root: str = ".") -> str:
    """Create or overwrite a file, creating parent directories as needed."""
    target = _resolve(path, _project_root)
    try:
        await asyncio.to_thread(target.parent.mkdir, parents=True, exist_ok=True)
        await asyncio.to_thread(target.write_text, content, encoding="utf-8")
    except OSError as e:
        raise ToolError(f"Failed to write file: {path}: {e}") from e
    return f"Successfully wrote {len(content)} characters to file: {path}"


async def edit_tool(
    path: str,
    old_text: str,
    new_text: str,
    replace_all: bool = False,
    *,
    _project_root: str = ".",
) -> str:
    """Exact-match text replacement.

    Only the first occurrence is replaced unless ``replace_all`` is set.
    """
    target = _resolve(path, _project_root)
    try:
        content = await asyncio.to_thread(target.read_text, encoding="utf-8")
    except OSError as e:
        raise ToolError(f"Failed to read file: {path}: {e}") from e

    if not old_text or old_text not in content:
        preview = old_text if len(old_text) <= _PREVIEW_CHARS else old_text[:_PREVIEW_CHARS] + "..."
        raise ToolError(
            f"old_text not found in {path}. Make sure it matches exactly "
            f"(including whitespace and indentation).\nSearched for: {preview!r}"
        )

    if replace_all:
        count = content.count(old_text)
        updated = content.replace(old_text, new_text)
    else:
        count = 1
        updated = content.replace(old_text, new_text, 1)

    try:
        await asyncio.to_thread(target.write_text, updated, encoding="utf-8")
    except OSError as e:
        raise ToolError(f"Failed to write file: {path}: {e}") from e
    return f"Successfully replaced {count} occurrence(s) in {path}"


def _collect_entries(
    directory: Path, recursive: bool, max_depth: int, depth: int, entries: list[str]
) -> None:
    try:
        children = sorted(directory.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ToolError(f"Failed to read directory: {directory}: {e}") from e

    indent = "  " * depth
    for child in children:
        if len(entries) >= MAX_LIST_ENTRIES:
            return
        # Hidden entries are only skipped at the top level
        if depth == 0 and child.name.startswith("."):
            continue
        if child.is_dir():
            entries.append(f"{indent}{child.name}/")
            if recursive and depth < max_depth:
                _collect_entries(child, recursive, max_depth, depth + 1, entries)
        else:
            try:
                size = child.stat().st_size
            except OSError:
                size = 0
            entries.append(f"{indent}  {child.name} ({format_size(size)})")


async def list_directory_tool(
    path: str,
    recursive: bool = False,
    max_depth: int = DEFAULT_MAX_DEPTH,
    *,
    _project_root: str = ".",
) -> str:
    """Tree-style listing with file sizes."""
    target = _resolve(path, _project_root)
    if not target.exists():
        raise ToolError(f"Path does not exist: {path}")
    if not target.is_dir():
        raise ToolError(f"Path is not a directory: {path}")

    entries: list[str] = []
    await asyncio.to_thread(_collect_entries, target, recursive, max(0, max_depth), 0, entries)

    if not entries:
        return f"{path} (empty directory)"

    lines = [f"{path}  ({len(entries)} entries)", *entries]
    if len(entries) >= MAX_LIST_ENTRIES:
        lines.append(f"... (truncated at {MAX_LIST_ENTRIES} entries)")
    return "\n".join(lines) + "\n"


async def bash_tool(
    command: str,
    timeout: int = DEFAULT_BASH_TIMEOUT,
    *,
    _project_root: str = ".",
    _max_timeout: int = MAX_BASH_TIMEOUT,
) -> str:
    """Run ``bash -c command`` in the project root.

    The process is killed once the (clamped) timeout expires.
    """
    effective_timeout = max(1, min(int(timeout), _max_timeout))

    try:
        proc = await asyncio.create_subprocess_exec(
            "bash",
            "-c",
            command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=_project_root,
        )
    except OSError as e:
        raise ToolError(f"Failed to execute command: {e}") from e

    try:
        stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=effective_timeout)
    except asyncio.TimeoutError:
        proc.kill()
        await proc.wait()
        raise ToolError(f"Command timed out after {effective_timeout}s: {command}") from None

    exit_code = proc.returncode if proc.returncode is not None else -1

    result = ""
    if stdout:
        result = truncate_output(stdout, MAX_OUTPUT_BYTES)
    if stderr:
        if result:
            result += "\n"
        result += "[stderr]\n" + truncate_output(stderr, MAX_OUTPUT_BYTES // 2)

    if not result:
        return f"(no output, exit code: {exit_code})"
    if exit_code != 0:
        result += f"\n[exit code: {exit_code}]"
    return result


# ---------------------------------------------------------------------------
# Tool schemas
# ---------------------------------------------------------------------------

_READ_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": "Read the contents of a file at the given path. Returns the full text content of the file.",
    "properties": {
        "path": {"type": "string", "description": "The path to the file to read"},
    },
    "required": ["path"],
}

_WRITE_FILE_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Write content to a file at the given path. "
        "Creates the file if it doesn't exist, overwrites if it does."
    ),
    "properties": {
        "path": {"type": "string", "description": "The path to the file to write"},
        "content": {"type": "string", "description": "The content to write to the file"},
    },
    "required": ["path", "content"],
}

_EDIT_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "Make a precise text replacement in a file. old_text must match exactly "
        "(including whitespace and indentation). Only the first occurrence is "
        "replaced by default; set replace_all to true to replace all."
    ),
    "properties": {
        "path": {"type": "string", "description": "The path to the file to edit"},
        "old_text": {"type": "string", "description": "The exact text to find in the file"},
        "new_text": {"type": "string", "description": "The text to replace old_text with"},
        "replace_all": {
            "type": "boolean",
            "description": "If true, replace all occurrences (default: false)",
            "default": False,
        },
    },
    "required": ["path", "old_text", "new_text"],
}

_LIST_DIRECTORY_SCHEMA: dict[str, Any] = {
    "type": "object",
    "description": (
        "List files and directories at the given path. Supports recursive "
        "listing with configurable depth. Returns a tree-style listing with file sizes."
    ),
    "properties": {
        "path": {"type": "string", "description": "The directory path to list"},
        "recursive": {
            "type": "boolean",
            "description": "Whether to list recursively (default: false)",
            "default": False,
        },
        "max_depth": {
            "type": "integer",
            "description": "Maximum recursion depth (default: 3, only used when recursive is true)",
            "default": DEFAULT_MAX_DEPTH,
            "minimum": 0,
        },
    },
    "required": ["path"],
}


def _bash_schema(max_timeout: int) -> dict[str, Any]:
    return {
        "type": "object",
        "description": (
            "Execute a shell command via bash. Returns stdout and stderr. Use this for "
            "running build commands, searching files (grep/rg/find), git operations, "
            "installing packages, etc."
        ),
        "properties": {
            "command": {"type": "string", "description": "The shell command to execute"},
            "timeout": {
                "type": "integer",
                "description": f"Timeout in seconds (default {DEFAULT_BASH_TIMEOUT}, max {max_timeout})",
                "default": DEFAULT_BASH_TIMEOUT,
                "minimum": 1,
                "maximum": max_timeout,
            },
        },
        "required": ["command"],
    }


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------


def register_builtin_tools(router: ToolRouter, settings: Settings) -> None:
    """Register the five built-in tools, bound to the configured project root."""
    root = str(Path(settings.project_root).expanduser())
    default_timeout = settings.bash_timeout
    max_timeout = settings.bash_max_timeout

    async def _read_file(path: str) -> str:
        return await read_file_tool(path, _project_root=root)

    async def _write_file(path: str, content: str) -> str:
        return await write_file_tool(path, content, _project_root=root)

    async def _edit(path: str, old_text: str, new_text: str, replace_all: bool = False) -> str:
        return await edit_tool(path, old_text, new_text, replace_all, _project_root=root)

    async def _list_directory(
        path: str, recursive: bool = False, max_depth: int = DEFAULT_MAX_DEPTH
    ) -> str:
        return await list_directory_tool(path, recursive, max_depth, _project_root=root)

    async def _bash(command: str, timeout: int = default_timeout) -> str:
        return await bash_tool(command, timeout, _project_root=root, _max_timeout=max_timeout)

    router.register("read_file", _read_file, _READ_FILE_SCHEMA)
    router.register("write_file", _write_file, _WRITE_FILE_SCHEMA)
    router.register("edit", _edit, _EDIT_SCHEMA)
    router.register("list_directory", _list_directory, _LIST_DIRECTORY_SCHEMA)
    router.register("bash", _bash, _bash_schema(max_timeout))


def create_default_router(settings: Settings) -> ToolRouter:
    router = ToolRouter()
    register_builtin_tools(router, settings)
    return router
