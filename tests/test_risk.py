"""Unit tests for miniclaw/tools/risk.py -- tool call risk tiers."""

import json

import pytest

from miniclaw.tools.risk import (
    RiskLevel,
    classify,
    classify_command,
    describe_tool_call,
    has_dangerous_redirect,
    is_safe_redirect_target,
)


def _bash(command: str) -> str:
    return json.dumps({"command": command})


class TestToolMapping:
    """Fixed tiers for non-shell tools."""

    def test_read_only_tools_are_safe(self):
        """read_file and list_directory never need confirmation."""
        assert classify("read_file", "{}") == RiskLevel.SAFE
        assert classify("list_directory", "{}") == RiskLevel.SAFE

    def test_mutating_tools_are_moderate(self):
        """write_file and edit run without confirmation but are flagged."""
        assert classify("write_file", "{}") == RiskLevel.MODERATE
        assert classify("edit", "{}") == RiskLevel.MODERATE

    def test_unknown_tool_is_moderate(self):
        """Tools the classifier has never heard of default to Moderate."""
        assert classify("web_fetch", '{"url": "https://example.com"}') == RiskLevel.MODERATE

    def test_levels_are_ordered(self):
        """Safe < Moderate < Dangerous."""
        assert RiskLevel.SAFE < RiskLevel.MODERATE < RiskLevel.DANGEROUS
        assert max(RiskLevel.SAFE, RiskLevel.DANGEROUS) == RiskLevel.DANGEROUS


class TestBashCommands:
    """Shell command heuristics."""

    @pytest.mark.parametrize(
        "command",
        [
            "ls -la",
            "cat src/main.rs",
            "grep -rn TODO src/",
            "cargo test",
            "git status",
            "echo hello",
            "find . -name '*.rs'",
            "rg pattern src/",
            "/usr/bin/ls -la",
        ],
    )
    def test_safe_commands(self, command):
        """Read-only and build commands are Safe."""
        assert classify("bash", _bash(command)) == RiskLevel.SAFE

    @pytest.mark.parametrize(
        "command",
        [
            "rm -rf /tmp/test",
            "sudo apt-get install foo",
            "kill -9 1234",
            "chmod 777 /etc/passwd",
            "dd if=/dev/zero of=/dev/sda",
            "cat /etc/passwd | sudo tee /etc/shadow",
        ],
    )
    def test_dangerous_commands(self, command):
        """Denylisted first words anywhere in a pipeline are Dangerous."""
        assert classify("bash", _bash(command)) == RiskLevel.DANGEROUS

    @pytest.mark.parametrize(
        "command",
        ["cp file1 file2", "tar xf archive.tar", "wget https://example.com/file"],
    )
    def test_moderate_commands(self, command):
        """Everything else is Moderate."""
        assert classify("bash", _bash(command)) == RiskLevel.MODERATE

    def test_compound_takes_maximum(self):
        """A compound command is as risky as its riskiest part."""
        assert classify("bash", _bash("ls -la && echo done")) == RiskLevel.SAFE
        assert classify("bash", _bash("ls -la || echo fallback")) == RiskLevel.SAFE
        assert classify("bash", _bash("ls && rm -rf /")) == RiskLevel.DANGEROUS
        assert classify("bash", _bash("ls && cp a b")) == RiskLevel.MODERATE

    def test_dangerous_part_after_moderate_part(self):
        """A Dangerous part later in the chain still wins."""
        assert classify_command("cp a b && echo ok || reboot") == RiskLevel.DANGEROUS

    def test_missing_or_invalid_arguments(self):
        """Unparseable arguments classify the empty command."""
        assert classify("bash", "not json") == RiskLevel.SAFE
        assert classify("bash", "{}") == RiskLevel.SAFE


class TestRedirects:
    """Output redirection targets."""

    def test_redirect_to_system_file_is_dangerous(self):
        assert classify("bash", _bash("echo x > /etc/hosts")) == RiskLevel.DANGEROUS

    def test_append_to_project_file_is_dangerous(self):
        assert classify("bash", _bash("echo x >> notes.txt")) == RiskLevel.DANGEROUS

    def test_redirect_to_dev_null_is_safe(self):
        assert classify("bash", _bash("echo x 2>/dev/null")) == RiskLevel.SAFE
        assert classify("bash", _bash("cat file 2> /dev/null")) == RiskLevel.SAFE
        assert classify("bash", _bash("ls -l hello* 2>/dev/null || echo not found")) == RiskLevel.SAFE

    def test_fd_duplication_is_safe(self):
        assert not has_dangerous_redirect("make 2>&1")
        assert is_safe_redirect_target("&1")
        assert not is_safe_redirect_target("&")

    def test_temp_dirs_are_safe_targets(self):
        """/tmp and /var/tmp are exempt, but not look-alike paths."""
        assert is_safe_redirect_target("/tmp")
        assert is_safe_redirect_target("/tmp/build.log")
        assert is_safe_redirect_target("/var/tmp/x")
        assert not is_safe_redirect_target("/tmpfoo")
        assert not is_safe_redirect_target("/var/tmpx/log")

    def test_background_app_logging_to_tmp_is_safe(self):
        """Start an app in the background, log to /tmp, then read the log."""
        command = (
            'cd /root/code/todo_app && python3 -c "from app import app; app.run()" '
            "> /tmp/todo_app.log 2>&1 & sleep 2 && cat /tmp/todo_app.log"
        )
        assert classify("bash", _bash(command)) == RiskLevel.SAFE


class TestDescribeToolCall:
    """Confirmation prompt text."""

    def test_bash_shows_command(self):
        assert "ls -la" in describe_tool_call("bash", _bash("ls -la"))

    def test_file_tools_show_path(self):
        assert "src/main.rs" in describe_tool_call("edit", '{"path": "src/main.rs"}')
        assert "out.txt" in describe_tool_call("write_file", '{"path": "out.txt"}')

    def test_unknown_tool_shows_name(self):
        assert describe_tool_call("custom", "{}") == "Call tool: custom"
