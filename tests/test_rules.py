"""Tests for project rule discovery and system prompt assembly."""

from miniclaw.rules import build_rules_context, build_system_prompt, load_rules


class TestLoadRules:
    def test_no_rules(self, tmp_path):
        assert build_rules_context(tmp_path) is None
        assert build_system_prompt("base", tmp_path) == "base"

    def test_order_most_specific_last(self, tmp_path):
        project = tmp_path / "work" / "project"
        (project / ".miniclaw").mkdir(parents=True)
        (tmp_path / "work" / "AGENTS.md").write_text("parent rule")
        (project / "AGENTS.md").write_text("project rule")
        (project / "CLAUDE.md").write_text("claude rule")
        (project / ".miniclaw" / "AGENTS.md").write_text("local rule")

        contents = [r.content for r in load_rules(project)]
        assert contents == ["parent rule", "project rule", "claude rule", "local rule"]

    def test_blank_files_ignored(self, tmp_path):
        (tmp_path / "AGENTS.md").write_text("   \n")
        assert load_rules(tmp_path) == []

    def test_prompt_wraps_rules(self, tmp_path):
        (tmp_path / "AGENTS.md").write_text("Use tabs.\n")
        prompt = build_system_prompt("You help.", tmp_path)
        assert prompt.startswith("You help.\n\n<project_rules>\n")
        assert f"# Rules from {tmp_path.resolve() / 'AGENTS.md'}" in prompt
        assert "Use tabs." in prompt
        assert prompt.endswith("</project_rules>")

    def test_missing_project_root(self, tmp_path):
        assert load_rules(tmp_path / "does-not-exist") == []
