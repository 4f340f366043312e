"""Tests for the CLI interface."""

from __future__ import annotations

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from lorevault.cli import main
from lorevault.config import load_config


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def project(runner: CliRunner, tmp_path: Path) -> Path:
    """A directory that has been initialized as a LoreVault project."""
    root = tmp_path / "project"
    root.mkdir()
    result = runner.invoke(main, ["init", "--path", str(root)])
    assert result.exit_code == 0, f"Init failed: {result.output}"
    return root


class TestCLIBasics:
    def test_version(self, runner: CliRunner):
        result = runner.invoke(main, ["--version"])
        assert result.exit_code == 0
        assert "lorevault" in result.output

    def test_help(self, runner: CliRunner):
        result = runner.invoke(main, ["--help"])
        assert result.exit_code == 0
        for command in ("init", "scopes", "query", "priorities", "export", "config"):
            assert command in result.output


class TestCLIInit:
    def test_init_creates_config(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["init", "--path", str(tmp_path)])
        assert result.exit_code == 0
        assert (tmp_path / ".lorevault" / "config.json").exists()
        assert "Configuration saved" in result.output

    def test_init_nonexistent_path(self, runner: CliRunner):
        result = runner.invoke(main, ["init", "--path", "/nonexistent/path"])
        assert result.exit_code != 0


class TestCLIConfig:
    def test_show(self, runner: CliRunner, project: Path):
        result = runner.invoke(main, ["config", "show", "--path", str(project)])
        assert result.exit_code == 0
        assert "max_graph_hops" in result.output

    def test_get(self, runner: CliRunner, project: Path):
        result = runner.invoke(
            main, ["config", "get", "retrieval.max_graph_hops", "--path", str(project)]
        )
        assert result.exit_code == 0
        assert "retrieval.max_graph_hops = 2" in result.output

    def test_get_unknown(self, runner: CliRunner, project: Path):
        result = runner.invoke(main, ["config", "get", "nope.key", "--path", str(project)])
        assert result.exit_code == 1

    def test_set(self, runner: CliRunner, project: Path):
        result = runner.invoke(
            main, ["config", "set", "retrieval.max_entries", "5", "--path", str(project)]
        )
        assert result.exit_code == 0
        assert load_config(project).retrieval.max_entries == 5

    def test_set_string_value(self, runner: CliRunner, project: Path):
        result = runner.invoke(
            main, ["config", "set", "scoping.membership_mode", "cascade", "--path", str(project)]
        )
        assert result.exit_code == 0
        assert load_config(project).scoping.membership_mode == "cascade"

    def test_set_unknown_key(self, runner: CliRunner, project: Path):
        result = runner.invoke(main, ["config", "set", "nope", "1", "--path", str(project)])
        assert result.exit_code == 1
        assert "Unknown config key" in result.output

    def test_set_invalid_value(self, runner: CliRunner, project: Path):
        result = runner.invoke(
            main, ["config", "set", "retrieval.max_graph_hops", "9", "--path", str(project)]
        )
        assert result.exit_code == 1
        assert load_config(project).retrieval.max_graph_hops == 2

    def test_missing_project(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["config", "show", "--path", str(tmp_path / "missing")])
        assert result.exit_code == 1


class TestCLIScopes:
    def test_scopes(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(main, ["scopes", str(vault_file)])
        assert result.exit_code == 0
        assert "world" in result.output
        assert "space" in result.output

    def test_missing_vault(self, runner: CliRunner, tmp_path: Path):
        result = runner.invoke(main, ["scopes", str(tmp_path / "missing.json")])
        assert result.exit_code != 0

    def test_invalid_vault(self, runner: CliRunner, tmp_path: Path):
        path = tmp_path / "vault.json"
        path.write_text("[{}]")
        result = runner.invoke(main, ["scopes", str(path)])
        assert result.exit_code == 1
        assert "Invalid vault snapshot" in result.output


class TestCLIQuery:
    def test_query_scope(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(main, ["query", str(vault_file), "aria", "--scope", "world"])
        assert result.exit_code == 0, result.output
        assert "### Aria" in result.output
        assert "Scope world" in result.output

    def test_query_all_scopes(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(main, ["query", str(vault_file), "ship"])
        assert result.exit_code == 0, result.output
        for scope in ("space", "world", "world/people"):
            assert f"Scope {scope}" in result.output

    def test_query_json(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(
            main, ["query", str(vault_file), "aria", "--scope", "world", "--json"]
        )
        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert list(data) == ["world"]
        assert data["world"]["world_info"][0]["entry"]["uid"] == 3
        assert data["world"]["used_tokens"] <= 2048

    def test_query_options(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(
            main,
            [
                "query", str(vault_file), "aria", "--scope", "world", "--json",
                "--budget", "500", "--hops", "0", "--fallback", "off", "--max-entries", "1",
            ],
        )
        assert result.exit_code == 0, result.output
        context = json.loads(result.output)["world"]
        assert [s["entry"]["uid"] for s in context["world_info"]] == [3]
        assert context["rag"] == []
        assert context["explainability"]["fallback"]["policy"] == "off"

    def test_query_explain(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(
            main, ["query", str(vault_file), "aria", "--scope", "world", "--explain"]
        )
        assert result.exit_code == 0, result.output
        assert "Retrieval paths" in result.output
        assert "Included entries:" in result.output

    def test_query_workers(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(main, ["query", str(vault_file), "aria", "--workers", "2"])
        assert result.exit_code == 0, result.output

    def test_invalid_query(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(main, ["query", str(vault_file), "aria", "--budget", "0"])
        assert result.exit_code == 1
        assert "Invalid query" in result.output


class TestCLIPriorities:
    def test_priorities(self, runner: CliRunner, vault_file: Path):
        result = runner.invoke(main, ["priorities", str(vault_file), "--scope", "world"])
        assert result.exit_code == 0, result.output
        assert "Priority: world" in result.output
        assert "Aria" in result.output


class TestCLIExport:
    def test_export(self, runner: CliRunner, vault_file: Path, tmp_path: Path):
        out = tmp_path / "out"
        result = runner.invoke(main, ["export", str(vault_file), "--output-dir", str(out)])
        assert result.exit_code == 0, result.output

        for stem in ("space", "world", "world-people"):
            assert (out / f"{stem}.json").exists()
            assert (out / f"{stem}.rag.md").exists()

        lorebook = json.loads((out / "world.json").read_text())
        assert list(lorebook["entries"]) == ["3", "6"]
        assert lorebook["entries"]["6"]["constant"] is True
        assert "Source: `world/Harbor.md`" in (out / "world.rag.md").read_text()
