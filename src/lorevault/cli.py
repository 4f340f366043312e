"""Command-line interface for LoreVault."""

from __future__ import annotations

import json
import logging
import sys
from pathlib import Path

import click

from lorevault import __version__
from lorevault.config import (
    CONFIG_FILE,
    LOREVAULT_DIR,
    FallbackPolicy,
    ProjectConfig,
    find_project_root,
    load_config,
    save_config,
    set_config_value,
)
from lorevault.exceptions import ConfigError, ExportError, InvalidQueryError, VaultError
from lorevault.pool.models import CandidatePool, Note
from lorevault.ui.console import Console

console = Console()


def _configure_logging(verbose: bool) -> None:
    if not verbose:
        return
    from rich.logging import RichHandler

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(name)s: %(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console.console, rich_tracebacks=True)],
    )


def _get_project_root(path: str | None = None) -> Path:
    """Find the project root or error."""
    if path:
        root = Path(path).resolve()
        if not root.exists():
            console.error(f"Path does not exist: {path}")
            sys.exit(1)
        return root

    root = find_project_root()
    if root is None:
        console.error(
            "No LoreVault project found. Run 'lorevault init' first, "
            "or specify a path with --path."
        )
        sys.exit(1)
    return root


def _load_project_config(path: str | None) -> ProjectConfig:
    """Project config when a project exists, defaults otherwise."""
    root = Path(path).resolve() if path else find_project_root()
    if root is None:
        return ProjectConfig()
    try:
        return load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)


def _load_notes(vault: str) -> list[Note]:
    from lorevault.pool.vault import load_notes

    try:
        return load_notes(Path(vault))
    except VaultError as e:
        console.error(str(e))
        sys.exit(1)


def _build_pools(
    notes: list[Note], config: ProjectConfig, scopes: tuple[str, ...]
) -> list[CandidatePool]:
    """Pools for the requested scopes, or every discovered scope (root if none)."""
    from lorevault.pool.scoping import build_scope_pool, discover_scopes

    selected = list(scopes) or discover_scopes(notes, config.scoping.tag_prefix) or [""]
    return [build_scope_pool(notes, scope, config) for scope in selected]


@click.group()
@click.version_option(version=__version__, prog_name="lorevault")
@click.option("--verbose", "-v", is_flag=True, help="Log pipeline stages to the terminal.")
def main(verbose: bool):
    """LoreVault - graph-ranked lorebook retrieval and budgeted context assembly."""
    _configure_logging(verbose)


@main.command()
@click.option("--path", "-p", default=None, help="Path to the project root.")
def init(path: str | None):
    """Create .lorevault/config.json with default settings."""
    root = Path(path or ".").resolve()
    if not root.exists():
        console.error(f"Path does not exist: {root}")
        sys.exit(1)

    console.banner()
    try:
        config = load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)
    config.name = config.name or root.name
    save_config(root, config)
    console.success(f"Configuration saved to {LOREVAULT_DIR}/{CONFIG_FILE}")


@main.command()
@click.argument("vault", type=click.Path(exists=True, dir_okay=False))
@click.option("--path", "-p", default=None, help="Path to the project root.")
def scopes(vault: str, path: str | None):
    """List the lorebook scopes found in a vault snapshot."""
    config = _load_project_config(path)
    notes = _load_notes(vault)
    pools = _build_pools(notes, config, ())
    console.show_scopes(pools)


@main.command()
@click.argument("vault", type=click.Path(exists=True, dir_okay=False))
@click.argument("text")
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--scope", "-s", "scope_names", multiple=True, help="Scope(s) to query (default: all).")
@click.option("--budget", "-b", default=2048, type=int, help="Token budget (default: 2048).")
@click.option("--hops", type=int, default=None, help="Max graph hops (0-3).")
@click.option("--decay", type=float, default=None, help="Hop decay factor (0.2-0.9).")
@click.option(
    "--fallback",
    type=click.Choice([p.value for p in FallbackPolicy]),
    default=None,
    help="Fallback search policy.",
)
@click.option("--threshold", type=float, default=None, help="Fallback seed-confidence threshold.")
@click.option("--max-entries", type=int, default=None, help="Max world_info entries.")
@click.option("--max-documents", type=int, default=None, help="Max fallback documents.")
@click.option("--ratio", type=float, default=None, help="Share of the budget for entries.")
@click.option("--backlinks", is_flag=True, default=None, help="Also expand along inbound links.")
@click.option("--workers", type=int, default=None, help="Assemble scopes on a thread pool.")
@click.option("--explain", is_flag=True, help="Show the explainability report.")
@click.option("--json", "as_json", is_flag=True, help="Print assembled contexts as JSON.")
def query(
    vault: str, text: str, path: str | None, scope_names: tuple[str, ...], budget: int,
    hops: int | None, decay: float | None, fallback: str | None, threshold: float | None,
    max_entries: int | None, max_documents: int | None, ratio: float | None,
    backlinks: bool | None, workers: int | None, explain: bool, as_json: bool,
):
    """Assemble budgeted lore context for TEXT from a vault snapshot.

    Examples:

        lorevault query vault.json "who rules the city of aria"

        lorevault query vault.json "aria" --scope world --budget 800 --explain
    """
    from lorevault.context.engine import ScopeContextAssembler, build_query
    from lorevault.pool.scoping import build_link_index

    config = _load_project_config(path)
    notes = _load_notes(vault)

    try:
        q = build_query(
            text, budget, config,
            max_graph_hops=hops,
            graph_hop_decay=decay,
            fallback_policy=fallback,
            fallback_seed_threshold=threshold,
            max_entries=max_entries,
            max_documents=max_documents,
            entry_budget_ratio=ratio,
            include_backlinks=backlinks or None,
        )
    except InvalidQueryError as e:
        console.error(str(e))
        sys.exit(1)

    pools = _build_pools(notes, config, scope_names)
    assembler = ScopeContextAssembler(config, link_resolver=build_link_index(notes))
    result = assembler.assemble_batch(pools, q, max_workers=workers)

    if as_json:
        payload = {
            o.scope: (
                o.context.model_dump(mode="json") if o.context is not None
                else {"error": o.error}
            )
            for o in result.outcomes
        }
        click.echo(json.dumps(payload, indent=2, ensure_ascii=False))
    else:
        console.show_batch(result, explain=explain)

    if not result.ok:
        sys.exit(1)


@main.command()
@click.argument("vault", type=click.Path(exists=True, dir_okay=False))
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--scope", "-s", "scope_names", multiple=True, help="Scope(s) to rank (default: all).")
@click.option("--limit", "-n", default=20, type=int, help="Rows per scope (0 for all).")
def priorities(vault: str, path: str | None, scope_names: tuple[str, ...], limit: int):
    """Show graph-derived entry priorities per scope."""
    from lorevault.graph.index import GraphIndex
    from lorevault.graph.priority import PriorityEngine
    from lorevault.pool.scoping import build_link_index

    config = _load_project_config(path)
    notes = _load_notes(vault)
    resolver = build_link_index(notes)
    engine = PriorityEngine(config.priority.weights, infer_root=config.priority.infer_root)

    for pool in _build_pools(notes, config, scope_names):
        graph = GraphIndex.build(pool.entries, resolver)
        order = engine.compute_order(pool.entries, graph, config.priority.root_uid)
        console.show_priorities(pool, order, limit)


@main.command()
@click.argument("vault", type=click.Path(exists=True, dir_okay=False))
@click.option("--path", "-p", default=None, help="Path to the project root.")
@click.option("--scope", "-s", "scope_names", multiple=True, help="Scope(s) to export (default: all).")
@click.option(
    "--output-dir", "-o", default="lorevault-export",
    type=click.Path(file_okay=False), help="Output directory.",
)
def export(vault: str, path: str | None, scope_names: tuple[str, ...], output_dir: str):
    """Export each scope as lorebook JSON plus a fallback markdown pack."""
    from lorevault.export.lorebook import build_lorebook, write_lorebook, write_rag_markdown
    from lorevault.graph.index import GraphIndex
    from lorevault.graph.priority import PriorityEngine
    from lorevault.pool.scoping import build_link_index

    config = _load_project_config(path)
    notes = _load_notes(vault)
    resolver = build_link_index(notes)
    engine = PriorityEngine(config.priority.weights, infer_root=config.priority.infer_root)
    out = Path(output_dir)

    for pool in _build_pools(notes, config, scope_names):
        graph = GraphIndex.build(pool.entries, resolver)
        order = engine.compute_order(pool.entries, graph, config.priority.root_uid)
        stem = (pool.scope or "all").replace("/", "-")
        try:
            lorebook_path = write_lorebook(
                out / f"{stem}.json", build_lorebook(pool.entries, order, config.lorebook)
            )
            rag_path = write_rag_markdown(out / f"{stem}.rag.md", pool.documents, pool.scope)
        except ExportError as e:
            console.error(str(e))
            sys.exit(1)
        console.success(
            f"{pool.scope or '(all)'}: {len(pool.entries)} entries -> {lorebook_path}, "
            f"{len(pool.documents)} documents -> {rag_path}"
        )


@main.command("config")
@click.argument("action", type=click.Choice(["set", "get", "show"]))
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.option("--path", "-p", default=None, help="Path to the project root.")
def config_cmd(action: str, key: str | None, value: str | None, path: str | None):
    """Manage LoreVault configuration."""
    root = _get_project_root(path)
    try:
        config = load_config(root)
    except ConfigError as e:
        console.error(str(e))
        sys.exit(1)

    if action == "show":
        console.console.print_json(json.dumps(config.model_dump(mode="json"), indent=2))
    elif action == "get":
        if not key:
            console.error("Usage: lorevault config get <key>")
            sys.exit(1)
        data = config.model_dump(mode="json")
        for part in key.split("."):
            if isinstance(data, dict) and part in data:
                data = data[part]
            else:
                console.error(f"Unknown key: {key}")
                sys.exit(1)
        console.console.print(f"{key} = {data}")
    elif action == "set":
        if not key or value is None:
            console.error("Usage: lorevault config set <key> <value>")
            sys.exit(1)
        # Try to parse as JSON for non-string values
        try:
            parsed_value = json.loads(value)
        except json.JSONDecodeError:
            parsed_value = value

        try:
            config = set_config_value(config, key, parsed_value)
        except KeyError:
            console.error(f"Unknown config key: {key}")
            sys.exit(1)
        except ConfigError as e:
            console.error(str(e))
            sys.exit(1)
        save_config(root, config)
        console.success(f"Set {key} = {parsed_value}")


if __name__ == "__main__":
    main()
