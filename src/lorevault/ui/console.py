"""Rich-powered console output for LoreVault."""

from __future__ import annotations

from rich.console import Console as RichConsole
from rich.panel import Panel
from rich.table import Table
from rich.text import Text
from rich.tree import Tree

from lorevault import __version__
from lorevault.context.engine import BatchResult
from lorevault.context.models import AssembledContext
from lorevault.pool.models import CandidatePool


class Console:
    """Terminal output for LoreVault using Rich."""

    def __init__(self) -> None:
        self.console = RichConsole()

    def banner(self) -> None:
        self.console.print(
            Panel(
                f"[bold magenta]LoreVault[/bold magenta] [dim]v{__version__}[/dim]\n"
                "[dim]Graph-ranked lorebook retrieval[/dim]",
                border_style="magenta",
                padding=(1, 2),
            )
        )

    def success(self, message: str) -> None:
        self.console.print(f"[green]✓[/green] {message}")

    def error(self, message: str) -> None:
        self.console.print(f"[red]✗[/red] {message}")

    def warning(self, message: str) -> None:
        self.console.print(f"[yellow]![/yellow] {message}")

    def info(self, message: str) -> None:
        self.console.print(f"[blue]i[/blue] {message}")

    def raw(self, text: str) -> None:
        """Print text verbatim (no markup, no highlighting)."""
        self.console.print(text, markup=False, highlight=False, soft_wrap=True)

    def show_scopes(self, pools: list[CandidatePool]) -> None:
        """Table of scopes with their pool sizes."""
        table = Table(title="Lorebook Scopes", border_style="magenta")
        table.add_column("Scope", style="bold")
        table.add_column("Entries", justify="right", style="cyan")
        table.add_column("Documents", justify="right", style="cyan")
        table.add_column("Chunks", justify="right", style="cyan")

        for pool in pools:
            table.add_row(
                pool.scope or "(all)",
                str(len(pool.entries)),
                str(len(pool.documents)),
                str(len(pool.chunks)),
            )
        self.console.print(table)

    def show_priorities(self, pool: CandidatePool, order: dict[int, int], limit: int = 0) -> None:
        """Entries ranked by graph priority."""
        entries = pool.entry_map()
        ranked = sorted(order.items(), key=lambda kv: (-kv[1], kv[0]))
        if limit > 0:
            ranked = ranked[:limit]

        table = Table(title=f"Priority: {pool.scope or '(all)'}", border_style="magenta")
        table.add_column("Order", justify="right", style="cyan")
        table.add_column("UID", justify="right")
        table.add_column("Title", style="bold")
        table.add_column("Group", style="dim")
        for uid, value in ranked:
            entry = entries[uid]
            table.add_row(str(value), str(uid), entry.title, entry.group)
        self.console.print(table)

    def show_context(self, context: AssembledContext, explain: bool = False) -> None:
        """Summary panel, optional explainability tree, then the context block."""
        fb = context.explainability.fallback
        self.console.print(
            Panel(
                f"[bold]Tokens:[/bold] {context.used_tokens:,} / {context.token_budget:,}\n"
                f"[bold]world_info:[/bold] {len(context.world_info)} entries\n"
                f"[bold]rag:[/bold] {len(context.rag)} documents "
                f"[dim](fallback {'on' if fb.enabled else 'off'}, "
                f"confidence {fb.seed_confidence:.0f} / {fb.threshold:g})[/dim]",
                title=f"[bold]Scope {context.scope or '(all)'}[/bold]",
                border_style="green" if not context.is_empty else "yellow",
            )
        )

        if explain:
            self.show_explain_tree(context)
            self.raw(context.summary())
            self.console.print()

        if context.is_empty:
            self.warning("No entries or documents matched this query.")
        self.raw(context.markdown)

    def show_explain_tree(self, context: AssembledContext) -> None:
        """Seed -> reached entries, as a tree of traversal paths."""
        tree = Tree(Text("Retrieval paths", style="bold"))
        nodes: dict[int, Tree] = {}
        for item in sorted(context.world_info, key=lambda i: (i.hop_distance, i.uid)):
            label = f"[{item.uid}] {item.entry.title} ({item.content_tier.value})"
            parent_uid = item.path_uids[-2] if len(item.path_uids) > 1 else None
            parent = nodes.get(parent_uid, tree) if parent_uid is not None else tree
            nodes[item.uid] = parent.add(Text(label))
        self.console.print(tree)

    def show_batch(self, result: BatchResult, explain: bool = False) -> None:
        for outcome in result.outcomes:
            if outcome.context is not None:
                self.show_context(outcome.context, explain=explain)
            else:
                self.error(outcome.error or f"Scope '{outcome.scope}' failed")
