"""LoreVault - graph-ranked lorebook retrieval and budgeted context assembly."""

__version__ = "0.1.0"
