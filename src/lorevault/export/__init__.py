"""Lorebook JSON and fallback markdown export."""

from lorevault.export.lorebook import (
    build_lorebook,
    render_rag_markdown,
    write_lorebook,
    write_rag_markdown,
)

__all__ = ["build_lorebook", "render_rag_markdown", "write_lorebook", "write_rag_markdown"]
