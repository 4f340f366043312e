"""Candidate pools: entries, fallback documents and chunks for one scope."""

from lorevault.pool.models import CandidatePool, Chunk, Document, Entry, Note

__all__ = ["CandidatePool", "Chunk", "Document", "Entry", "Note"]
