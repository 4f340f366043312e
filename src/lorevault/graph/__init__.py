"""Entry link graph and graph-derived priority."""

from lorevault.graph.index import GraphIndex
from lorevault.graph.links import LinkTargetIndex, extract_wikilinks
from lorevault.graph.priority import PriorityEngine

__all__ = ["GraphIndex", "LinkTargetIndex", "PriorityEngine", "extract_wikilinks"]
