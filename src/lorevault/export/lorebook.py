"""Export scope pools as SillyTavern lorebook JSON and fallback markdown packs."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Iterable

from lorevault.config import LoreBookSettings
from lorevault.exceptions import ExportError
from lorevault.pool.models import Document, Entry, TriggerMode

logger = logging.getLogger("lorevault.export")


def entry_record(entry: Entry, order: int, display_index: int) -> dict[str, Any]:
    """One lorebook entry record; exactly one trigger flag is true."""
    return {
        "uid": entry.uid,
        "key": list(entry.keys),
        "keysecondary": list(entry.secondary_keys),
        "comment": entry.title,
        "content": entry.content,
        "constant": entry.trigger is TriggerMode.CONSTANT,
        "vectorized": entry.trigger is TriggerMode.VECTORIZED,
        "selective": entry.trigger is TriggerMode.SELECTIVE,
        "selectiveLogic": int(entry.selective_logic),
        "addMemo": True,
        "order": order,
        "position": 0,
        "disable": False,
        "excludeRecursion": False,
        "preventRecursion": False,
        "delayUntilRecursion": False,
        "probability": entry.probability,
        "useProbability": True,
        "depth": entry.scan_depth,
        "group": entry.group,
        "groupOverride": False,
        "groupWeight": entry.group_weight,
        "scanDepth": None,
        "caseSensitive": None,
        "matchWholeWords": None,
        "useGroupScoring": None,
        "automationId": "",
        "role": None,
        "sticky": 0,
        "cooldown": 0,
        "delay": 0,
        "displayIndex": display_index,
    }


def build_lorebook(
    entries: Iterable[Entry],
    order: dict[int, int] | None = None,
    settings: LoreBookSettings | None = None,
) -> dict[str, Any]:
    """Build the lorebook object: `entries` keyed by stringified uid, in uid order."""
    settings = settings or LoreBookSettings()
    order = order or {}

    records: dict[str, Any] = {}
    for index, entry in enumerate(sorted(entries, key=lambda e: e.uid)):
        records[str(entry.uid)] = entry_record(entry, order.get(entry.uid, entry.order), index)

    return {
        "entries": records,
        "settings": {
            "orderByTitle": settings.order_by_title,
            "useDroste": settings.use_droste,
            "useRecursion": settings.use_recursion,
            "tokenBudget": settings.token_budget,
            "recursionBudget": settings.recursion_budget,
        },
    }


def render_rag_markdown(documents: Iterable[Document], scope: str = "") -> str:
    """Fallback corpus as one markdown pack, documents in (path, title, uid) order."""
    ordered = sorted(documents, key=lambda d: (d.path, d.title, d.uid))
    sections = [
        f"## {doc.title}\n\nSource: `{doc.path}`\n\n{doc.content.strip() or '_No content_'}\n"
        for doc in ordered
    ]
    return "\n".join([
        "# LoreVault RAG Pack",
        "",
        f"Scope: `{scope or '(all)'}`",
        "",
        "\n---\n\n".join(sections),
    ])


def _write(path: Path, text: str) -> Path:
    path = Path(path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
    except OSError as e:
        raise ExportError(f"Cannot write {path}: {e}") from e
    return path


def write_lorebook(path: Path, lorebook: dict[str, Any]) -> Path:
    written = _write(path, json.dumps(lorebook, indent=2, ensure_ascii=False))
    logger.info("Exported %d entries to %s", len(lorebook.get("entries", {})), written)
    return written


def write_rag_markdown(path: Path, documents: Iterable[Document], scope: str = "") -> Path:
    documents = list(documents)
    written = _write(path, render_rag_markdown(documents, scope))
    logger.info("Exported %d fallback documents to %s", len(documents), written)
    return written
