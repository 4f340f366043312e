"""Tag-based scope membership and candidate pool construction."""

from __future__ import annotations

import logging
import re
from typing import Any, Iterable

from lorevault.config import ProjectConfig
from lorevault.graph.links import LinkTargetIndex, extract_wikilinks
from lorevault.pool.chunker import chunk_documents
from lorevault.pool.models import (
    CandidatePool,
    Document,
    Entry,
    Note,
    RetrievalRoute,
    SelectiveLogic,
    TriggerMode,
    trigger_from_flags,
)

logger = logging.getLogger("lorevault.pool")

MEMBERSHIP_MODES = ("exact", "cascade")

_ROUTE_ALIASES = {
    "auto": RetrievalRoute.AUTO,
    "world_info": RetrievalRoute.WORLD_INFO,
    "worldinfo": RetrievalRoute.WORLD_INFO,
    "lorebook": RetrievalRoute.WORLD_INFO,
    "rag": RetrievalRoute.RAG,
    "both": RetrievalRoute.BOTH,
    "none": RetrievalRoute.NONE,
    "off": RetrievalRoute.NONE,
    "disabled": RetrievalRoute.NONE,
}

_TRUE = {"true", "yes", "y", "1", "on"}
_FALSE = {"false", "no", "n", "0", "off"}


# ---------------------------------------------------------------------------
# Frontmatter coercion
# ---------------------------------------------------------------------------

def _normalize_key(key: str) -> str:
    return re.sub(r"[\s_-]", "", key.lower())


def frontmatter_value(frontmatter: dict[str, Any], *keys: str) -> Any:
    """First value whose key matches any of `keys`, ignoring case, spaces, `_` and `-`."""
    normalized = {_normalize_key(k): v for k, v in frontmatter.items()}
    for key in keys:
        if _normalize_key(key) in normalized:
            return normalized[_normalize_key(key)]
    return None


def as_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    return None


def as_int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return None
    return None


def as_str_list(value: Any) -> list[str]:
    """Accept a list, a comma-separated string or a scalar."""
    if isinstance(value, list):
        return [str(v).strip() for v in value if v is not None and str(v).strip()]
    if isinstance(value, str):
        return [part.strip() for part in value.split(",") if part.strip()]
    if value is None:
        return []
    return [str(value)]


# ---------------------------------------------------------------------------
# Scopes
# ---------------------------------------------------------------------------

def _clean_tag(value: str) -> str:
    return value.strip().lstrip("#").strip("/").lower()


def normalize_scope(scope: str) -> str:
    return scope.strip().strip("/").lower()


def extract_scopes_from_tags(tags: Iterable[str], tag_prefix: str) -> list[str]:
    """Scopes named by `prefix/...` tags; the bare prefix tag yields the root scope ''."""
    prefix = _clean_tag(tag_prefix)
    if not prefix:
        return []

    scopes: set[str] = set()
    for raw in tags:
        tag = _clean_tag(raw)
        if tag == prefix:
            scopes.add("")
        elif tag.startswith(f"{prefix}/"):
            scopes.add(normalize_scope(tag[len(prefix) + 1:]))
    return sorted(scopes)


def should_include_in_scope(
    note_scopes: Iterable[str],
    active_scope: str,
    membership_mode: str = "exact",
    include_untagged: bool = False,
) -> bool:
    """Scope membership test.

    Untagged notes follow `include_untagged`; the root scope takes every tagged
    note. In `cascade` mode a note in a child scope also belongs to each
    ancestor scope.
    """
    active = normalize_scope(active_scope)
    scopes = sorted({normalize_scope(s) for s in note_scopes})

    if not scopes:
        return include_untagged
    if not active:
        return True
    if membership_mode == "exact":
        return active in scopes
    return any(s == active or s.startswith(f"{active}/") for s in scopes)


def note_tags(note: Note) -> list[str]:
    return list(note.tags) + as_str_list(frontmatter_value(note.frontmatter, "tags"))


def discover_scopes(notes: Iterable[Note], tag_prefix: str) -> list[str]:
    """All named (non-root) scopes across `notes`, sorted."""
    found: set[str] = set()
    for note in notes:
        found.update(s for s in extract_scopes_from_tags(note_tags(note), tag_prefix) if s)
    return sorted(found)


def parse_retrieval_route(value: Any) -> RetrievalRoute | None:
    """Parse a frontmatter `retrieval` value; unknown values give None."""
    if value is None or isinstance(value, (list, dict)):
        return None
    raw = str(value).strip().lower()
    if not raw:
        return None
    normalized = re.sub(r"\s+", "_", raw.replace("-", "_"))
    return _ROUTE_ALIASES.get(normalized)


def is_excluded(note: Note) -> bool:
    """Frontmatter `exclude: true` (or `lorebook: false`) removes a note everywhere."""
    if as_bool(frontmatter_value(note.frontmatter, "exclude")) is True:
        return True
    lorebook = frontmatter_value(note.frontmatter, "lorebook")
    if as_bool(lorebook) is False:
        return True
    if isinstance(lorebook, dict):
        if as_bool(lorebook.get("exclude")) is True:
            return True
        if as_bool(lorebook.get("enabled")) is False:
            return True
    return False


# ---------------------------------------------------------------------------
# Pool construction
# ---------------------------------------------------------------------------

def note_to_entry(note: Note, uid: int, config: ProjectConfig) -> Entry:
    """Map a note's frontmatter onto a world_info entry."""
    fm = note.frontmatter
    defaults = config.default_entry

    trigger_value = frontmatter_value(fm, "trigger", "trigger_method")
    try:
        explicit = TriggerMode(str(trigger_value).strip().lower())
    except ValueError:
        explicit = None
    trigger = trigger_from_flags(
        as_bool(frontmatter_value(fm, "constant")) is True or explicit is TriggerMode.CONSTANT,
        as_bool(frontmatter_value(fm, "vectorized")) is True
        or explicit is TriggerMode.VECTORIZED,
        as_bool(frontmatter_value(fm, "selective")) is True or explicit is TriggerMode.SELECTIVE,
        default=defaults.trigger,
    )

    logic = as_int(frontmatter_value(fm, "selective_logic"))
    probability = as_int(frontmatter_value(fm, "probability"))
    depth = as_int(frontmatter_value(fm, "depth", "scan_depth"))
    group_weight = as_int(frontmatter_value(fm, "group_weight"))
    summary = frontmatter_value(fm, "summary")
    content = str(summary).strip() if summary else note.body.strip()

    return Entry(
        uid=uid,
        keys=as_str_list(frontmatter_value(fm, "key", "keywords")),
        secondary_keys=as_str_list(frontmatter_value(fm, "keysecondary", "secondary_keys")),
        title=note.display_title,
        content=content,
        body=note.body.strip(),
        trigger=trigger,
        selective_logic=(
            SelectiveLogic(logic) if logic in (0, 1, 2, 3) else defaults.selective_logic
        ),
        probability=defaults.probability if probability is None else probability,
        scan_depth=defaults.scan_depth if depth is None else depth,
        group=note.folder,
        group_weight=defaults.group_weight if group_weight is None else group_weight,
        links=extract_wikilinks(note.body),
        route=parse_retrieval_route(frontmatter_value(fm, "retrieval")) or RetrievalRoute.AUTO,
    )


def assign_uids(notes: Iterable[Note]) -> dict[str, int]:
    """Stable uids: position of each note path in path order."""
    return {path: uid for uid, path in enumerate(sorted({n.path for n in notes}))}


def build_link_index(notes: Iterable[Note]) -> LinkTargetIndex:
    """Vault-wide wikilink resolver over note paths, basenames and titles."""
    notes = list(notes)
    uids = assign_uids(notes)
    index = LinkTargetIndex()
    for note in sorted(notes, key=lambda n: n.path):
        index.register(uids[note.path], path=note.path, title=note.display_title)
    return index


def build_scope_pool(
    notes: Iterable[Note],
    scope: str,
    config: ProjectConfig | None = None,
) -> CandidatePool:
    """Filter `notes` into the candidate pool for one scope.

    Exclusion always wins; `retrieval: none` drops a note; entries need
    keywords unless constant; every routed note becomes a fallback document.
    """
    config = config or ProjectConfig()
    notes = sorted(notes, key=lambda n: n.path)
    uids = assign_uids(notes)
    scoping = config.scoping

    entries: list[Entry] = []
    documents: list[Document] = []
    for note in notes:
        if is_excluded(note):
            continue
        note_scopes = extract_scopes_from_tags(note_tags(note), scoping.tag_prefix)
        if not should_include_in_scope(
            note_scopes, scope, scoping.membership_mode, scoping.include_untagged
        ):
            continue

        entry = note_to_entry(note, uids[note.path], config)
        route = entry.route
        if route is RetrievalRoute.NONE:
            continue

        if route in (RetrievalRoute.AUTO, RetrievalRoute.WORLD_INFO, RetrievalRoute.BOTH):
            if entry.keys or entry.is_constant:
                entries.append(entry)
        if route in (RetrievalRoute.AUTO, RetrievalRoute.RAG, RetrievalRoute.BOTH):
            documents.append(
                Document(
                    uid=entry.uid,
                    scope=normalize_scope(scope),
                    path=note.path,
                    title=note.display_title,
                    content=note.body.strip(),
                    route=route,
                )
            )

    chunking = config.chunking
    chunks = chunk_documents(
        documents,
        mode=chunking.mode,
        min_chars=chunking.min_chunk_chars,
        max_chars=chunking.max_chunk_chars,
        overlap_chars=chunking.overlap_chars,
    )
    logger.debug(
        "Scope %r: %d entries, %d documents, %d chunks",
        scope, len(entries), len(documents), len(chunks),
    )
    return CandidatePool(
        scope=normalize_scope(scope), entries=entries, documents=documents, chunks=chunks
    )
