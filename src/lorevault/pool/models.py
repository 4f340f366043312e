"""Data models for the scope-filtered candidate pool."""

from __future__ import annotations

from enum import Enum, IntEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator, model_validator


class TriggerMode(str, Enum):
    """How an entry gets activated."""

    CONSTANT = "constant"  # Always injected
    VECTORIZED = "vectorized"  # Activated by embedding similarity upstream
    SELECTIVE = "selective"  # Activated by keyword matches


class SelectiveLogic(IntEnum):
    """Secondary-keyword logic, using the lorebook file ordinals."""

    AND_ANY = 0
    NOT_ALL = 1
    NOT_ANY = 2
    AND_ALL = 3


class RetrievalRoute(str, Enum):
    """Per-note routing between world_info entries and fallback documents."""

    AUTO = "auto"
    WORLD_INFO = "world_info"
    RAG = "rag"
    BOTH = "both"
    NONE = "none"


def dedupe_keywords(values: list[str]) -> list[str]:
    """Trim keywords and drop case-insensitive duplicates, keeping first-seen order."""
    seen: set[str] = set()
    output: list[str] = []
    for value in values:
        cleaned = " ".join(str(value).split())
        lowered = cleaned.lower()
        if not cleaned or lowered in seen:
            continue
        seen.add(lowered)
        output.append(cleaned)
    return output


def trigger_from_flags(
    constant: bool = False,
    vectorized: bool = False,
    selective: bool = False,
    default: TriggerMode = TriggerMode.SELECTIVE,
) -> TriggerMode:
    """Collapse legacy trigger booleans into one mode (constant > vectorized > selective)."""
    if constant:
        return TriggerMode.CONSTANT
    if vectorized:
        return TriggerMode.VECTORIZED
    if selective:
        return TriggerMode.SELECTIVE
    return default


class Entry(BaseModel):
    """A keyed lore snippet (one world_info entry)."""

    uid: int
    keys: list[str] = Field(default_factory=list)
    secondary_keys: list[str] = Field(default_factory=list)
    title: str = ""
    content: str = ""
    body: str = ""  # Source note body; empty means same as content
    trigger: TriggerMode = TriggerMode.SELECTIVE
    selective_logic: SelectiveLogic = SelectiveLogic.AND_ANY
    probability: int = Field(default=100, ge=0, le=100)
    scan_depth: int = Field(default=4, ge=1, le=10)
    group: str = ""  # Container path, e.g. "world/places/cities"
    group_weight: int = 100
    order: int = 0
    links: list[str] = Field(default_factory=list)  # Raw outbound references
    route: RetrievalRoute = RetrievalRoute.AUTO

    @model_validator(mode="before")
    @classmethod
    def _normalize_trigger_flags(cls, data: Any) -> Any:
        """Accept legacy constant/vectorized/selective booleans."""
        if not isinstance(data, dict):
            return data
        flags = {k: data.get(k) for k in ("constant", "vectorized", "selective") if k in data}
        if not flags:
            return data
        data = {k: v for k, v in data.items() if k not in flags}
        # An explicit trigger counts as one more flag under the same precedence
        explicit = TriggerMode(data["trigger"]) if "trigger" in data else None
        data["trigger"] = trigger_from_flags(
            bool(flags.get("constant")) or explicit is TriggerMode.CONSTANT,
            bool(flags.get("vectorized")) or explicit is TriggerMode.VECTORIZED,
            bool(flags.get("selective")) or explicit is TriggerMode.SELECTIVE,
        )
        return data

    @field_validator("keys", "secondary_keys")
    @classmethod
    def _dedupe(cls, values: list[str]) -> list[str]:
        return dedupe_keywords(values)

    @field_validator("probability", "scan_depth", mode="before")
    @classmethod
    def _clamp_ranges(cls, value: Any, info) -> Any:
        if not isinstance(value, (int, float)):
            return value
        low, high = (0, 100) if info.field_name == "probability" else (1, 10)
        return max(low, min(high, int(value)))

    @property
    def is_constant(self) -> bool:
        return self.trigger is TriggerMode.CONSTANT

    @property
    def source_body(self) -> str:
        return self.body or self.content

    @property
    def container_depth(self) -> int:
        """Number of path separators in the container path."""
        group = self.group.strip("/")
        return group.count("/") if group else 0


class Document(BaseModel):
    """A fallback full-text unit."""

    uid: int
    scope: str = ""
    path: str = ""
    title: str = ""
    content: str = ""
    route: RetrievalRoute = RetrievalRoute.AUTO


class Chunk(BaseModel):
    """A section of a fallback document, scored at sub-document granularity."""

    chunk_id: str
    doc_uid: int
    scope: str = ""
    path: str = ""
    title: str = ""
    index: int = 0
    heading: str = ""
    text: str = ""
    text_hash: str = ""
    token_estimate: int = 0
    start_offset: int = 0
    end_offset: int = 0


class CandidatePool(BaseModel):
    """Scope-filtered entries and documents handed to the context engine.

    Treated as a read-only snapshot: the engine never mutates it.
    """

    scope: str = ""
    entries: list[Entry] = Field(default_factory=list)
    documents: list[Document] = Field(default_factory=list)
    chunks: list[Chunk] = Field(default_factory=list)

    @field_validator("entries")
    @classmethod
    def _unique_entry_uids(cls, entries: list[Entry]) -> list[Entry]:
        seen: set[int] = set()
        for entry in entries:
            if entry.uid in seen:
                raise ValueError(f"duplicate entry uid {entry.uid}")
            seen.add(entry.uid)
        return entries

    def entry_map(self) -> dict[int, Entry]:
        return {entry.uid: entry for entry in self.entries}

    @property
    def is_empty(self) -> bool:
        return not self.entries and not self.documents and not self.chunks


class Note(BaseModel):
    """An already-parsed vault note: path, tags, frontmatter mapping and body."""

    path: str
    title: str = ""
    tags: list[str] = Field(default_factory=list)
    frontmatter: dict[str, Any] = Field(default_factory=dict)
    body: str = ""

    @property
    def basename(self) -> str:
        name = self.path.rsplit("/", 1)[-1]
        return name[:-3] if name.lower().endswith(".md") else name

    @property
    def folder(self) -> str:
        return self.path.rsplit("/", 1)[0] if "/" in self.path else ""

    @property
    def display_title(self) -> str:
        return self.title or self.basename
