"""Configuration management for LoreVault."""

from __future__ import annotations

import json
from enum import Enum
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, ValidationError

from lorevault.exceptions import ConfigError
from lorevault.pool.models import SelectiveLogic, TriggerMode

LOREVAULT_DIR = ".lorevault"
CONFIG_FILE = "config.json"


class FallbackPolicy(str, Enum):
    """When the full-text fallback search runs."""

    OFF = "off"  # Graph/keyword retrieval only
    AUTO = "auto"  # Only when seed confidence is below the threshold
    ALWAYS = "always"


class PriorityWeights(BaseModel):
    """Per-factor weights for the composite entry priority."""

    hierarchy: float = 8000
    in_degree: float = 4000
    pagerank: float = 2000
    betweenness: float = 1000
    out_degree: float = 500
    total_degree: float = 100
    file_depth: float = 2000


class PriorityConfig(BaseModel):
    """Graph priority configuration."""

    weights: PriorityWeights = Field(default_factory=PriorityWeights)
    root_uid: int | None = None
    infer_root: bool = False


class ScoringWeights(BaseModel):
    """Additive weights for the retrieval score components."""

    seed_keyword_score: float = 100.0
    constant_bonus: float = 30.0
    order_weight: float = 10.0


class RetrievalConfig(BaseModel):
    """Default query options and retrieval scoring weights."""

    max_graph_hops: int = Field(default=2, ge=0, le=3)
    graph_hop_decay: float = Field(default=0.55, ge=0.2, le=0.9)
    fallback_policy: FallbackPolicy = FallbackPolicy.AUTO
    fallback_seed_threshold: float = Field(default=120, ge=0)
    max_entries: int = Field(default=8, ge=1)
    max_documents: int = Field(default=6, ge=0)
    entry_budget_ratio: float = Field(default=0.7, ge=0.1, le=0.95)
    include_backlinks: bool = False
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)

    def query_defaults(self) -> dict[str, Any]:
        """Query keyword arguments carried by this config."""
        return self.model_dump(exclude={"scoring"})


class TierConfig(BaseModel):
    """Content tier sizes and body-lift caps."""

    short_chars: int = Field(default=260, ge=16)
    medium_chars: int = Field(default=900, ge=16)
    document_chars: int = Field(default=1200, ge=16)
    body_lift_max_entries: int = Field(default=4, ge=0)
    body_lift_token_cap: int = Field(default=450, ge=1)


class ScopingConfig(BaseModel):
    """Tag-based scope membership rules."""

    tag_prefix: str = "lorebook"
    membership_mode: Literal["exact", "cascade"] = "exact"
    include_untagged: bool = False


class DefaultEntryConfig(BaseModel):
    """Defaults applied to entries whose notes leave a field unset."""

    trigger: TriggerMode = TriggerMode.SELECTIVE
    selective_logic: SelectiveLogic = SelectiveLogic.AND_ANY
    probability: int = Field(default=100, ge=0, le=100)
    scan_depth: int = Field(default=4, ge=1, le=10)
    group_weight: int = 100


class LoreBookSettings(BaseModel):
    """Settings block written into exported lorebooks."""

    order_by_title: bool = False
    use_droste: bool = True
    use_recursion: bool = True
    token_budget: int = 2048
    recursion_budget: int = 100


class ChunkingConfig(BaseModel):
    """Fallback document chunking."""

    mode: Literal["auto", "note", "section"] = "auto"
    min_chunk_chars: int = 300
    max_chunk_chars: int = 1800
    overlap_chars: int = 200


class ProjectConfig(BaseModel):
    """Full project configuration."""

    name: str = ""
    priority: PriorityConfig = Field(default_factory=PriorityConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    tiers: TierConfig = Field(default_factory=TierConfig)
    scoping: ScopingConfig = Field(default_factory=ScopingConfig)
    default_entry: DefaultEntryConfig = Field(default_factory=DefaultEntryConfig)
    lorebook: LoreBookSettings = Field(default_factory=LoreBookSettings)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)


def find_project_root(start: Path | None = None) -> Path | None:
    """Walk up from `start` looking for a .lorevault directory."""
    current = (start or Path.cwd()).resolve()
    while current != current.parent:
        if (current / LOREVAULT_DIR).is_dir():
            return current
        current = current.parent
    if (current / LOREVAULT_DIR).is_dir():
        return current
    return None


def get_lorevault_dir(root: Path) -> Path:
    """Get the .lorevault directory for a project root."""
    return root / LOREVAULT_DIR


def load_config(root: Path) -> ProjectConfig:
    """Load configuration from .lorevault/config.json."""
    config_path = get_lorevault_dir(root) / CONFIG_FILE
    if config_path.exists():
        try:
            data = json.loads(config_path.read_text())
            return ProjectConfig(**data)
        except (json.JSONDecodeError, ValidationError) as e:
            raise ConfigError(f"Invalid config at {config_path}: {e}") from e
    return ProjectConfig(name=root.name)


def save_config(root: Path, config: ProjectConfig) -> None:
    """Save configuration to .lorevault/config.json."""
    lv_dir = get_lorevault_dir(root)
    lv_dir.mkdir(parents=True, exist_ok=True)
    config_path = lv_dir / CONFIG_FILE
    config_path.write_text(json.dumps(config.model_dump(mode="json"), indent=2))


def set_config_value(config: ProjectConfig, key: str, value: Any) -> ProjectConfig:
    """Set a nested config value using dot notation (e.g., 'retrieval.max_graph_hops')."""
    parts = key.split(".")
    data = config.model_dump(mode="json")
    target = data
    for part in parts[:-1]:
        if part not in target or not isinstance(target[part], dict):
            raise KeyError(f"Invalid config key: {key}")
        target = target[part]
    if parts[-1] not in target:
        raise KeyError(f"Invalid config key: {key}")
    target[parts[-1]] = value
    try:
        return ProjectConfig(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid value for {key}: {value!r}") from e
