"""Shared test fixtures for LoreVault."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from lorevault.graph.index import GraphIndex
from lorevault.graph.links import LinkTargetIndex
from lorevault.pool.models import CandidatePool, Document, Entry, Note, TriggerMode


@pytest.fixture
def entries() -> list[Entry]:
    """A small linked world.

    Aria -> Queen Mira, Aria -> Harbor District, Queen Mira -> Aria,
    Harbor District -> Smugglers Guild. World Rules is constant, Dragon is
    isolated.
    """
    return [
        Entry(
            uid=1,
            title="Aria",
            keys=["aria"],
            content="Aria is the capital city, built on seven bridges over the tide.",
            links=["Queen Mira", "Harbor District"],
            group="world/places",
        ),
        Entry(
            uid=2,
            title="Queen Mira",
            keys=["mira", "queen"],
            content="Queen Mira rules Aria from the Glass Palace.",
            links=["Aria"],
            group="world/people",
        ),
        Entry(
            uid=3,
            title="Harbor District",
            keys=["harbor"],
            content="The harbor district is loud and crowded.",
            links=["Smugglers Guild"],
            group="world/places",
        ),
        Entry(
            uid=4,
            title="Smugglers Guild",
            keys=["smugglers"],
            content="A guild of smugglers operating from the docks.",
            group="world/factions",
        ),
        Entry(
            uid=5,
            title="World Rules",
            trigger=TriggerMode.CONSTANT,
            content="Magic always costs a memory.",
        ),
        Entry(
            uid=6,
            title="Dragon",
            keys=["dragon"],
            content="An old dragon sleeps under the mountain.",
        ),
    ]


@pytest.fixture
def documents() -> list[Document]:
    return [
        Document(
            uid=10,
            scope="world",
            path="history/aria.md",
            title="Aria History",
            content="Aria was founded by sailors. The harbor grew quickly.",
        ),
        Document(
            uid=11,
            scope="world",
            path="kitchen/bread.md",
            title="Bread",
            content="Flour, water, salt and patience.",
        ),
    ]


@pytest.fixture
def pool(entries: list[Entry], documents: list[Document]) -> CandidatePool:
    return CandidatePool(scope="world", entries=entries, documents=documents)


@pytest.fixture
def resolver(entries: list[Entry]) -> LinkTargetIndex:
    index = LinkTargetIndex()
    for entry in entries:
        index.register(entry.uid, title=entry.title)
    return index


@pytest.fixture
def graph(entries: list[Entry], resolver: LinkTargetIndex) -> GraphIndex:
    return GraphIndex.build(entries, resolver)


@pytest.fixture
def vault_notes() -> list[Note]:
    """Parsed notes spanning two scopes, with exclusions and routing overrides.

    Uids follow path order: notes/Todo.md 0, space/Ship.md 1,
    space/Station.md 2, world/Aria.md 3, world/Harbor.md 4,
    world/Queen Mira.md 5, world/Rules.md 6, world/Secret.md 7.
    """
    return [
        Note(
            path="world/Aria.md",
            tags=["lorebook/world"],
            frontmatter={"keywords": ["aria", "capital"]},
            body="Aria is the capital. Ruled by [[Queen Mira]]. See [[Harbor]].",
        ),
        Note(
            path="world/Queen Mira.md",
            tags=["lorebook/world/people"],
            frontmatter={"key": "mira, queen"},
            body="Queen Mira rules [[Aria]].",
        ),
        Note(
            path="world/Harbor.md",
            frontmatter={"tags": ["lorebook/world"], "keywords": "harbor", "retrieval": "rag"},
            body="Ships and smugglers crowd the harbor.",
        ),
        Note(
            path="world/Secret.md",
            tags=["lorebook/world"],
            frontmatter={"keywords": ["secret"], "exclude": True},
            body="Hidden.",
        ),
        Note(
            path="world/Rules.md",
            tags=["lorebook/world"],
            frontmatter={"constant": True},
            body="Magic costs memory.",
        ),
        Note(path="notes/Todo.md", body="Buy bread."),
        Note(
            path="space/Station.md",
            tags=["lorebook/space"],
            frontmatter={"keywords": ["station"], "retrieval": "none"},
            body="Orbit.",
        ),
        Note(
            path="space/Ship.md",
            tags=["#lorebook/space"],
            frontmatter={"keywords": ["ship"]},
            body="The ship Vesper.",
        ),
    ]


@pytest.fixture
def vault_file(tmp_path: Path, vault_notes: list[Note]) -> Path:
    path = tmp_path / "vault.json"
    path.write_text(json.dumps({"notes": [n.model_dump() for n in vault_notes]}))
    return path
