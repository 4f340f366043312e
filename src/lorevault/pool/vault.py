"""Load already-parsed vault notes from a JSON snapshot.

Accepted shapes: a list of note objects, or an object with a `notes` list.
Each note carries `path`, optional `title`, `tags`, `frontmatter` and `body`.
"""

from __future__ import annotations

import json
from collections import Counter
from pathlib import Path

from pydantic import TypeAdapter, ValidationError

from lorevault.exceptions import VaultError
from lorevault.pool.models import Note

_NOTES = TypeAdapter(list[Note])


def parse_notes(data: object) -> list[Note]:
    if isinstance(data, dict):
        data = data.get("notes", [])
    try:
        notes = _NOTES.validate_python(data)
    except ValidationError as e:
        raise VaultError(f"Invalid vault snapshot: {e}") from e

    counts = Counter(n.path for n in notes)
    duplicates = sorted(p for p, n in counts.items() if n > 1)
    if duplicates:
        raise VaultError(f"Duplicate note paths: {', '.join(duplicates)}")
    return sorted(notes, key=lambda n: n.path)


def load_notes(path: Path) -> list[Note]:
    """Read and validate a vault snapshot, sorted by note path."""
    try:
        data = json.loads(Path(path).read_text(encoding="utf-8"))
    except OSError as e:
        raise VaultError(f"Cannot read vault snapshot {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise VaultError(f"Vault snapshot {path} is not valid JSON: {e}") from e
    return parse_notes(data)
