"""Wikilink extraction and link-target resolution."""

from __future__ import annotations

import posixpath
import re

_WIKILINK_RE = re.compile(r"\[\[([^\]|]+)(?:\|[^\]]+)?\]\]")


def normalize_link_target(target: str) -> str:
    """Strip heading/block suffixes and a trailing .md from a link target."""
    value = target.strip().replace("\\", "/")
    value = re.sub(r"#.*$", "", value)
    value = re.sub(r"\.md$", "", value, flags=re.IGNORECASE)
    return value.strip()


def extract_wikilinks(content: str) -> list[str]:
    """Extract `[[target|alias]]` references plus basename and spacing variants."""
    links: list[str] = []
    seen: set[str] = set()

    def _add(value: str) -> None:
        if value and value not in seen:
            seen.add(value)
            links.append(value)

    for match in _WIKILINK_RE.finditer(content):
        link = normalize_link_target(match.group(1))
        if not link:
            continue
        _add(link)

        base = posixpath.basename(link)
        if base != link:
            _add(base)

        if " " in link:
            _add(link.replace(" ", "-"))
            _add(link.replace(" ", "_"))

    return links


class LinkTargetIndex:
    """Maps normalized link targets (paths, basenames, titles) to entry uids.

    A target claimed by two different uids is ambiguous and resolves to
    nothing from then on.
    """

    def __init__(self) -> None:
        self._target_to_uid: dict[str, int] = {}
        self._ambiguous: set[str] = set()

    def add(self, target: str, uid: int) -> None:
        normalized = normalize_link_target(target)
        if not normalized or normalized in self._ambiguous:
            return

        existing = self._target_to_uid.get(normalized)
        if existing is None:
            self._target_to_uid[normalized] = uid
        elif existing != uid:
            del self._target_to_uid[normalized]
            self._ambiguous.add(normalized)

    def register(self, uid: int, path: str = "", title: str = "") -> None:
        """Register a note's path, basename and title as targets for `uid`."""
        if path:
            self.add(path, uid)
            self.add(posixpath.basename(normalize_link_target(path)), uid)
        if title:
            self.add(title, uid)

    def resolve(self, raw: str) -> int | None:
        """Resolve a raw reference to a uid; usable as a graph link resolver."""
        return self._target_to_uid.get(normalize_link_target(raw))

    def __call__(self, raw: str) -> int | None:
        return self.resolve(raw)

    @property
    def mappings(self) -> dict[str, int]:
        return dict(self._target_to_uid)

    @property
    def ambiguous_targets(self) -> set[str]:
        return set(self._ambiguous)
