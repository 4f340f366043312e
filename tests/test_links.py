"""Tests for wikilink extraction and link-target resolution."""

from __future__ import annotations

from lorevault.graph.links import LinkTargetIndex, extract_wikilinks, normalize_link_target


class TestNormalizeLinkTarget:
    def test_strips_heading_and_extension(self):
        assert normalize_link_target("world/Aria.md#History") == "world/Aria"

    def test_backslashes(self):
        assert normalize_link_target("world\\Aria") == "world/Aria"


class TestExtractWikilinks:
    def test_plain_link(self):
        assert extract_wikilinks("See [[Aria]].") == ["Aria"]

    def test_alias_ignored(self):
        assert extract_wikilinks("[[Queen Mira|the queen]]") == [
            "Queen Mira",
            "Queen-Mira",
            "Queen_Mira",
        ]

    def test_path_adds_basename(self):
        assert extract_wikilinks("[[world/Aria]]") == ["world/Aria", "Aria"]

    def test_duplicates_removed(self):
        assert extract_wikilinks("[[Aria]] and [[Aria#Bridges]]") == ["Aria"]

    def test_no_links(self):
        assert extract_wikilinks("no links here") == []


class TestLinkTargetIndex:
    def test_register_and_resolve(self):
        index = LinkTargetIndex()
        index.register(3, path="world/Aria.md", title="Aria City")
        assert index.resolve("world/Aria") == 3
        assert index.resolve("Aria") == 3
        assert index.resolve("Aria City") == 3
        assert index("Aria.md#Bridges") == 3

    def test_unknown_target(self):
        assert LinkTargetIndex().resolve("Nowhere") is None

    def test_ambiguous_target_resolves_to_nothing(self):
        index = LinkTargetIndex()
        index.register(1, path="world/Aria.md")
        index.register(2, path="space/Aria.md")
        assert index.resolve("Aria") is None
        assert "Aria" in index.ambiguous_targets
        assert index.resolve("world/Aria") == 1
        assert index.resolve("space/Aria") == 2

    def test_ambiguity_is_sticky(self):
        index = LinkTargetIndex()
        index.add("Aria", 1)
        index.add("Aria", 2)
        index.add("Aria", 1)
        assert index.resolve("Aria") is None

    def test_same_uid_twice_is_not_ambiguous(self):
        index = LinkTargetIndex()
        index.add("Aria", 1)
        index.add("Aria", 1)
        assert index.mappings == {"Aria": 1}
