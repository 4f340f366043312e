"""Split fallback documents into scoreable chunks.

Modes:
  note     one chunk per document, long documents split with overlap
  section  split on markdown headings, merge tiny sections, split long ones
  auto     whole note when short enough, sections otherwise
"""

from __future__ import annotations

import hashlib
import re
from dataclasses import dataclass
from typing import Iterable

from lorevault.context.models import TokenEstimator
from lorevault.pool.models import Chunk, Document

CHUNKING_MODES = ("auto", "note", "section")

_HEADING_RE = re.compile(r"^#{1,6}\s+(.*)$", re.MULTILINE)


@dataclass
class _Section:
    heading: str
    text: str
    start: int
    end: int


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def _normalize_body(content: str) -> str:
    return content.replace("\r\n", "\n").strip()


class _DocumentChunker:
    def __init__(self, doc: Document, max_chars: int, overlap_chars: int) -> None:
        self.doc = doc
        self.max_chars = max_chars
        self.overlap_chars = overlap_chars
        self.chunks: list[Chunk] = []

    def add(self, heading: str, text: str, start: int, end: int) -> None:
        text = text.strip()
        index = len(self.chunks)
        text_hash = _sha256(text)
        self.chunks.append(
            Chunk(
                chunk_id=_sha256(f"{self.doc.path}|{self.doc.uid}|{index}|{text_hash}"),
                doc_uid=self.doc.uid,
                scope=self.doc.scope,
                path=self.doc.path,
                title=self.doc.title,
                index=index,
                heading=heading,
                text=text,
                text_hash=text_hash,
                token_estimate=TokenEstimator.estimate(text),
                start_offset=start,
                end_offset=end,
            )
        )

    def add_long(self, heading: str, text: str, offset: int) -> None:
        """Split `text` into overlapping windows, preferring newline cut points."""
        source = text.strip()
        cursor = 0
        while cursor < len(source):
            end = min(len(source), cursor + self.max_chars)
            if end < len(source):
                newline = source.rfind("\n", 0, end + 1)
                if newline > cursor + int(self.max_chars * 0.4):
                    end = newline

            piece = source[cursor:end].strip()
            if piece:
                self.add(heading, piece, offset + cursor, offset + end)
            if end >= len(source):
                break
            cursor = max(cursor + 1, end - self.overlap_chars)

    def by_note(self, body: str) -> list[Chunk]:
        if len(body) <= self.max_chars:
            self.add("", body, 0, len(body))
        else:
            self.add_long("", body, 0)
        return self.chunks

    def by_sections(self, body: str, min_chars: int) -> list[Chunk]:
        for section in _merge_tiny(_sections(body), min_chars):
            text = section.text.strip()
            if not text:
                continue
            if len(text) <= self.max_chars:
                self.add(section.heading, text, section.start, section.end)
            else:
                self.add_long(section.heading, text, section.start)
        return self.chunks


def _sections(body: str) -> list[_Section]:
    matches = list(_HEADING_RE.finditer(body))
    if not matches:
        return [_Section("", body, 0, len(body))]

    sections = []
    if matches[0].start() > 0:
        sections.append(_Section("", body[: matches[0].start()], 0, matches[0].start()))
    for i, match in enumerate(matches):
        end = matches[i + 1].start() if i + 1 < len(matches) else len(body)
        sections.append(_Section(match.group(1).strip(), body[match.start():end], match.start(), end))
    return [s for s in sections if s.text.strip()]


def _merge_tiny(sections: list[_Section], min_chars: int) -> list[_Section]:
    """Fold sections shorter than `min_chars` into the section after them."""
    if len(sections) <= 1:
        return sections

    merged: list[_Section] = []
    pending: _Section | None = None
    for section in sections:
        if pending is None:
            pending = section
            continue
        if len(pending.text.strip()) < min_chars:
            pending = _Section(
                heading=pending.heading or section.heading,
                text=f"{pending.text.rstrip()}\n\n{section.text.lstrip()}",
                start=pending.start,
                end=section.end,
            )
            continue
        merged.append(pending)
        pending = section

    if pending is not None:
        merged.append(pending)
    return merged


def chunk_documents(
    documents: Iterable[Document],
    mode: str = "auto",
    min_chars: int = 300,
    max_chars: int = 1800,
    overlap_chars: int = 200,
) -> list[Chunk]:
    """Chunk documents in (path, title, uid) order; empty documents yield nothing."""
    if mode not in CHUNKING_MODES:
        raise ValueError(f"Unknown chunking mode: {mode!r}")

    chunks: list[Chunk] = []
    for doc in sorted(documents, key=lambda d: (d.path, d.title, d.uid)):
        body = _normalize_body(doc.content)
        if not body:
            continue

        chunker = _DocumentChunker(doc, max_chars, overlap_chars)
        if mode == "note":
            chunks.extend(chunker.by_note(body))
        elif mode == "section":
            chunks.extend(chunker.by_sections(body, min_chars))
        elif len(body) <= max(max_chars, min_chars * 2):
            chunks.extend(chunker.by_note(body))
        else:
            chunks.extend(chunker.by_sections(body, min_chars))
    return chunks
