"""Lexical fallback search over documents and chunks."""

from __future__ import annotations

import re
from typing import Iterable

from lorevault.context.models import ScoredDocument
from lorevault.pool.models import Chunk, Document, RetrievalRoute

_TOKEN_RE = re.compile(r"[a-z0-9][a-z0-9_-]*")

# Per-token hit weights; a token counts once, at the best field it hits.
TITLE_HIT = 40.0
PATH_HIT = 20.0
CONTENT_HIT = 10.0
PHRASE_HIT = 25.0  # Whole query found verbatim in the content
MIN_PHRASE_CHARS = 4


def tokenize(text: str) -> list[str]:
    """Lowercased unique word tokens (length >= 2) in first-seen order."""
    seen: set[str] = set()
    tokens: list[str] = []
    for token in _TOKEN_RE.findall(text.lower()):
        if len(token) < 2 or token in seen:
            continue
        seen.add(token)
        tokens.append(token)
    return tokens


def is_token(word: str) -> bool:
    """True if `tokenize` would keep `word` whole."""
    return len(word) >= 2 and _TOKEN_RE.fullmatch(word.lower()) is not None


class LexicalSearch:
    """Literal query-term overlap scoring over the fallback corpus.

    A document with chunks is scored chunk by chunk; a document without
    chunks is scored whole. Only nonzero matches are returned.
    """

    def __init__(
        self,
        documents: Iterable[Document],
        chunks: Iterable[Chunk] = (),
    ) -> None:
        self.documents = [
            d for d in documents if d.route is not RetrievalRoute.NONE
        ]
        by_uid = {d.uid: d for d in self.documents}
        self.chunks = [c for c in chunks if c.doc_uid in by_uid]
        self._by_uid = by_uid

    def search(self, query: str) -> list[ScoredDocument]:
        """Score the corpus against `query`, best matches first."""
        tokens = tokenize(query)
        phrase = query.strip().lower()
        results: list[ScoredDocument] = []

        for chunk in self.chunks:
            doc = self._by_uid[chunk.doc_uid]
            title = f"{doc.title} {chunk.heading}".strip()
            score, matched = self._score(tokens, phrase, title, doc.path, chunk.text)
            if score > 0:
                results.append(
                    ScoredDocument(document=doc, chunk=chunk, score=score, matched_terms=matched)
                )

        chunked = {chunk.doc_uid for chunk in self.chunks}
        for doc in self.documents:
            if doc.uid in chunked:
                continue
            score, matched = self._score(tokens, phrase, doc.title, doc.path, doc.content)
            if score > 0:
                results.append(ScoredDocument(document=doc, score=score, matched_terms=matched))

        results.sort(key=_document_sort_key)
        return results

    @staticmethod
    def _score(
        tokens: list[str],
        phrase: str,
        title: str,
        path: str,
        content: str,
    ) -> tuple[float, list[str]]:
        title_l = title.lower()
        path_l = path.lower()
        content_l = content.lower()

        score = 0.0
        matched: set[str] = set()
        for token in tokens:
            if token in title_l:
                score += TITLE_HIT
            elif token in path_l:
                score += PATH_HIT
            elif token in content_l:
                score += CONTENT_HIT
            else:
                continue
            matched.add(token)

        if len(phrase) >= MIN_PHRASE_CHARS and phrase in content_l:
            score += PHRASE_HIT

        return score, sorted(matched)


def _document_sort_key(doc: ScoredDocument) -> tuple:
    return (
        -doc.score,
        doc.document.path,
        doc.document.title,
        doc.document.uid,
        doc.chunk.index if doc.chunk else 0,
    )
