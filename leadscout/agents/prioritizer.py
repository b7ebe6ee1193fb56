"""Rank a domain's crawled documents so only the most informative reach the LLM."""
from __future__ import annotations

import re
from typing import List, Sequence

from leadscout.schemas import Document

URL_KEYWORDS = [
    ("contact", 6),
    ("about", 4),
    ("team", 4),
    ("leadership", 4),
    ("pricing", 3),
    ("services", 3),
    ("solutions", 3),
    ("careers", 2),
    ("join", 2),
    ("jobs", 2),
    ("hire", 2),
    ("press", 1),
    ("privacy", 1),
    ("terms", 1),
]

CONTENT_PATTERNS = [
    (re.compile(r"mailto:", re.I), 6),
    (re.compile(r"phone|call us|reach us|contact us", re.I), 3),
    (re.compile(r"@"), 2),
    (re.compile(r"linkedin\.com/", re.I), 3),
    (re.compile(r"address|hq|headquarters|located in", re.I), 2),
]

METADATA_KEYS = ("title", "description")
LONG_CONTENT_CHARS = 2000
RICH_LINK_COUNT = 10


def score_document(doc: Document) -> int:
    score = 0
    url = (doc.url or "").lower()
    markdown = doc.markdown or ""
    metadata = doc.metadata or {}

    for keyword, weight in URL_KEYWORDS:
        if keyword in url:
            score += weight

    for pattern, weight in CONTENT_PATTERNS:
        if pattern.search(markdown):
            score += weight

    for key in METADATA_KEYS:
        if metadata.get(key):
            score += 1

    if len(markdown) > LONG_CONTENT_CHARS:
        score += 2
    if len(doc.links or []) > RICH_LINK_COUNT:
        score += 1
    return score


def prioritize_documents(documents: Sequence[Document], max_pages: int = 12) -> List[Document]:
    """Top `max_pages` documents by score; ties keep their crawl order."""
    limit = max(0, int(max_pages))
    scored = [(doc, score_document(doc)) for doc in documents]
    scored.sort(key=lambda item: -item[1])
    return [doc for doc, _ in scored[:limit]]
