"""Load saved pages from disk instead of crawling."""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from bs4 import BeautifulSoup

from leadscout.errors import FetchFailure
from leadscout.schemas import Document

logger = logging.getLogger(__name__)

HTML_SUFFIXES = {".html", ".htm"}
MARKDOWN_SUFFIXES = {".md"}


def _html_document(path: Path, raw: str) -> Document:
    soup = BeautifulSoup(raw, "html.parser")
    title = soup.title.get_text(strip=True) if soup.title else ""
    for tag in soup(["script", "style", "noscript"]):
        tag.decompose()
    text = soup.get_text("\n", strip=True)
    links = [anchor.get("href") for anchor in soup.find_all("a", href=True)]
    return Document(
        url=path.resolve().as_uri(),
        markdown=text,
        html=raw,
        links=links,
        metadata={"title": title or path.name, "source": "local"},
    )


def load_documents_from_folder(folder: str) -> List[Document]:
    root = Path(folder).expanduser()
    if not root.is_dir():
        raise FetchFailure(f"HTML folder not found: {folder}", url=folder)

    documents: List[Document] = []
    for path in sorted(root.rglob("*")):
        suffix = path.suffix.lower()
        if not path.is_file() or suffix not in HTML_SUFFIXES | MARKDOWN_SUFFIXES:
            continue
        raw = path.read_text(encoding="utf-8", errors="ignore")
        if suffix in HTML_SUFFIXES:
            documents.append(_html_document(path, raw))
        else:
            documents.append(
                Document(url=path.resolve().as_uri(), markdown=raw, metadata={"title": path.name, "source": "local"})
            )

    logger.info("[CRAWL] Loaded %s local documents from %s", len(documents), root)
    return documents
