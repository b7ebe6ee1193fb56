"""Directory mode: turn a listing page into the external business sites it links to."""
from __future__ import annotations

import logging
from typing import Dict, List, Optional, Sequence
from urllib.parse import parse_qs, urljoin, urlparse

from bs4 import BeautifulSoup

from leadscout.agents.signals import normalize_domain
from leadscout.schemas import BusinessCandidate, Document

logger = logging.getLogger(__name__)

DEFAULT_MAX_BUSINESSES = 25
SOCIAL_DOMAINS = {
    "facebook.com",
    "instagram.com",
    "twitter.com",
    "x.com",
    "linkedin.com",
    "youtube.com",
    "tiktok.com",
}
REDIRECT_PARAMS = ("url", "website", "redirect", "dest")


def resolve_url(href: str, base_url: Optional[str]) -> Optional[str]:
    trimmed = (href or "").strip()
    if not trimmed or trimmed.lower().startswith("javascript:"):
        return None
    try:
        absolute = urljoin(base_url or "", trimmed)
        scheme = urlparse(absolute).scheme.lower()
    except ValueError:
        return None
    if scheme not in {"http", "https"}:
        return None
    return absolute


def unwrap_redirect(url: str, directory_domain: str) -> str:
    """Follow `?url=`-style tracking links, but only the directory's own."""
    if normalize_domain(url) != directory_domain:
        return url
    try:
        query = parse_qs(urlparse(url).query)
    except ValueError:
        return url
    for param in REDIRECT_PARAMS:
        for candidate in query.get(param, []):
            if candidate.lower().startswith(("http://", "https://")):
                return candidate
    return url


def _candidate_hrefs(doc: Document) -> List[str]:
    hrefs: Dict[str, None] = {}
    for href in doc.links or []:
        if href:
            hrefs.setdefault(href, None)
    if doc.html:
        soup = BeautifulSoup(doc.html, "html.parser")
        for anchor in soup.find_all("a", href=True):
            hrefs.setdefault(anchor.get("href"), None)
    return list(hrefs)


def extract_business_urls(
    documents: Sequence[Document],
    source_url: str,
    max_businesses: int = DEFAULT_MAX_BUSINESSES,
) -> List[BusinessCandidate]:
    directory_domain = normalize_domain(source_url or "")
    seen_domains: set[str] = set()
    results: List[BusinessCandidate] = []

    for doc in documents:
        if len(results) >= max_businesses:
            break
        for href in _candidate_hrefs(doc):
            if len(results) >= max_businesses:
                break
            absolute = resolve_url(href, doc.url or source_url)
            if not absolute:
                continue
            cleaned = unwrap_redirect(absolute, directory_domain)
            domain = normalize_domain(cleaned)
            if not domain or domain == directory_domain:
                continue
            if domain in SOCIAL_DOMAINS or domain in seen_domains:
                continue
            seen_domains.add(domain)
            results.append(BusinessCandidate(url=cleaned, domain=domain, source_document=doc.url or source_url))

    logger.info("[DIRECTORY] %s -> %s business candidates", directory_domain, len(results))
    return results
