"""Firecrawl-backed crawler: submit a crawl job, poll it, collect documents."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import httpx

from leadscout.agents.signals import normalize_domain
from leadscout.config import Settings, get_settings
from leadscout.errors import FetchFailure
from leadscout.schemas import Document
from leadscout.utils.http_client import request_with_retries

logger = logging.getLogger(__name__)

TERMINAL_FAILURE = "failed"
TERMINAL_SUCCESS = "completed"


def to_document(item: Dict[str, Any]) -> Document:
    metadata = item.get("metadata") or {}
    return Document(
        url=metadata.get("sourceURL") or metadata.get("url") or item.get("url"),
        markdown=item.get("markdown"),
        html=item.get("html") or item.get("rawHtml"),
        links=[link for link in item.get("links") or [] if isinstance(link, str)],
        metadata=metadata,
    )


class FirecrawlClient:
    def __init__(self, settings: Optional[Settings] = None, store=None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self.store = store
        self._client = client

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.settings.firecrawl_api_key}",
            "Content-Type": "application/json",
        }

    def _endpoint(self, path: str) -> str:
        return f"{self.settings.firecrawl_base_url.rstrip('/')}{path}"

    async def crawl(
        self,
        url: str,
        *,
        depth: Optional[int] = None,
        page_limit: Optional[int] = None,
        include_paths: Sequence[str] = (),
        exclude_paths: Sequence[str] = (),
        poll_interval: Optional[float] = None,
        delay: Optional[float] = None,
    ) -> List[Document]:
        if self._client is not None:
            return await self._crawl(self._client, url, depth, page_limit, include_paths, exclude_paths, poll_interval, delay)
        async with httpx.AsyncClient(timeout=self.settings.http_timeout_seconds) as client:
            return await self._crawl(client, url, depth, page_limit, include_paths, exclude_paths, poll_interval, delay)

    async def _crawl(self, client, url, depth, page_limit, include_paths, exclude_paths, poll_interval, delay):
        domain = normalize_domain(url)
        payload: Dict[str, Any] = {
            "url": url,
            "maxDepth": depth if depth is not None else self.settings.max_depth,
            "limit": page_limit if page_limit is not None else self.settings.max_pages,
            "scrapeOptions": {"formats": ["markdown", "html", "links"], "onlyMainContent": False},
            "deduplicateSimilarURLs": True,
            "ignoreQueryParameters": True,
            "delay": delay if delay is not None else self.settings.crawl_delay,
        }
        if include_paths:
            payload["includePaths"] = list(include_paths)
        if exclude_paths:
            payload["excludePaths"] = list(exclude_paths)

        logger.info("[CRAWL] Submit %s | depth=%s limit=%s", url, payload["maxDepth"], payload["limit"])
        response = await request_with_retries(
            client, "POST", self._endpoint("/v1/crawl"), headers=self._headers(), json=payload
        )
        body = self._json(response, url, domain)
        if not response.is_success or not body.get("success", False) or not body.get("id"):
            raise FetchFailure(
                f"Crawl submission failed ({response.status_code}): {body.get('error') or 'no job id'}",
                domain=domain,
                url=url,
            )

        job_id = body["id"]
        interval = poll_interval if poll_interval is not None else self.settings.crawl_poll_interval
        status_url = self._endpoint(f"/v1/crawl/{job_id}")
        while True:
            status = await self._fetch_status(client, status_url, url, domain)
            state = status.get("status")
            if state == TERMINAL_FAILURE:
                raise FetchFailure(f"Crawl job {job_id} failed: {status.get('error') or 'unknown error'}", domain=domain, url=url)
            if state == TERMINAL_SUCCESS:
                break
            logger.debug("[CRAWL] %s status=%s completed=%s", job_id, state, status.get("completed"))
            await asyncio.sleep(interval)

        items: List[Dict[str, Any]] = list(status.get("data") or [])
        next_url = status.get("next")
        while next_url:
            page = await self._fetch_status(client, next_url, url, domain)
            items.extend(page.get("data") or [])
            next_url = page.get("next")

        documents = [to_document(item) for item in items]
        if self.store is not None:
            visited = [doc.url for doc in documents if doc.url]
            if visited:
                self.store.append_visited(domain, visited)
        logger.info("[CRAWL] Finished %s | documents=%s", url, len(documents))
        return documents

    async def _fetch_status(self, client, status_url: str, url: str, domain: str) -> Dict[str, Any]:
        response = await request_with_retries(client, "GET", status_url, headers=self._headers())
        body = self._json(response, url, domain)
        if not response.is_success:
            raise FetchFailure(
                f"Crawl status request failed ({response.status_code}): {body.get('error') or response.reason_phrase}",
                domain=domain,
                url=url,
            )
        return body

    @staticmethod
    def _json(response: httpx.Response, url: str, domain: str) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise FetchFailure(f"Crawler returned non-JSON response ({response.status_code})", domain=domain, url=url) from exc
        return body if isinstance(body, dict) else {}
