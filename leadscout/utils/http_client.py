"""HTTP reliability helpers for collaborator APIs."""
from __future__ import annotations

import asyncio
from typing import Any, Optional

import httpx

RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}
RETRYABLE_ERRORS = (
    httpx.TimeoutException,
    httpx.ConnectError,
    httpx.ReadError,
    httpx.WriteError,
    httpx.NetworkError,
)


async def request_with_retries(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    *,
    retries: int = 3,
    backoff_seconds: float = 0.6,
    max_backoff_seconds: float = 6.0,
    headers: Optional[dict[str, str]] = None,
    json: Optional[dict[str, Any]] = None,
) -> httpx.Response:
    last_error: Exception | None = None
    for attempt in range(retries):
        try:
            response = await client.request(method, url, headers=headers, json=json)
            if response.status_code in RETRYABLE_STATUSES and attempt < retries - 1:
                await _sleep_with_backoff(attempt, backoff_seconds, max_backoff_seconds)
                continue
            return response
        except RETRYABLE_ERRORS as exc:
            last_error = exc
            if attempt >= retries - 1:
                raise
            await _sleep_with_backoff(attempt, backoff_seconds, max_backoff_seconds)

    if last_error:
        raise last_error
    raise RuntimeError("request_with_retries exhausted without response")


async def _sleep_with_backoff(attempt: int, base: float, cap: float):
    delay = min(cap, base * (2**attempt))
    if delay > 0:
        await asyncio.sleep(delay)
