"""Failure taxonomy for the enrichment pipeline.

Every failure that crosses a stage boundary is one of these, so it can be
attached to a run result as a structured record instead of a bare string.
"""
from __future__ import annotations

from typing import Any, Dict, List, Optional


class LeadPipelineError(Exception):
    kind = "error"

    def __init__(self, message: str, *, domain: Optional[str] = None, url: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.domain = domain
        self.url = url

    def to_record(self) -> Dict[str, Any]:
        return {
            "type": self.kind,
            "message": self.message,
            "domain": self.domain,
            "url": self.url,
        }


class FetchFailure(LeadPipelineError):
    """The crawler or loader produced no usable documents for a target."""

    kind = "fetch_failure"


class ExtractionFailure(LeadPipelineError):
    """The LLM service failed for a page, even after escalation."""

    kind = "extraction_failure"


class ConfigurationError(LeadPipelineError):
    """Missing credentials, identifiers or inputs; aborts a run before dispatch."""

    kind = "configuration_error"


class SyncFailure(LeadPipelineError):
    """Sheet write failed; the rows already computed ride along."""

    kind = "sync_failure"

    def __init__(
        self,
        message: str,
        *,
        rows: Optional[List[Dict[str, Any]]] = None,
        partial_result: Optional[Dict[str, Any]] = None,
        domain: Optional[str] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message, domain=domain, url=url)
        self.rows = rows or []
        self.partial_result = partial_result

    def to_record(self) -> Dict[str, Any]:
        record = super().to_record()
        record["rows"] = self.rows
        if self.partial_result is not None:
            record["partial_result"] = self.partial_result
        return record


def failure_record(exc: BaseException, *, domain: Optional[str] = None, url: Optional[str] = None) -> Dict[str, Any]:
    """Structured record for any exception, keeping origin info when known."""
    if isinstance(exc, LeadPipelineError):
        record = exc.to_record()
        record["domain"] = record.get("domain") or domain
        record["url"] = record.get("url") or url
        return record
    return {
        "type": type(exc).__name__,
        "message": str(exc) or type(exc).__name__,
        "domain": domain,
        "url": url,
    }
