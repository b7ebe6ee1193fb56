"""
Pydantic models for every record that flows through the pipeline.

Documents and page results are frozen once created; the LLM payload models
forbid extra keys so a drifting model response fails validation at the
boundary instead of leaking partial objects downstream.
"""
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


# ── Crawl input ───────────────────────────────────────────────────────────────

class Document(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: Optional[str] = None
    markdown: Optional[str] = None
    html: Optional[str] = None
    links: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# ── LLM payloads ──────────────────────────────────────────────────────────────

class ContactEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    value: str
    confidence: float
    context: Optional[str] = None


class PageFields(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    company_name: Optional[str]
    company_description: Optional[str]
    industry: Optional[str]
    headquarters: Optional[str]
    employee_count: Optional[str]
    contact_urls: List[str]
    emails: List[ContactEntry]
    phones: List[ContactEntry]
    linkedin_urls: List[str]
    other_social: List[str]
    notes: Optional[str]
    confidence: float = Field(ge=0, le=1)
    missing_signals: List[str]


class ScoringResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    fit_score: float = Field(ge=0, le=100)
    confidence: float = Field(ge=0, le=1)
    rationale: str
    blockers: List[str]


class SummaryResult(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    summary: str
    key_signals: List[str]


class ModelUsage(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    usage: Dict[str, float] = Field(default_factory=dict)


# ── Extraction results ────────────────────────────────────────────────────────

class PageSignalSet(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: Optional[str] = None
    fields: PageFields
    regex_emails: List[str] = Field(default_factory=list)
    regex_phones: List[str] = Field(default_factory=list)
    linkedin: List[str] = Field(default_factory=list)
    other_social: List[str] = Field(default_factory=list)
    tech_hints: List[str] = Field(default_factory=list)
    model_usage: List[ModelUsage] = Field(default_factory=list)
    escalated: bool = False


class LeadEmail(BaseModel):
    value: str
    confidence: float
    context: Optional[str] = None


class AggregatedLead(BaseModel):
    domain: str
    company: Optional[str] = None
    description: Optional[str] = None
    industry: Optional[str] = None
    location: Optional[str] = None
    size: Optional[str] = None
    contact_urls: List[str] = Field(default_factory=list)
    emails: List[LeadEmail] = Field(default_factory=list)
    phones: List[str] = Field(default_factory=list)
    linkedin: List[str] = Field(default_factory=list)
    other_social: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    confidence: Optional[float] = None
    tech: List[str] = Field(default_factory=list)
    source_urls: List[str] = Field(default_factory=list)
    usage: List[ModelUsage] = Field(default_factory=list)

    @property
    def primary_email(self) -> str:
        return self.emails[0].value if self.emails else ""


SHEET_HEADER = [
    "timestamp",
    "lead_id",
    "domain",
    "company",
    "emails",
    "phones",
    "contact_url",
    "linkedin",
    "industry",
    "location",
    "size",
    "tech_cms",
    "fit_score",
    "confidence",
    "notes_ai",
    "source_urls",
    "status",
    "error",
]


class SheetRow(BaseModel):
    timestamp: str
    lead_id: str
    domain: str
    company: Optional[str] = None
    emails: str = ""
    phones: str = ""
    contact_url: str = ""
    linkedin: str = ""
    industry: Optional[str] = None
    location: Optional[str] = None
    size: Optional[str] = None
    tech_cms: str = ""
    fit_score: Optional[float] = None
    confidence: Optional[float] = None
    notes_ai: Optional[str] = None
    source_urls: str = "[]"
    status: str = "ok"
    error: str = ""

    def to_values(self) -> List[Any]:
        data = self.model_dump()
        return ["" if data[key] is None else data[key] for key in SHEET_HEADER]


# ── Targets & runs ────────────────────────────────────────────────────────────

class Target(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    source: Optional[str] = None


class BusinessCandidate(BaseModel):
    model_config = ConfigDict(frozen=True)

    url: str
    domain: str
    source_document: Optional[str] = None


class RunOptions(BaseModel):
    """Frozen snapshot of the pipeline configuration for one run."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    url: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    domains_file: Optional[str] = None
    html_folder: Optional[str] = None
    icp: Optional[str] = None
    directory: bool = False
    max_businesses: Optional[int] = None
    sheet_name: Optional[str] = None
    title: Optional[str] = None
    keyword: Optional[str] = None
    label: Optional[str] = None
    share_with: List[str] = Field(default_factory=list)
    sheet_folder_id: Optional[str] = None
    reuse_sheet: bool = False
    sheet_id: Optional[str] = None
    max_depth: Optional[int] = None
    max_pages: Optional[int] = None
    max_prioritized_pages: Optional[int] = None
    page_concurrency: Optional[int] = None
    domain_concurrency: Optional[int] = None
    model: Optional[str] = None
    delay: Optional[float] = None
    poll_interval: Optional[float] = None
    include_paths: List[str] = Field(default_factory=list)
    exclude_paths: List[str] = Field(default_factory=list)
    dry_run: Optional[bool] = None


class RunStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class Run(BaseModel):
    id: str
    status: RunStatus = RunStatus.QUEUED
    created_at: str
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    options: RunOptions
    result: Optional[Dict[str, Any]] = None
    error: Optional[Dict[str, Any]] = None


class DomainState(BaseModel):
    last_success: Optional[str] = None
    last_failure: Optional[Dict[str, Any]] = None
    pages_fetched: Optional[int] = None
    visited: List[str] = Field(default_factory=list)
    updated_at: Optional[str] = None
