"""
Run dispatcher: expands inputs into targets, drives each through the
per-target graph under a domain semaphore, dedups rows and syncs the sheet.
"""
from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence
from urllib.parse import urlparse

from leadscout.agents.crawl_agent import FirecrawlClient
from leadscout.agents.directory import extract_business_urls
from leadscout.agents.llm_client import CompletionResult, LLMClient, build_llm_client
from leadscout.agents.local_loader import load_documents_from_folder
from leadscout.agents.sheets_agent import GoogleSheetSync
from leadscout.agents.signals import ensure_http, normalize_domain
from leadscout.config import Settings, get_settings
from leadscout.errors import (
    ConfigurationError,
    FetchFailure,
    LeadPipelineError,
    SyncFailure,
    failure_record,
)
from leadscout.schemas import AggregatedLead, RunOptions, SheetRow, Target
from leadscout.services.state_store import StateStore, build_state_store
from leadscout.utils.hashing import slugify
from leadscout.utils.time import utc_now_iso
from leadscout.workflow.graph import gather_documents, prioritization_limit, target_graph

logger = logging.getLogger(__name__)

SPREADSHEET_URL = "https://docs.google.com/spreadsheets/d/{sheet_id}"


@dataclass
class PipelineServices:
    settings: Settings
    llm: LLMClient
    crawler: Any
    sheets: Any
    store: StateStore
    loader: Callable[[str], list] = load_documents_from_folder


def build_services(settings: Optional[Settings] = None, store: Optional[StateStore] = None) -> PipelineServices:
    settings = settings or get_settings()
    store = store or build_state_store(settings)
    return PipelineServices(
        settings=settings,
        llm=build_llm_client(settings),
        crawler=FirecrawlClient(settings, store),
        sheets=GoogleSheetSync(settings),
        store=store,
    )


@dataclass
class RunMetrics:
    started_at: str = field(default_factory=utc_now_iso)
    finished_at: Optional[str] = None
    duration_ms: Optional[int] = None
    targets_discovered: int = 0
    processed: int = 0
    successes: int = 0
    failures: int = 0
    directory_pages: int = 0
    target_pages: int = 0
    llm_calls: int = 0
    llm_models: Dict[str, Dict[str, float]] = field(default_factory=dict)
    _clock: float = field(default_factory=time.monotonic, repr=False)

    def add_usage(self, model: Optional[str], usage: Optional[Dict[str, float]]) -> None:
        if not model or not usage:
            return
        bucket = self.llm_models.setdefault(model, {})
        counted = False
        for key, value in usage.items():
            if isinstance(value, (int, float)) and not isinstance(value, bool):
                bucket[key] = bucket.get(key, 0) + value
                counted = True
        if counted:
            self.llm_calls += 1

    def add_completion(self, result: Optional[CompletionResult]) -> None:
        if result is not None:
            self.add_usage(result.model, result.usage)

    def finish(self) -> None:
        self.finished_at = utc_now_iso()
        self.duration_ms = int((time.monotonic() - self._clock) * 1000)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "duration_ms": self.duration_ms,
            "totals": {
                "targets_discovered": self.targets_discovered,
                "processed": self.processed,
                "successes": self.successes,
                "failures": self.failures,
            },
            "crawl": {
                "directory_pages": self.directory_pages,
                "target_pages": self.target_pages,
                "total_pages": self.directory_pages + self.target_pages,
            },
            "llm": {"models": self.llm_models, "total_calls": self.llm_calls},
        }


@dataclass
class TargetResult:
    target: Target
    success: bool
    documents_fetched: int = 0
    lead: Optional[AggregatedLead] = None
    sheet_row: Optional[SheetRow] = None
    scoring: Optional[CompletionResult] = None
    summary: Optional[CompletionResult] = None
    error: Optional[Dict[str, Any]] = None
    page_failures: List[Dict[str, Any]] = field(default_factory=list)


# ── Single target ─────────────────────────────────────────────────────────────

async def process_target(target: Target, options: RunOptions, services: PipelineServices) -> TargetResult:
    domain_key = normalize_domain(target.url)
    config = {"configurable": {"services": services, "options": options}}
    try:
        final = await target_graph.ainvoke({"target_url": target.url}, config=config)
        documents = final.get("documents") or []
        if not documents:
            raise FetchFailure("No documents returned from crawl", domain=domain_key, url=target.url)
        services.store.upsert_domain_state(domain_key, last_success=utc_now_iso(), pages_fetched=len(documents))
        return TargetResult(
            target=target,
            success=True,
            documents_fetched=len(documents),
            lead=final.get("lead"),
            sheet_row=final.get("sheet_row"),
            scoring=final.get("scoring"),
            summary=final.get("summary"),
            page_failures=final.get("page_failures") or [],
        )
    except Exception as exc:
        services.store.record_failure(domain_key, exc)
        logger.error("[DISPATCH] Target failed %s: %s", target.url, exc)
        return TargetResult(
            target=target,
            success=False,
            error=failure_record(exc, domain=domain_key, url=target.url),
        )


# ── Run helpers ───────────────────────────────────────────────────────────────

def parse_domains_file(path: str) -> List[str]:
    resolved = Path(path).expanduser().resolve()
    if not resolved.is_file():
        raise ConfigurationError(f"Domains file not found: {resolved}")
    return [line.strip() for line in resolved.read_text(encoding="utf-8").splitlines() if line.strip()]


def collect_inputs(options: RunOptions) -> List[str]:
    inputs: Dict[str, None] = {}
    if options.url:
        inputs.setdefault(options.url, None)
    for url in options.urls:
        if url:
            inputs.setdefault(url, None)
    if options.domains_file:
        for url in parse_domains_file(options.domains_file):
            inputs.setdefault(url, None)
    return list(inputs)


def build_spreadsheet_title(domains: Sequence[str], options: RunOptions) -> str:
    if options.title:
        return options.title
    label = options.label or options.keyword
    if not label:
        first = ensure_http(domains[0])
        label = urlparse(first).netloc or first
    return f"{datetime.now().strftime('%Y-%m-%d')}_{slugify(label)}"


def required_settings(options: RunOptions, dry_run: bool) -> List[str]:
    names = ["openai_api_key"]
    if not options.html_folder:
        names.insert(0, "firecrawl_api_key")
    if not dry_run:
        names.append("google_application_credentials")
    return names


def resolve_run_options(options: RunOptions, settings: Settings) -> RunOptions:
    """Pin every settings-backed default into the options so a queued run is a fixed snapshot."""

    def pick(value, default):
        return default if value is None else value

    return options.model_copy(
        update={
            "max_prioritized_pages": prioritization_limit(options, settings),
            "max_depth": pick(options.max_depth, settings.max_depth),
            "max_pages": pick(options.max_pages, settings.max_pages),
            "max_businesses": pick(options.max_businesses, settings.max_businesses),
            "page_concurrency": pick(options.page_concurrency, settings.page_concurrency),
            "domain_concurrency": pick(options.domain_concurrency, settings.domain_concurrency),
            "model": options.model or settings.openai_model,
            "delay": pick(options.delay, settings.crawl_delay),
            "poll_interval": pick(options.poll_interval, settings.crawl_poll_interval),
            "sheet_name": options.sheet_name or settings.sheet_name,
            "sheet_id": options.sheet_id or settings.sheet_id or None,
            "sheet_folder_id": options.sheet_folder_id or settings.sheet_folder_id or None,
            "share_with": list(dict.fromkeys([*settings.get_share_with(), *options.share_with])),
            "dry_run": pick(options.dry_run, settings.dry_run),
        }
    )


def with_source(row: SheetRow, source: str) -> SheetRow:
    """Prepend the directory page a lead was discovered on to its source URLs."""
    try:
        sources = json.loads(row.source_urls or "[]")
    except ValueError:
        sources = []
    if not isinstance(sources, list):
        sources = []
    merged = list(dict.fromkeys([source, *sources]))
    return row.model_copy(update={"source_urls": json.dumps(merged)})


async def expand_directory(source: str, options: RunOptions, services: PipelineServices, metrics: RunMetrics) -> List[Target]:
    start_url = ensure_http(source)
    documents = await gather_documents(source, options, services)
    metrics.directory_pages += len(documents)
    if not documents:
        logger.warning("[DISPATCH] No documents from directory %s", start_url)
        return []
    max_businesses = options.max_businesses or services.settings.max_businesses
    candidates = extract_business_urls(documents, start_url, max_businesses)
    if not candidates:
        logger.warning("[DISPATCH] No external business URLs discovered on %s", start_url)
    return [Target(url=candidate.url, source=start_url) for candidate in candidates]


# ── Run ───────────────────────────────────────────────────────────────────────

async def run_pipeline(options: RunOptions, services: PipelineServices) -> Dict[str, Any]:
    settings = services.settings
    dry_run = settings.dry_run if options.dry_run is None else options.dry_run

    missing = settings.missing(required_settings(options, dry_run))
    if missing:
        raise ConfigurationError(f"Missing required configuration: {', '.join(missing)}")

    domains = collect_inputs(options)
    if not domains:
        if options.html_folder:
            raise ConfigurationError("Provide at least one domain via url or urls when using html_folder")
        raise ConfigurationError("Provide at least one url, urls entry or domains_file")
    if options.html_folder and len(domains) > 1:
        raise ConfigurationError("html_folder supports a single domain")

    metrics = RunMetrics()
    sheet_name = options.sheet_name or settings.sheet_name
    sheet_id = options.sheet_id or settings.sheet_id or None
    spreadsheet_url = SPREADSHEET_URL.format(sheet_id=sheet_id) if sheet_id else ""
    created_new_sheet = False
    directory_mode = bool(options.directory)

    if not dry_run and not options.reuse_sheet:
        share_with = list(dict.fromkeys([*settings.get_share_with(), *options.share_with]))
        title = build_spreadsheet_title(domains, options)
        sheet_id, spreadsheet_url = await services.sheets.create_spreadsheet(
            title, sheet_name, share_with, options.sheet_folder_id or settings.sheet_folder_id or None
        )
        created_new_sheet = True
        logger.info("[DISPATCH] Spreadsheet created %s (%s)", title, sheet_id)
    elif not dry_run and options.reuse_sheet:
        if not sheet_id:
            raise ConfigurationError("reuse_sheet requested but no sheet_id is configured")
        logger.info("[DISPATCH] Reusing spreadsheet %s/%s", sheet_id, sheet_name)

    existing_ids: set[str] = set()
    if not dry_run and sheet_id:
        try:
            await services.sheets.ensure_header(sheet_id, sheet_name)
            existing_ids |= await services.sheets.fetch_existing_keys(sheet_id, sheet_name)
            if existing_ids:
                logger.info("[DISPATCH] Loaded %s existing lead ids", len(existing_ids))
        except LeadPipelineError as exc:
            logger.warning("[DISPATCH] Unable to load existing lead ids: %s", exc.message)

    failures: List[Dict[str, Any]] = []
    page_failures: List[Dict[str, Any]] = []
    targets: List[Target] = []

    if directory_mode:
        expanded = await asyncio.gather(
            *(expand_directory(domain, options, services, metrics) for domain in domains),
            return_exceptions=True,
        )
        for domain, outcome in zip(domains, expanded):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error("[DISPATCH] Directory crawl failed %s: %s", domain, outcome)
                failures.append(failure_record(outcome, domain=normalize_domain(domain), url=domain))
                continue
            targets.extend(outcome)
    else:
        targets = [Target(url=domain) for domain in domains]
    metrics.targets_discovered = len(targets)

    def build_result(rows: List[SheetRow], appended: int) -> Dict[str, Any]:
        metrics.finish()
        return {
            "appended": appended,
            "failures": failures,
            "page_failures": page_failures,
            "dry_run": dry_run,
            "sheet_id": sheet_id,
            "spreadsheet_url": spreadsheet_url,
            "created_new_sheet": created_new_sheet,
            "directory_mode": directory_mode,
            "targets_processed": metrics.processed,
            "rows": [row.model_dump() for row in rows],
            "metrics": metrics.to_dict(),
        }

    if not targets:
        failures.append({"type": "fetch_failure", "message": "No crawl targets discovered", "domain": None, "url": None})
        return build_result([], 0)

    concurrency = max(1, options.domain_concurrency or settings.domain_concurrency)
    semaphore = asyncio.Semaphore(concurrency)
    pending_rows: List[SheetRow] = []

    async def run_target(target: Target) -> None:
        async with semaphore:
            metrics.processed += 1
            result = await process_target(target, options, services)
        metrics.target_pages += result.documents_fetched
        page_failures.extend(result.page_failures)
        if not result.success:
            metrics.failures += 1
            failures.append(result.error)
            return

        metrics.successes += 1
        for entry in result.lead.usage if result.lead else []:
            metrics.add_usage(entry.model, entry.usage)
        metrics.add_completion(result.scoring)
        metrics.add_completion(result.summary)

        row = result.sheet_row
        if row is None:
            return
        if row.lead_id in existing_ids:
            logger.info("[DISPATCH] Lead already exists, skipping %s", target.url)
            return
        if target.source:
            row = with_source(row, target.source)
        existing_ids.add(row.lead_id)
        pending_rows.append(row)
        logger.info("[DISPATCH] Lead prepared %s (%s)", target.url, row.lead_id)

    await asyncio.gather(*(run_target(target) for target in targets))

    if dry_run:
        logger.info("[DISPATCH] Dry run completed, %s rows prepared", len(pending_rows))
        return build_result(pending_rows, 0)

    if pending_rows:
        if not sheet_id:
            raise ConfigurationError("No spreadsheet id available for append")
        try:
            await services.sheets.append_rows([row.to_values() for row in pending_rows], sheet_id, sheet_name)
        except SyncFailure as exc:
            partial = build_result(pending_rows, 0)
            raise SyncFailure(exc.message, rows=partial["rows"], partial_result=partial) from exc

    return build_result(pending_rows, len(pending_rows))
