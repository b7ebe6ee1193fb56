"""
LangGraph Graph: per-target enrichment pipeline with conditional routing.

Flow:
  fetch → prioritize → extract → aggregate → score → summarize → build_row → END

Conditional edges:
  - After fetch: stop if the crawler or loader returned no documents

Collaborators and the run's options travel in
`config["configurable"]` as `services` and `options`.
"""
from __future__ import annotations

import asyncio
import logging
from typing import List, Tuple

from langchain_core.runnables import RunnableConfig
from langgraph.graph import END, StateGraph

from leadscout.agents.aggregator import aggregate_pages, build_sheet_row
from leadscout.agents.page_extractor import extract_page
from leadscout.agents.prioritizer import prioritize_documents
from leadscout.agents.signals import ensure_http, normalize_domain
from leadscout.errors import ExtractionFailure, failure_record
from leadscout.schemas import Document, PageSignalSet, RunOptions
from leadscout.workflow.state import TargetState

logger = logging.getLogger(__name__)


def _context(config: RunnableConfig) -> Tuple[object, RunOptions]:
    configurable = (config or {}).get("configurable", {})
    return configurable["services"], configurable["options"]


async def gather_documents(url: str, options: RunOptions, services) -> List[Document]:
    """Saved pages when an HTML folder is configured, otherwise a fresh crawl."""
    if options.html_folder:
        return await asyncio.to_thread(services.loader, options.html_folder)
    settings = services.settings
    return await services.crawler.crawl(
        ensure_http(url),
        depth=options.max_depth if options.max_depth is not None else settings.max_depth,
        page_limit=options.max_pages if options.max_pages is not None else settings.max_pages,
        include_paths=options.include_paths,
        exclude_paths=options.exclude_paths,
        poll_interval=options.poll_interval,
        delay=options.delay,
    )


def prioritization_limit(options: RunOptions, settings) -> int:
    """Pages per target sent to the LLM: explicit run bound, then run max_pages, then settings."""
    if options.max_prioritized_pages is not None:
        return options.max_prioritized_pages
    if options.max_pages is not None:
        return options.max_pages
    return settings.max_prioritized_pages


# ── Nodes ─────────────────────────────────────────────────────────────────────

async def fetch_node(state: TargetState, config: RunnableConfig) -> dict:
    services, options = _context(config)
    documents = await gather_documents(state["target_url"], options, services)
    logger.info("[FETCH] %s -> %s documents", state["target_url"], len(documents))
    return {"documents": documents, "domain": normalize_domain(state["target_url"])}


def should_continue_after_fetch(state: TargetState) -> str:
    if state.get("documents"):
        return "prioritize"
    logger.info("[GRAPH] No documents for %s, skipping target", state.get("target_url"))
    return "end"


async def prioritize_node(state: TargetState, config: RunnableConfig) -> dict:
    services, options = _context(config)
    prioritized = prioritize_documents(state["documents"], prioritization_limit(options, services.settings))
    logger.info(
        "[PRIORITIZE] %s | total=%s prioritized=%s", state["domain"], len(state["documents"]), len(prioritized)
    )
    return {"prioritized": prioritized}


async def extract_node(state: TargetState, config: RunnableConfig) -> dict:
    services, options = _context(config)
    settings = services.settings
    domain = state.get("domain") or ""
    concurrency = max(1, options.page_concurrency or settings.page_concurrency)
    semaphore = asyncio.Semaphore(concurrency)

    async def run_one(document: Document):
        async with semaphore:
            try:
                return await extract_page(
                    document,
                    domain,
                    options.icp,
                    options.model,
                    llm=services.llm,
                    escalation_model=settings.openai_escalation_model,
                    phone_region=settings.default_phone_region,
                )
            except ExtractionFailure as exc:
                logger.warning("[EXTRACT] Page failed %s: %s", document.url, exc.message)
                return exc

    prioritized = state.get("prioritized", [])
    results = await asyncio.gather(*(run_one(document) for document in prioritized))

    pages = [result for result in results if isinstance(result, PageSignalSet)]
    failures = [
        failure_record(result, domain=domain, url=document.url)
        for document, result in zip(prioritized, results)
        if isinstance(result, ExtractionFailure)
    ]
    if prioritized and not pages:
        raise ExtractionFailure(f"All {len(prioritized)} prioritized pages failed extraction", domain=domain)
    return {"pages": pages, "page_failures": failures}


async def aggregate_node(state: TargetState) -> dict:
    return {"lead": aggregate_pages(state["domain"], state.get("pages", []))}


async def score_node(state: TargetState, config: RunnableConfig) -> dict:
    services, options = _context(config)
    return {"scoring": await services.llm.score_lead(state["lead"], options.icp, options.model)}


async def summarize_node(state: TargetState, config: RunnableConfig) -> dict:
    services, options = _context(config)
    return {"summary": await services.llm.summarize_lead(state["lead"], options.model)}


async def build_row_node(state: TargetState) -> dict:
    scoring = state.get("scoring")
    summary = state.get("summary")
    row = build_sheet_row(
        state["lead"],
        scoring.json if scoring else None,
        summary.json if summary else None,
    )
    return {"sheet_row": row}


def build_graph():
    g = StateGraph(TargetState)

    # ── Register nodes ──────────────────────────────────────────────────
    g.add_node("fetch",      fetch_node)
    g.add_node("prioritize", prioritize_node)
    g.add_node("extract",    extract_node)
    g.add_node("aggregate",  aggregate_node)
    g.add_node("score",      score_node)
    g.add_node("summarize",  summarize_node)
    g.add_node("build_row",  build_row_node)

    # ── Entry point ─────────────────────────────────────────────────────
    g.set_entry_point("fetch")

    # ── Edges ───────────────────────────────────────────────────────────
    g.add_conditional_edges(
        "fetch",
        should_continue_after_fetch,
        {"prioritize": "prioritize", "end": END},
    )
    g.add_edge("prioritize", "extract")
    g.add_edge("extract",    "aggregate")
    g.add_edge("aggregate",  "score")
    g.add_edge("score",      "summarize")
    g.add_edge("summarize",  "build_row")
    g.add_edge("build_row",  END)

    return g.compile()


# Singleton compiled graph
target_graph = build_graph()
