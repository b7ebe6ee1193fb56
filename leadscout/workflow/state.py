"""
Target State: shared TypedDict passed through every LangGraph node.
"""
from typing import Any, Dict, List, Optional, TypedDict

from leadscout.agents.llm_client import CompletionResult
from leadscout.schemas import AggregatedLead, Document, PageSignalSet, SheetRow


class TargetState(TypedDict, total=False):
    # ── Target context ─────────────────────────────────────────────────────
    target_url: str
    domain: str

    # ── Fetch output ───────────────────────────────────────────────────────
    documents: List[Document]
    prioritized: List[Document]

    # ── Extraction output ──────────────────────────────────────────────────
    pages: List[PageSignalSet]           # prioritized order, failed pages omitted
    page_failures: List[Dict[str, Any]]

    # ── Lead output ────────────────────────────────────────────────────────
    lead: Optional[AggregatedLead]
    scoring: Optional[CompletionResult]
    summary: Optional[CompletionResult]
    sheet_row: Optional[SheetRow]
