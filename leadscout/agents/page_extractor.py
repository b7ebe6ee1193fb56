"""
Per-page extraction with confidence-gated model escalation.

Each page walks a small state machine:

  ATTEMPTED(primary) ─► ACCEPTED
                     └► ESCALATED(stronger model) ─► ACCEPTED | FAILED

Escalation happens when the primary call fails, returns a confidence below
CONFIDENCE_THRESHOLD, or returns no company name. The escalated result is
adopted as-is; there is no second escalation.
"""
from __future__ import annotations

import logging
from enum import Enum
from typing import List, Optional

from leadscout.agents.llm_client import CompletionResult, LLMClient
from leadscout.agents.signals import (
    detect_tech_hints,
    extract_emails,
    extract_phones,
    extract_social_links,
)
from leadscout.errors import ExtractionFailure
from leadscout.schemas import Document, ModelUsage, PageFields, PageSignalSet

logger = logging.getLogger(__name__)

CONFIDENCE_THRESHOLD = 0.6


class ExtractionStage(str, Enum):
    ATTEMPTED = "attempted"
    ESCALATED = "escalated"
    ACCEPTED = "accepted"
    FAILED = "failed"


def needs_escalation(fields: PageFields) -> bool:
    return (fields.confidence or 0) < CONFIDENCE_THRESHOLD or not (fields.company_name or "").strip()


def next_stage(stage: ExtractionStage, result: Optional[PageFields]) -> ExtractionStage:
    """Transition after a model call; `result` is None when the call failed."""
    if stage == ExtractionStage.ATTEMPTED:
        if result is None or needs_escalation(result):
            return ExtractionStage.ESCALATED
        return ExtractionStage.ACCEPTED
    if stage == ExtractionStage.ESCALATED:
        return ExtractionStage.FAILED if result is None else ExtractionStage.ACCEPTED
    return stage


def _usage_entry(result: CompletionResult) -> List[ModelUsage]:
    if not result.usage:
        return []
    return [ModelUsage(model=result.model, usage=result.usage)]


async def extract_page(
    document: Document,
    domain: str,
    icp_profile: Optional[str],
    model: Optional[str],
    *,
    llm: LLMClient,
    escalation_model: str,
    phone_region: str = "US",
) -> PageSignalSet:
    text = f"{document.markdown or ''}\n{document.html or ''}"
    regex_emails = extract_emails(text)
    regex_phones = extract_phones(text, phone_region)
    social = extract_social_links(f"{text} {document.url or ''}")
    tech = detect_tech_hints(html=document.html or "", markdown=document.markdown or "")

    usage: List[ModelUsage] = []
    accepted: Optional[CompletionResult] = None
    primary_error: Optional[ExtractionFailure] = None

    stage = ExtractionStage.ATTEMPTED
    try:
        accepted = await llm.extract_page(document, domain, icp_profile, model)
        usage.extend(_usage_entry(accepted))
    except ExtractionFailure as exc:
        primary_error = exc
        logger.warning("[EXTRACT] Primary model failed for %s: %s", document.url, exc.message)

    stage = next_stage(stage, accepted.json if accepted else None)
    escalated = stage == ExtractionStage.ESCALATED
    if escalated:
        try:
            result = await llm.extract_page(document, domain, icp_profile, escalation_model)
            usage.extend(_usage_entry(result))
            stage = next_stage(stage, result.json)
            accepted = result
        except ExtractionFailure as exc:
            if accepted is None:
                raise ExtractionFailure(
                    f"Extraction failed after escalation to {escalation_model}: {exc.message}",
                    domain=domain or None,
                    url=document.url,
                ) from (primary_error or exc)
            logger.warning(
                "[EXTRACT] Escalation failed for %s, keeping primary result: %s", document.url, exc.message
            )
            stage = ExtractionStage.ACCEPTED

    logger.debug("[EXTRACT] %s -> %s (escalated=%s)", document.url, stage.value, escalated)
    return PageSignalSet(
        url=document.url,
        fields=accepted.json,
        regex_emails=regex_emails,
        regex_phones=regex_phones,
        linkedin=social["linkedin"],
        other_social=social["other"],
        tech_hints=tech,
        model_usage=usage,
        escalated=escalated,
    )
