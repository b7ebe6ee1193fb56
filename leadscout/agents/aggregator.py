"""Fold every page result for one domain into a single lead record and its sheet row."""
from __future__ import annotations

import json
from typing import Dict, List, Optional, Sequence, Tuple

from leadscout.schemas import (
    AggregatedLead,
    LeadEmail,
    ModelUsage,
    PageSignalSet,
    ScoringResult,
    SheetRow,
    SummaryResult,
)
from leadscout.utils.hashing import build_lead_id
from leadscout.utils.time import utc_now_iso

REGEX_EMAIL_CONFIDENCE = 0.5
NOTES_SEPARATOR = " | "
CONTEXT_SEPARATOR = "; "

# (value, confidence) of the value currently held for a scalar field
Held = Optional[Tuple[str, float]]

SCALAR_FIELDS = {
    "company": "company_name",
    "description": "company_description",
    "industry": "industry",
    "location": "headquarters",
    "size": "employee_count",
}


def pick_higher_confidence(current: Held, value: Optional[str], confidence: float) -> Held:
    """Incoming wins when it has a value and at least the held confidence."""
    if not value:
        return current
    if current is None or confidence >= current[1]:
        return value, confidence
    return current


class _EmailBucket:
    __slots__ = ("value", "confidence", "contexts")

    def __init__(self, value: str):
        self.value = value
        self.confidence = 0.0
        self.contexts: Dict[str, None] = {}

    def offer(self, confidence: float, context: Optional[str] = None) -> None:
        self.confidence = max(self.confidence, confidence)
        if context:
            self.contexts.setdefault(context, None)

    def to_email(self) -> LeadEmail:
        return LeadEmail(
            value=self.value,
            confidence=round(self.confidence, 2),
            context=CONTEXT_SEPARATOR.join(self.contexts) or None,
        )


def aggregate_pages(domain: str, pages: Sequence[PageSignalSet]) -> AggregatedLead:
    held: Dict[str, Held] = {name: None for name in SCALAR_FIELDS}
    emails: Dict[str, _EmailBucket] = {}
    contact_urls: Dict[str, None] = {}
    phones: Dict[str, None] = {}
    linkedin: Dict[str, None] = {}
    other_social: Dict[str, None] = {}
    tech: Dict[str, None] = {}
    source_urls: Dict[str, None] = {}
    notes: Dict[str, None] = {}
    confidences: List[float] = []
    usage: List[ModelUsage] = []

    for page in pages:
        fields = page.fields
        confidence = fields.confidence or 0
        if page.url:
            source_urls.setdefault(page.url, None)
        if confidence:
            confidences.append(confidence)
        usage.extend(page.model_usage)

        for lead_field, page_field in SCALAR_FIELDS.items():
            held[lead_field] = pick_higher_confidence(held[lead_field], getattr(fields, page_field), confidence)

        for entry in fields.emails:
            value = (entry.value or "").strip().lower()
            if not value:
                continue
            bucket = emails.setdefault(value, _EmailBucket(value))
            entry_confidence = entry.confidence if entry.confidence is not None else confidence
            bucket.offer(entry_confidence, entry.context)
        for value in page.regex_emails:
            if value:
                emails.setdefault(value, _EmailBucket(value)).offer(REGEX_EMAIL_CONFIDENCE)

        for url in fields.contact_urls:
            contact_urls.setdefault(url, None)
        for url in list(fields.linkedin_urls) + list(page.linkedin):
            linkedin.setdefault(url, None)
        for url in list(fields.other_social) + list(page.other_social):
            other_social.setdefault(url, None)
        for phone in page.regex_phones:
            phones.setdefault(phone, None)
        for label in page.tech_hints:
            tech.setdefault(label, None)
        if fields.notes and fields.notes.strip():
            notes.setdefault(fields.notes.strip(), None)

    ranked = sorted((bucket.to_email() for bucket in emails.values()), key=lambda item: -item.confidence)

    return AggregatedLead(
        domain=domain,
        company=held["company"][0] if held["company"] else None,
        description=held["description"][0] if held["description"] else None,
        industry=held["industry"][0] if held["industry"] else None,
        location=held["location"][0] if held["location"] else None,
        size=held["size"][0] if held["size"] else None,
        contact_urls=list(contact_urls),
        emails=ranked,
        phones=list(phones),
        linkedin=list(linkedin),
        other_social=list(other_social),
        notes=NOTES_SEPARATOR.join(notes) or None,
        confidence=sum(confidences) / len(confidences) if confidences else None,
        tech=list(tech),
        source_urls=list(source_urls),
        usage=usage,
    )


def build_sheet_row(
    lead: AggregatedLead,
    scoring: Optional[ScoringResult] = None,
    summary: Optional[SummaryResult] = None,
) -> SheetRow:
    """Project a lead onto the fixed sheet columns."""
    ai_notes = []
    if summary is not None:
        ai_notes = [text for text in [summary.summary, *summary.key_signals] if text]
    confidence = scoring.confidence if scoring is not None else lead.confidence

    return SheetRow(
        timestamp=utc_now_iso(),
        lead_id=build_lead_id(lead.domain, lead.primary_email),
        domain=lead.domain,
        company=lead.company,
        emails=", ".join(email.value for email in lead.emails),
        phones=", ".join(lead.phones),
        contact_url=(lead.contact_urls or lead.source_urls or [f"https://{lead.domain}"])[0],
        linkedin=lead.linkedin[0] if lead.linkedin else "",
        industry=lead.industry,
        location=lead.location,
        size=lead.size,
        tech_cms=", ".join(lead.tech),
        fit_score=scoring.fit_score if scoring is not None else None,
        confidence=confidence,
        notes_ai=NOTES_SEPARATOR.join(ai_notes) or lead.notes,
        source_urls=json.dumps(lead.source_urls),
    )
