"""
LLM collaborator: schema-constrained extraction, scoring and summarization.
=============================================================================
Three calls, each returning a validated pydantic payload plus token usage:

  extract_page(document, domain, icp_profile, model)  → PageFields
  score_lead(lead, icp_profile, model)                → ScoringResult
  summarize_lead(lead, model)                         → SummaryResult

Uses Azure OpenAI when an endpoint + key are configured, otherwise the public
OpenAI API. Responses are requested with a strict JSON schema and validated
again on arrival; anything that does not validate is an ExtractionFailure.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional, Type

import openai
from pydantic import BaseModel, ValidationError

from leadscout.config import Settings, get_settings
from leadscout.errors import ExtractionFailure
from leadscout.schemas import AggregatedLead, Document, PageFields, ScoringResult, SummaryResult

logger = logging.getLogger(__name__)

MAX_PAGE_CHARS = 24000

# ── JSON schemas ──────────────────────────────────────────────────────────────

_CONTACT_ITEM = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "value": {"type": "string"},
        "confidence": {"type": "number"},
        "context": {"type": ["string", "null"]},
    },
    "required": ["value", "confidence", "context"],
}

LEAD_EXTRACTION_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "description": "Structured lead signals extracted strictly from the provided content",
    "properties": {
        "company_name": {"type": ["string", "null"], "description": "Legal or brand name"},
        "company_description": {"type": ["string", "null"], "description": "1-2 sentence description"},
        "industry": {"type": ["string", "null"]},
        "headquarters": {"type": ["string", "null"], "description": "City, state/province, country"},
        "employee_count": {"type": ["string", "null"], "description": "Employee range if stated"},
        "contact_urls": {
            "type": "array",
            "items": {"type": "string"},
            "description": "Contact or lead capture URLs present on page",
        },
        "emails": {"type": "array", "items": _CONTACT_ITEM},
        "phones": {"type": "array", "items": _CONTACT_ITEM},
        "linkedin_urls": {"type": "array", "items": {"type": "string"}},
        "other_social": {"type": "array", "items": {"type": "string"}},
        "notes": {"type": ["string", "null"], "description": "Signals relevant to ICP"},
        "confidence": {"type": "number"},
        "missing_signals": {"type": "array", "items": {"type": "string"}},
    },
    "required": [
        "company_name",
        "company_description",
        "industry",
        "headquarters",
        "employee_count",
        "contact_urls",
        "emails",
        "phones",
        "linkedin_urls",
        "other_social",
        "notes",
        "confidence",
        "missing_signals",
    ],
}

LEAD_SCORING_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "description": "Scoring output for ICP fit",
    "properties": {
        "fit_score": {"type": "number"},
        "confidence": {"type": "number"},
        "rationale": {"type": "string"},
        "blockers": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["fit_score", "confidence", "rationale", "blockers"],
}

LEAD_SUMMARY_SCHEMA: Dict[str, Any] = {
    "type": "object",
    "additionalProperties": False,
    "description": "Concise summary of lead insights",
    "properties": {
        "summary": {"type": "string"},
        "key_signals": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["summary", "key_signals"],
}

# ── Prompts ───────────────────────────────────────────────────────────────────

EXTRACTION_SYSTEM_PROMPT = """You are a lead research analyst building structured data from raw website content.
The ideal customer profile is: {icp}.

EXTRACTION RULES:
- Only use facts explicitly present in the supplied content. Do NOT guess or fabricate.
- If a field is not present, set it to null (or [] for arrays).
- confidence is a number between 0 and 1 describing how sure you are about the company facts.
- Return concise values."""

EXTRACTION_USER_TEMPLATE = """Domain: {domain}
URL: {url}
---
{content}"""

SCORING_SYSTEM_PROMPT = """You are evaluating whether a company is a good fit for a B2B sales lead list.
Return a fit score 0-100, confidence 0-1, rationale, and any blockers."""

SCORING_USER_TEMPLATE = """Ideal customer profile:
{icp}

Company facts:
{facts}"""

SUMMARY_SYSTEM_PROMPT = "Provide a concise, sales-ready summary highlighting why the company is interesting."


@dataclass(frozen=True)
class CompletionResult:
    json: BaseModel
    usage: Optional[Dict[str, float]]
    model: str


def numeric_usage(usage: Any) -> Optional[Dict[str, float]]:
    """Keep only the top-level numeric token counters of an SDK usage object."""
    if usage is None:
        return None
    if hasattr(usage, "model_dump"):
        usage = usage.model_dump()
    if not isinstance(usage, dict):
        return None
    counters = {
        key: value
        for key, value in usage.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }
    return counters or None


def lead_facts(lead: AggregatedLead) -> str:
    return json.dumps(lead.model_dump(exclude={"usage"}), indent=2)


def page_content(document: Document) -> str:
    content = document.markdown or document.html or "No content"
    return content[:MAX_PAGE_CHARS]


class LLMClient:
    """Interface shared by the OpenAI-backed client and the offline mock."""

    async def extract_page(
        self, document: Document, domain: str, icp_profile: Optional[str], model: Optional[str] = None
    ) -> CompletionResult:
        raise NotImplementedError

    async def score_lead(self, lead: AggregatedLead, icp_profile: Optional[str], model: Optional[str] = None) -> CompletionResult:
        raise NotImplementedError

    async def summarize_lead(self, lead: AggregatedLead, model: Optional[str] = None) -> CompletionResult:
        raise NotImplementedError


class OpenAILLMClient(LLMClient):
    def __init__(self, settings: Optional[Settings] = None, client: Any = None):
        self.settings = settings or get_settings()
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if self.settings.azure_openai_endpoint and self.settings.azure_openai_key:
                self._client = openai.AsyncAzureOpenAI(
                    azure_endpoint=self.settings.azure_openai_endpoint,
                    api_key=self.settings.azure_openai_key,
                    api_version=self.settings.azure_openai_api_version,
                )
            else:
                self._client = openai.AsyncOpenAI(api_key=self.settings.openai_api_key)
        return self._client

    async def extract_page(self, document, domain, icp_profile, model=None) -> CompletionResult:
        return await self._call_json(
            name="lead_extraction",
            schema=LEAD_EXTRACTION_SCHEMA,
            response_model=PageFields,
            system_prompt=EXTRACTION_SYSTEM_PROMPT.format(icp=icp_profile or "not provided"),
            user_prompt=EXTRACTION_USER_TEMPLATE.format(
                domain=domain or "unknown",
                url=document.url or "",
                content=page_content(document),
            ),
            model=model,
            url=document.url,
            domain=domain,
        )

    async def score_lead(self, lead, icp_profile, model=None) -> CompletionResult:
        return await self._call_json(
            name="lead_scoring",
            schema=LEAD_SCORING_SCHEMA,
            response_model=ScoringResult,
            system_prompt=SCORING_SYSTEM_PROMPT,
            user_prompt=SCORING_USER_TEMPLATE.format(icp=icp_profile or "not provided", facts=lead_facts(lead)),
            model=model,
            domain=lead.domain,
        )

    async def summarize_lead(self, lead, model=None) -> CompletionResult:
        return await self._call_json(
            name="lead_summary",
            schema=LEAD_SUMMARY_SCHEMA,
            response_model=SummaryResult,
            system_prompt=SUMMARY_SYSTEM_PROMPT,
            user_prompt=lead_facts(lead),
            model=model,
            max_tokens=600,
            domain=lead.domain,
        )

    async def _call_json(
        self,
        *,
        name: str,
        schema: Dict[str, Any],
        response_model: Type[BaseModel],
        system_prompt: str,
        user_prompt: str,
        model: Optional[str],
        max_tokens: int = 1500,
        url: Optional[str] = None,
        domain: Optional[str] = None,
    ) -> CompletionResult:
        model_id = model or self.settings.openai_model
        try:
            response = await self.client.chat.completions.create(
                model=model_id,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=0,
                max_tokens=max_tokens,
                response_format={
                    "type": "json_schema",
                    "json_schema": {"name": name, "strict": True, "schema": schema},
                },
            )
        except openai.OpenAIError as exc:
            raise ExtractionFailure(f"{name} call failed on {model_id}: {exc}", domain=domain, url=url) from exc

        raw = ""
        if response.choices:
            raw = response.choices[0].message.content or ""
        data = _parse_json(raw)
        if data is None:
            logger.error("[LLM] %s response missing parsed JSON (model=%s)", name, model_id)
            raise ExtractionFailure(f"{name} response missing parsed JSON", domain=domain, url=url)
        try:
            parsed = response_model.model_validate(data)
        except ValidationError as exc:
            raise ExtractionFailure(
                f"{name} response does not match schema: {exc.error_count()} errors", domain=domain, url=url
            ) from exc

        return CompletionResult(json=parsed, usage=numeric_usage(response.usage), model=response.model or model_id)


def _parse_json(raw: str) -> Optional[Dict[str, Any]]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", raw, re.DOTALL)
        if not match:
            return None
        try:
            data = json.loads(match.group())
        except json.JSONDecodeError:
            return None
    return data if isinstance(data, dict) else None


# ── Offline mock ──────────────────────────────────────────────────────────────

MOCK_MODEL = "mock-llm-sm"
MOCK_USAGE = {"total_tokens": 48, "input_tokens": 28, "output_tokens": 20}


def humanize_domain(host: str) -> str:
    if not host:
        return "Mock Company"
    base = host.split(".")[0]
    return " ".join(segment.capitalize() for segment in re.split(r"[-_]", base) if segment)


class MockLLMClient(LLMClient):
    """Deterministic responses derived from the domain; used with MOCK_LLM=true."""

    async def extract_page(self, document, domain, icp_profile, model=None) -> CompletionResult:
        host = (domain or "example.com").lower()
        company = humanize_domain(host)
        fields = PageFields(
            company_name=company,
            company_description=f"{company} offers mocked services for test runs.",
            industry="Software",
            headquarters="Austin, TX",
            employee_count="51-200",
            contact_urls=[f"https://{host}/contact"],
            emails=[{"value": f"contact@{host}", "confidence": 0.9, "context": "Primary"}],
            phones=[{"value": "+15551234567", "confidence": 0.7, "context": "Main"}],
            linkedin_urls=[f"https://www.linkedin.com/company/{company.lower().replace(' ', '-')}"],
            other_social=[],
            notes="Mocked extraction output",
            confidence=0.9,
            missing_signals=[],
        )
        return CompletionResult(json=fields, usage=dict(MOCK_USAGE), model=MOCK_MODEL)

    async def score_lead(self, lead, icp_profile, model=None) -> CompletionResult:
        scoring = ScoringResult(
            fit_score=82,
            confidence=0.7,
            rationale="Mock rationale based on fixture content.",
            blockers=[],
        )
        return CompletionResult(json=scoring, usage=dict(MOCK_USAGE), model=MOCK_MODEL)

    async def summarize_lead(self, lead, model=None) -> CompletionResult:
        company = lead.company or "Mock Company"
        summary = SummaryResult(
            summary=f"{company} is summarised by the mock LLM adapter.",
            key_signals=["Mock summary signal"],
        )
        return CompletionResult(json=summary, usage=dict(MOCK_USAGE), model=MOCK_MODEL)


def build_llm_client(settings: Optional[Settings] = None) -> LLMClient:
    settings = settings or get_settings()
    if settings.mock_llm:
        return MockLLMClient()
    return OpenAILLMClient(settings)
