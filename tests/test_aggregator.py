import json
import unittest

from leadscout.agents.aggregator import aggregate_pages, build_sheet_row, pick_higher_confidence
from leadscout.schemas import (
    SHEET_HEADER,
    ContactEntry,
    ModelUsage,
    PageFields,
    PageSignalSet,
    ScoringResult,
    SummaryResult,
)
from leadscout.utils.hashing import build_lead_id


def page(url, company=None, confidence=0.0, emails=(), regex_emails=(), **field_overrides):
    fields = dict(
        company_name=company,
        company_description=None,
        industry=None,
        headquarters=None,
        employee_count=None,
        contact_urls=[],
        emails=[ContactEntry(**entry) for entry in emails],
        phones=[],
        linkedin_urls=[],
        other_social=[],
        notes=None,
        confidence=confidence,
        missing_signals=[],
    )
    fields.update(field_overrides)
    return PageSignalSet(
        url=url,
        fields=PageFields(**fields),
        regex_emails=list(regex_emails),
        model_usage=[ModelUsage(model="gpt-4o-mini", usage={"total_tokens": 12})],
    )


class AggregatorTests(unittest.TestCase):
    def test_highest_confidence_scalar_wins(self):
        pages = [
            page("https://acme.test/", company="Acme Inc", confidence=0.7, industry="Software"),
            page("https://acme.test/about", company="Acme", confidence=0.9, industry=None),
        ]
        lead = aggregate_pages("acme.test", pages)
        self.assertEqual(lead.company, "Acme")
        # empty incoming values never overwrite
        self.assertEqual(lead.industry, "Software")
        self.assertAlmostEqual(lead.confidence, 0.8)

    def test_ties_go_to_the_later_page(self):
        held = pick_higher_confidence(None, "First", 0.8)
        self.assertEqual(pick_higher_confidence(held, "Second", 0.8), ("Second", 0.8))
        self.assertEqual(pick_higher_confidence(held, "", 0.99), held)

    def test_email_invariant(self):
        pages = [
            page(
                "https://acme.test/contact",
                confidence=0.9,
                emails=[{"value": "Sales@Acme.test", "confidence": 0.8, "context": "footer"}],
                regex_emails=["contact@acme.test"],
            ),
            page(
                "https://acme.test/team",
                confidence=0.6,
                emails=[{"value": "sales@acme.test", "confidence": 0.95, "context": "team page"}],
                regex_emails=["sales@acme.test"],
            ),
        ]
        lead = aggregate_pages("acme.test", pages)
        values = [email.value for email in lead.emails]
        self.assertEqual(values, ["sales@acme.test", "contact@acme.test"])
        self.assertEqual(len(values), len(set(values)))
        confidences = [email.confidence for email in lead.emails]
        self.assertEqual(confidences, sorted(confidences, reverse=True))
        self.assertEqual(lead.emails[0].confidence, 0.95)
        self.assertEqual(lead.emails[0].context, "footer; team page")
        self.assertEqual(lead.emails[1].confidence, 0.5)

    def test_aggregation_is_idempotent(self):
        pages = [
            page("https://acme.test/", company="Acme", confidence=0.7, notes="Hiring"),
            page("https://acme.test/contact", company="Acme", confidence=0.9, notes="Hiring", regex_emails=["a@acme.test"]),
        ]
        first = aggregate_pages("acme.test", pages)
        second = aggregate_pages("acme.test", pages)
        self.assertEqual(first.model_dump_json(), second.model_dump_json())
        self.assertEqual(first.notes, "Hiring")
        self.assertEqual(first.source_urls, ["https://acme.test/", "https://acme.test/contact"])
        self.assertEqual(len(first.usage), 2)

    def test_zero_pages_yields_empty_lead(self):
        lead = aggregate_pages("acme.test", [])
        self.assertEqual(lead.domain, "acme.test")
        self.assertIsNone(lead.company)
        self.assertIsNone(lead.confidence)
        self.assertEqual(lead.emails, [])


class SheetRowTests(unittest.TestCase):
    def test_row_projection(self):
        lead = aggregate_pages(
            "acme.test",
            [page("https://acme.test/contact", company="Acme", confidence=0.9, regex_emails=["contact@acme.test"])],
        )
        scoring = ScoringResult(fit_score=80, confidence=0.7, rationale="fits", blockers=[])
        summary = SummaryResult(summary="Acme sells widgets", key_signals=["hiring", "funded"])

        row = build_sheet_row(lead, scoring, summary)

        self.assertEqual(row.lead_id, build_lead_id("acme.test", "contact@acme.test"))
        self.assertEqual(row.contact_url, "https://acme.test/contact")
        self.assertEqual(row.notes_ai, "Acme sells widgets | hiring | funded")
        self.assertEqual(row.fit_score, 80)
        self.assertEqual(row.confidence, 0.7)
        self.assertEqual(json.loads(row.source_urls), ["https://acme.test/contact"])
        self.assertEqual(row.status, "ok")
        self.assertEqual(len(row.to_values()), len(SHEET_HEADER))

    def test_row_falls_back_without_scoring(self):
        lead = aggregate_pages("acme.test", [])
        row = build_sheet_row(lead)
        self.assertEqual(row.contact_url, "https://acme.test")
        self.assertIsNone(row.fit_score)
        self.assertEqual(row.lead_id, build_lead_id("acme.test", ""))


if __name__ == "__main__":
    unittest.main()
