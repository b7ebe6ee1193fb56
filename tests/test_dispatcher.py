import asyncio
import json
import unittest
from unittest.mock import patch

from leadscout.agents.llm_client import CompletionResult, LLMClient
from leadscout.config import Settings
from leadscout.errors import ConfigurationError, ExtractionFailure, SyncFailure
from leadscout.schemas import Document, PageFields, RunOptions, ScoringResult, SummaryResult
from leadscout.services import dispatcher
from leadscout.services.dispatcher import (
    PipelineServices,
    build_spreadsheet_title,
    resolve_run_options,
    run_pipeline,
)
from leadscout.services.state_store import MemoryStateStore
from leadscout.utils.hashing import build_lead_id

USAGE = {"prompt_tokens": 30, "completion_tokens": 10, "total_tokens": 40}


class FakeLLM(LLMClient):
    def __init__(self, confidence=0.9, fail_urls=()):
        self.confidence = confidence
        self.fail_urls = set(fail_urls)
        self.in_flight = 0
        self.max_in_flight = 0
        self.extract_calls = 0

    async def extract_page(self, document, domain, icp_profile, model=None):
        self.extract_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        await asyncio.sleep(0)
        self.in_flight -= 1
        if document.url in self.fail_urls:
            raise ExtractionFailure("Model returned invalid JSON", url=document.url)
        company = "Acme" if domain == "acme.test" else domain.split(".")[0].title()
        fields = PageFields(
            company_name=company,
            company_description=f"{company} builds widgets",
            industry="Manufacturing",
            headquarters=None,
            employee_count=None,
            contact_urls=[],
            emails=[{"value": f"contact@{domain}", "confidence": 0.9, "context": "footer"}],
            phones=[],
            linkedin_urls=[],
            other_social=[],
            notes=None,
            confidence=self.confidence,
            missing_signals=[],
        )
        return CompletionResult(json=fields, usage=dict(USAGE), model=model or "gpt-4o-mini")

    async def score_lead(self, lead, icp_profile, model=None):
        scoring = ScoringResult(fit_score=80, confidence=0.75, rationale="Good fit", blockers=[])
        return CompletionResult(json=scoring, usage=dict(USAGE), model="gpt-4o-mini")

    async def summarize_lead(self, lead, model=None):
        summary = SummaryResult(summary=f"{lead.company} is a widget maker", key_signals=["hiring"])
        return CompletionResult(json=summary, usage=dict(USAGE), model="gpt-4o-mini")


class FakeCrawler:
    def __init__(self, pages):
        self.pages = pages
        self.calls = []

    async def crawl(self, url, **kwargs):
        self.calls.append(url)
        return list(self.pages.get(url.rstrip("/"), []))


class FakeSheets:
    def __init__(self, existing=(), append_error=None):
        self.existing = set(existing)
        self.append_error = append_error
        self.created = []
        self.appended = []

    async def create_spreadsheet(self, title, tab, share_with=(), folder_id=None):
        self.created.append(title)
        return "sheet-1", "https://docs.google.com/spreadsheets/d/sheet-1"

    async def ensure_header(self, sheet_id, tab):
        return None

    async def fetch_existing_keys(self, sheet_id, tab):
        return set(self.existing)

    async def append_rows(self, rows, sheet_id, tab):
        if self.append_error:
            raise self.append_error
        self.appended.extend(rows)
        return len(rows)


ACME_PAGES = [
    Document(url="https://acme.test/", markdown="Acme builds widgets for factories"),
    Document(
        url="https://acme.test/contact",
        markdown="Contact us: contact@acme.test\n[LinkedIn](https://www.linkedin.com/company/acme)",
    ),
]


def make_services(pages=None, sheets=None, llm=None, **settings_overrides):
    values = dict(
        firecrawl_api_key="fc",
        openai_api_key="sk",
        google_application_credentials="/secrets/key.json",
        _env_file=None,
    )
    values.update(settings_overrides)
    return PipelineServices(
        settings=Settings(**values),
        llm=llm or FakeLLM(),
        crawler=FakeCrawler(pages if pages is not None else {"https://acme.test": ACME_PAGES}),
        sheets=sheets or FakeSheets(),
        store=MemoryStateStore(),
    )


class RunPipelineTests(unittest.IsolatedAsyncioTestCase):
    async def test_single_domain_end_to_end(self):
        services = make_services()
        result = await run_pipeline(RunOptions(url="https://acme.test", max_pages=5), services)

        self.assertEqual(result["appended"], 1)
        self.assertEqual(result["failures"], [])
        self.assertTrue(result["created_new_sheet"])
        self.assertEqual(result["sheet_id"], "sheet-1")
        row = result["rows"][0]
        self.assertEqual(row["company"], "Acme")
        self.assertEqual(row["emails"], "contact@acme.test")
        self.assertEqual(row["status"], "ok")
        self.assertEqual(row["linkedin"], "https://www.linkedin.com/company/acme")
        self.assertEqual(row["lead_id"], build_lead_id("acme.test", "contact@acme.test"))
        self.assertEqual(services.sheets.appended[0][2], "acme.test")

        state = services.store.get_domain_state("acme.test")
        self.assertEqual(state.pages_fetched, 2)
        self.assertIsNotNone(state.last_success)

        metrics = result["metrics"]
        self.assertEqual(metrics["totals"]["successes"], 1)
        self.assertEqual(metrics["crawl"]["target_pages"], 2)
        # two page extractions + scoring + summary
        self.assertEqual(metrics["llm"]["total_calls"], 4)
        self.assertEqual(metrics["llm"]["models"]["gpt-4o-mini"]["total_tokens"], 160)

    async def test_existing_lead_is_not_appended_again(self):
        existing = build_lead_id("acme.test", "contact@acme.test")
        services = make_services(sheets=FakeSheets(existing=[existing]))
        result = await run_pipeline(RunOptions(url="https://acme.test", reuse_sheet=True, sheet_id="sheet-9"), services)

        self.assertEqual(result["appended"], 0)
        self.assertEqual(services.sheets.appended, [])
        self.assertEqual(services.sheets.created, [])
        self.assertEqual(result["sheet_id"], "sheet-9")

    async def test_empty_crawl_is_a_target_failure(self):
        services = make_services(pages={"https://acme.test": []})
        result = await run_pipeline(RunOptions(url="https://acme.test", dry_run=True), services)

        self.assertEqual(result["appended"], 0)
        self.assertEqual(result["failures"][0]["type"], "fetch_failure")
        self.assertEqual(result["metrics"]["totals"]["failures"], 1)
        self.assertEqual(services.store.get_domain_state("acme.test").last_failure["type"], "fetch_failure")

    async def test_dry_run_prepares_rows_without_sheet_writes(self):
        services = make_services(google_application_credentials="")
        result = await run_pipeline(RunOptions(url="acme.test", dry_run=True), services)

        self.assertTrue(result["dry_run"])
        self.assertEqual(result["appended"], 0)
        self.assertEqual(len(result["rows"]), 1)
        self.assertEqual(services.sheets.created, [])
        self.assertEqual(services.sheets.appended, [])

    async def test_page_concurrency_is_bounded(self):
        pages = [Document(url=f"https://acme.test/p{i}", markdown=f"page {i}") for i in range(6)]
        llm = FakeLLM()
        services = make_services(pages={"https://acme.test": pages}, llm=llm)
        await run_pipeline(RunOptions(url="https://acme.test", page_concurrency=2, dry_run=True), services)

        self.assertEqual(llm.extract_calls, 6)
        self.assertLessEqual(llm.max_in_flight, 2)

    async def test_directory_mode_fans_out(self):
        listing = Document(
            url="https://dir.test/plumbers",
            html=(
                '<a href="https://alpha.test/">Alpha</a><a href="https://bravo.test/">Bravo</a>'
                '<a href="https://charlie.test/">Charlie</a><a href="https://facebook.com/dir">fb</a>'
                '<a href="https://twitter.com/dir">tw</a>'
            ),
        )
        pages = {"https://dir.test": [listing]}
        for name in ("alpha", "bravo", "charlie"):
            pages[f"https://{name}.test"] = [Document(url=f"https://{name}.test/", markdown=f"{name} home")]
        services = make_services(pages=pages)

        result = await run_pipeline(RunOptions(url="https://dir.test", directory=True), services)

        self.assertTrue(result["directory_mode"])
        self.assertEqual(result["targets_processed"], 3)
        self.assertEqual(result["appended"], 3)
        self.assertEqual(result["metrics"]["crawl"]["directory_pages"], 1)
        for row in result["rows"]:
            self.assertEqual(json.loads(row["source_urls"])[0], "https://dir.test")

    async def test_low_confidence_pages_escalate(self):
        llm = FakeLLM(confidence=0.4)
        services = make_services(llm=llm)
        await run_pipeline(RunOptions(url="https://acme.test", dry_run=True), services)
        self.assertEqual(llm.extract_calls, 4)

    async def test_missing_configuration_aborts_before_dispatch(self):
        services = make_services(firecrawl_api_key="")
        with self.assertRaises(ConfigurationError) as ctx:
            await run_pipeline(RunOptions(url="https://acme.test"), services)
        self.assertIn("FIRECRAWL_API_KEY", ctx.exception.message)
        self.assertEqual(services.crawler.calls, [])

    async def test_inputs_are_required(self):
        with self.assertRaises(ConfigurationError):
            await run_pipeline(RunOptions(dry_run=True), make_services())
        with self.assertRaises(ConfigurationError):
            await run_pipeline(
                RunOptions(urls=["https://a.test", "https://b.test"], html_folder="/tmp/pages", dry_run=True),
                make_services(),
            )

    async def test_reuse_sheet_requires_an_id(self):
        with self.assertRaises(ConfigurationError):
            await run_pipeline(RunOptions(url="https://acme.test", reuse_sheet=True), make_services(sheet_id=""))

    async def test_sync_failure_carries_rows(self):
        services = make_services(sheets=FakeSheets(append_error=SyncFailure("Quota exceeded")))
        with self.assertRaises(SyncFailure) as ctx:
            await run_pipeline(RunOptions(url="https://acme.test"), services)
        self.assertEqual(len(ctx.exception.rows), 1)
        self.assertEqual(ctx.exception.partial_result["rows"][0]["company"], "Acme")
        self.assertEqual(ctx.exception.to_record()["type"], "sync_failure")


    async def test_run_max_pages_bounds_prioritization(self):
        pages = [Document(url=f"https://acme.test/p{i}", markdown=f"page {i}") for i in range(8)]

        llm = FakeLLM()
        services = make_services(pages={"https://acme.test": pages}, llm=llm)
        await run_pipeline(RunOptions(url="https://acme.test", max_pages=5, dry_run=True), services)
        self.assertEqual(llm.extract_calls, 5)

        llm = FakeLLM()
        services = make_services(pages={"https://acme.test": pages}, llm=llm)
        await run_pipeline(
            RunOptions(url="https://acme.test", max_pages=5, max_prioritized_pages=3, dry_run=True), services
        )
        self.assertEqual(llm.extract_calls, 3)

    async def test_failed_page_does_not_sink_its_siblings(self):
        pages = [*ACME_PAGES, Document(url="https://acme.test/broken", markdown="garbled")]
        llm = FakeLLM(fail_urls={"https://acme.test/broken"})
        services = make_services(pages={"https://acme.test": pages}, llm=llm)
        result = await run_pipeline(RunOptions(url="https://acme.test", dry_run=True), services)

        self.assertEqual(result["failures"], [])
        self.assertEqual(len(result["rows"]), 1)
        row = result["rows"][0]
        self.assertEqual(row["company"], "Acme")
        self.assertEqual(row["emails"], "contact@acme.test")
        self.assertNotIn("https://acme.test/broken", json.loads(row["source_urls"]))

        self.assertEqual(len(result["page_failures"]), 1)
        failure = result["page_failures"][0]
        self.assertEqual(failure["type"], "extraction_failure")
        self.assertEqual(failure["url"], "https://acme.test/broken")
        self.assertEqual(failure["domain"], "acme.test")
        # the broken page is tried once more with the escalation model
        self.assertEqual(llm.extract_calls, 4)

    async def test_target_fails_when_every_page_fails(self):
        llm = FakeLLM(fail_urls={doc.url for doc in ACME_PAGES})
        services = make_services(llm=llm)
        result = await run_pipeline(RunOptions(url="https://acme.test", dry_run=True), services)

        self.assertEqual(result["rows"], [])
        self.assertEqual(len(result["failures"]), 1)
        self.assertEqual(result["failures"][0]["type"], "extraction_failure")
        self.assertEqual(result["failures"][0]["domain"], "acme.test")
        self.assertEqual(result["metrics"]["totals"]["failures"], 1)
        self.assertEqual(services.store.get_domain_state("acme.test").last_failure["type"], "extraction_failure")

    async def test_domain_concurrency_is_bounded(self):
        names = ("alpha", "bravo", "charlie")
        pages = {f"https://{name}.test": [Document(url=f"https://{name}.test/", markdown=f"{name} home")] for name in names}
        services = make_services(pages=pages)
        real_process_target = dispatcher.process_target
        active = {"now": 0, "peak": 0}

        async def tracked(target, options, services):
            active["now"] += 1
            active["peak"] = max(active["peak"], active["now"])
            try:
                return await real_process_target(target, options, services)
            finally:
                active["now"] -= 1

        with patch("leadscout.services.dispatcher.process_target", new=tracked):
            result = await run_pipeline(
                RunOptions(urls=[f"https://{name}.test" for name in names], domain_concurrency=1, dry_run=True),
                services,
            )

        self.assertEqual(active["peak"], 1)
        self.assertEqual(result["metrics"]["totals"]["successes"], 3)
        self.assertEqual(len(result["rows"]), 3)


class ResolveRunOptionsTests(unittest.TestCase):
    def test_settings_defaults_are_pinned_at_submission(self):
        settings = Settings(_env_file=None, dry_run=True, page_concurrency=3, sheet_share_with="ops@acme.test")
        resolved = resolve_run_options(RunOptions(url="https://acme.test"), settings)

        self.assertTrue(resolved.dry_run)
        self.assertEqual(resolved.page_concurrency, 3)
        self.assertEqual(resolved.domain_concurrency, 1)
        self.assertEqual(resolved.max_pages, 80)
        self.assertEqual(resolved.max_prioritized_pages, 12)
        self.assertEqual(resolved.model, "gpt-4o-mini")
        self.assertEqual(resolved.sheet_name, "Leads")
        self.assertEqual(resolved.share_with, ["ops@acme.test"])

        restarted = Settings(_env_file=None, dry_run=False, page_concurrency=9, max_prioritized_pages=2)
        again = resolve_run_options(resolved, restarted)
        self.assertTrue(again.dry_run)
        self.assertEqual(again.page_concurrency, 3)
        self.assertEqual(again.max_prioritized_pages, 12)

    def test_explicit_run_values_win(self):
        settings = Settings(_env_file=None, dry_run=True)
        resolved = resolve_run_options(RunOptions(url="https://acme.test", max_pages=5, dry_run=False), settings)
        self.assertFalse(resolved.dry_run)
        self.assertEqual(resolved.max_pages, 5)
        self.assertEqual(resolved.max_prioritized_pages, 5)


class SpreadsheetTitleTests(unittest.TestCase):
    def test_title_sources(self):
        self.assertEqual(build_spreadsheet_title(["acme.test"], RunOptions(title="Custom")), "Custom")
        self.assertTrue(build_spreadsheet_title(["acme.test"], RunOptions(keyword="Roofers NYC")).endswith("_roofers-nyc"))
        self.assertTrue(build_spreadsheet_title(["https://www.acme.test/x"], RunOptions()).endswith("_www-acme-test"))


if __name__ == "__main__":
    unittest.main()
