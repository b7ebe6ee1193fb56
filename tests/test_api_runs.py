import json
import tempfile
import unittest
from pathlib import Path
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient

from leadscout.config import Settings, get_settings
import leadscout.main as main_module
from leadscout.main import app
from leadscout.schemas import RunStatus
from leadscout.services.job_queue import JobQueue, get_job_queue
from leadscout.services.state_store import MemoryStateStore


async def noop_runner(options):
    return {"appended": 0}


class RunsApiTests(unittest.TestCase):
    def setUp(self):
        self.store = MemoryStateStore()
        self.queue = JobQueue(self.store, noop_runner, autostart=False)
        app.dependency_overrides[get_job_queue] = lambda: self.queue
        # no context manager: startup recovery stays out of these tests
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()

    def test_submit_run(self):
        response = self.client.post(
            "/api/runs",
            json={
                "url": "https://acme.test",
                "icp": "Manufacturers with 10-200 staff",
                "sheet_url": "https://docs.google.com/spreadsheets/d/1AbCdEfGhIjKlMnOpQrStUvWxYz012345/edit#gid=0",
                "share_with": "ops@acme.test; sales@acme.test",
                "dry_run": True,
            },
        )
        self.assertEqual(response.status_code, 202)
        payload = response.json()
        self.assertEqual(payload["status"], "queued")

        run = self.queue.get(payload["id"])
        self.assertEqual(run.options.sheet_id, "1AbCdEfGhIjKlMnOpQrStUvWxYz012345")
        self.assertEqual(run.options.share_with, ["ops@acme.test", "sales@acme.test"])
        self.assertTrue(run.options.dry_run)
        self.assertEqual(self.queue.pending_ids(), [payload["id"]])
        self.assertEqual(self.store.load_runs()[0].status, RunStatus.QUEUED)

    def test_submit_pins_settings_defaults(self):
        app.dependency_overrides[get_settings] = lambda: Settings(dry_run=True, page_concurrency=3, _env_file=None)
        run_id = self.client.post("/api/runs", json={"url": "https://acme.test", "max_pages": 5}).json()["id"]

        options = self.queue.get(run_id).options
        self.assertTrue(options.dry_run)
        self.assertEqual(options.page_concurrency, 3)
        self.assertEqual(options.max_pages, 5)
        self.assertEqual(options.max_prioritized_pages, 5)
        self.assertEqual(options.model, "gpt-4o-mini")
        self.assertTrue(self.store.load_runs()[0].options.dry_run)

    def test_submit_accepts_prioritized_page_bound(self):
        run_id = self.client.post("/api/runs", json={"url": "https://acme.test", "max_prioritized_pages": 4}).json()["id"]
        self.assertEqual(self.queue.get(run_id).options.max_prioritized_pages, 4)

    def test_submit_requires_a_url(self):
        response = self.client.post("/api/runs", json={"icp": "anyone"})
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.queue.list(), [])

    def test_list_and_get_runs(self):
        run_id = self.client.post("/api/runs", json={"urls": ["https://acme.test"]}).json()["id"]

        listed = self.client.get("/api/runs")
        self.assertEqual(listed.status_code, 200)
        self.assertEqual([run["id"] for run in listed.json()["runs"]], [run_id])

        detail = self.client.get(f"/api/runs/{run_id}")
        self.assertEqual(detail.status_code, 200)
        self.assertEqual(detail.json()["status"], "queued")
        self.assertNotIn("options", detail.json())

        self.assertEqual(self.client.get("/api/runs/does-not-exist").status_code, 404)

    def test_stats(self):
        self.client.post("/api/runs", json={"url": "https://acme.test"})
        stats = self.client.get("/api/runs/stats").json()
        self.assertEqual(stats["runs"]["total"], 1)
        self.assertEqual(stats["runs"]["queued"], 1)
        self.assertEqual(stats["totals"]["appended"], 0)

    def test_domain_states(self):
        self.store.upsert_domain_state("acme.test", pages_fetched=4)
        domains = self.client.get("/api/runs/domains").json()["domains"]
        self.assertEqual(domains["acme.test"]["pages_fetched"], 4)

    def test_service_account(self):
        with tempfile.TemporaryDirectory() as folder:
            key = Path(folder) / "key.json"
            key.write_text(json.dumps({"client_email": "bot@leads.iam.gserviceaccount.com"}), encoding="utf-8")
            app.dependency_overrides[get_settings] = lambda: Settings(google_application_credentials=str(key), _env_file=None)
            response = self.client.get("/api/runs/service-account")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["email"], "bot@leads.iam.gserviceaccount.com")

        app.dependency_overrides[get_settings] = lambda: Settings(google_application_credentials="", _env_file=None)
        self.assertEqual(self.client.get("/api/runs/service-account").status_code, 404)

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")


class StartupTests(unittest.IsolatedAsyncioTestCase):
    async def run_startup(self, backend):
        queue = MagicMock()
        queue.recover.return_value = 0
        with patch.object(main_module, "settings", Settings(state_backend=backend, _env_file=None)), patch.object(
            main_module, "init_db"
        ) as init_db, patch.object(main_module, "get_job_queue", return_value=queue):
            await main_module.startup_recover_runs()
        queue.recover.assert_called_once_with()
        return init_db

    async def test_sql_backend_name_is_case_and_space_insensitive(self):
        init_db = await self.run_startup(" SQL ")
        init_db.assert_called_once_with()

    async def test_memory_backend_skips_table_creation(self):
        init_db = await self.run_startup("Memory")
        init_db.assert_not_called()


if __name__ == "__main__":
    unittest.main()
