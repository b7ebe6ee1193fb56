"""
In-process run queue with write-through snapshots.

Runs move queued → running → completed | failed, one at a time, on the
event loop. Every transition re-persists the whole run map before the next
await, so a restart can pick up where the process died: `recover()` demotes
anything left `running` back to `queued` and re-enqueues it.
"""
from __future__ import annotations

import asyncio
import logging
import uuid
from collections import deque
from functools import lru_cache
from typing import Any, Awaitable, Callable, Deque, Dict, List, Optional

from leadscout.config import get_settings
from leadscout.errors import LeadPipelineError
from leadscout.schemas import Run, RunOptions, RunStatus
from leadscout.services.state_store import StateStore, build_state_store
from leadscout.utils.time import utc_now_iso

logger = logging.getLogger(__name__)

Runner = Callable[[RunOptions], Awaitable[Dict[str, Any]]]


class JobQueue:
    def __init__(self, store: StateStore, runner: Runner, autostart: bool = True):
        self.store = store
        self.runner = runner
        self.autostart = autostart
        self._runs: Dict[str, Run] = {}
        self._pending: Deque[str] = deque()
        self._processing = False
        self._task: Optional[asyncio.Task] = None

    # ── Public API ────────────────────────────────────────────────────────────

    def submit(self, options: RunOptions) -> Run:
        run = Run(id=uuid.uuid4().hex, created_at=utc_now_iso(), options=options)
        self._runs[run.id] = run
        self._pending.append(run.id)
        self._persist()
        logger.info("[QUEUE] Run %s queued (%s pending)", run.id, len(self._pending))
        if self.autostart:
            self._kick()
        return run

    def get(self, run_id: str) -> Optional[Run]:
        return self._runs.get(run_id)

    def list(self) -> List[Run]:
        return list(self._runs.values())

    def pending_ids(self) -> List[str]:
        return list(self._pending)

    def recover(self, autostart: Optional[bool] = None) -> int:
        """Reload persisted runs; interrupted runs go back to the queue."""
        runs = self.store.load_runs()
        for run in runs:
            if run.status == RunStatus.RUNNING:
                run.status = RunStatus.QUEUED
                run.started_at = None
            self._runs[run.id] = run
            if run.status == RunStatus.QUEUED and run.id not in self._pending:
                self._pending.append(run.id)
        if runs:
            self._persist()
            logger.info("[QUEUE] Recovered %s runs, %s pending", len(runs), len(self._pending))
        if self._pending and (self.autostart if autostart is None else autostart):
            self._kick()
        return len(self._pending)

    async def drain(self) -> None:
        """Wait until the queue is empty, processing inline if nothing is running."""
        if self._task is not None and not self._task.done():
            await self._task
        if self._pending and not self._processing:
            self._processing = True
            await self._process()

    def stats(self) -> Dict[str, Any]:
        stats: Dict[str, Any] = {
            "runs": {"total": len(self._runs), **{status.value: 0 for status in RunStatus}},
            "totals": {
                "appended": 0,
                "targets_discovered": 0,
                "targets_processed": 0,
                "successes": 0,
                "failures": 0,
            },
            "crawl": {"directory_pages": 0, "target_pages": 0, "total_pages": 0},
            "llm": {"total_calls": 0, "models": {}},
            "last_finished_at": None,
        }

        for run in self._runs.values():
            stats["runs"][run.status.value] += 1
            result = run.result or {}
            appended = result.get("appended")
            if isinstance(appended, (int, float)):
                stats["totals"]["appended"] += appended

            finished_at = run.finished_at
            metrics = result.get("metrics")
            if metrics:
                totals = metrics.get("totals") or {}
                stats["totals"]["targets_discovered"] += totals.get("targets_discovered", 0)
                stats["totals"]["targets_processed"] += totals.get("processed", 0)
                stats["totals"]["successes"] += totals.get("successes", 0)
                stats["totals"]["failures"] += totals.get("failures", 0)

                crawl = metrics.get("crawl") or {}
                stats["crawl"]["directory_pages"] += crawl.get("directory_pages", 0)
                stats["crawl"]["target_pages"] += crawl.get("target_pages", 0)

                llm = metrics.get("llm") or {}
                stats["llm"]["total_calls"] += llm.get("total_calls", 0)
                for model, usage in (llm.get("models") or {}).items():
                    bucket = stats["llm"]["models"].setdefault(model, {})
                    for key, value in (usage or {}).items():
                        if isinstance(value, (int, float)) and not isinstance(value, bool):
                            bucket[key] = bucket.get(key, 0) + value
                finished_at = metrics.get("finished_at") or finished_at

            if finished_at and (stats["last_finished_at"] is None or finished_at > stats["last_finished_at"]):
                stats["last_finished_at"] = finished_at

        stats["crawl"]["total_pages"] = stats["crawl"]["directory_pages"] + stats["crawl"]["target_pages"]
        return stats

    # ── Processing ────────────────────────────────────────────────────────────

    def _persist(self) -> None:
        self.store.save_runs(self._runs.values())

    def _kick(self) -> None:
        if self._processing:
            return
        self._processing = True
        self._task = asyncio.get_running_loop().create_task(self._process())

    async def _process(self) -> None:
        try:
            while self._pending:
                run = self._runs.get(self._pending.popleft())
                if run is None or run.status != RunStatus.QUEUED:
                    continue
                await self._run_job(run)
        finally:
            self._processing = False

    async def _run_job(self, run: Run) -> None:
        run.status = RunStatus.RUNNING
        run.started_at = utc_now_iso()
        self._persist()
        logger.info("[QUEUE] Run %s started", run.id)
        try:
            result = await self.runner(run.options)
        except LeadPipelineError as exc:
            run.status = RunStatus.FAILED
            run.error = exc.to_record()
            logger.error("[QUEUE] Run %s failed: %s", run.id, exc.message)
        except Exception as exc:
            run.status = RunStatus.FAILED
            run.error = {"type": type(exc).__name__, "message": str(exc) or type(exc).__name__}
            logger.exception("[QUEUE] Run %s crashed", run.id)
        else:
            run.status = RunStatus.COMPLETED
            run.result = result
            logger.info("[QUEUE] Run %s completed, appended=%s", run.id, result.get("appended"))
        run.finished_at = utc_now_iso()
        self._persist()


@lru_cache
def get_job_queue() -> JobQueue:
    from leadscout.services.dispatcher import build_services, run_pipeline

    settings = get_settings()
    store = build_state_store(settings)
    services = build_services(settings, store)

    async def runner(options: RunOptions) -> Dict[str, Any]:
        return await run_pipeline(options, services)

    return JobQueue(store, runner)
