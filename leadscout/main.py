"""FastAPI main application."""
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from leadscout.api import runs
from leadscout.config import get_settings
from leadscout.database import init_db
from leadscout.services.job_queue import get_job_queue
from leadscout.utils.time import utc_now_iso

logger = logging.getLogger(__name__)
settings = get_settings()

app = FastAPI(
    title="LeadScout API",
    description="Lead enrichment runs: crawl, extract, score and sync to Google Sheets",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(runs.router, prefix="/api/runs", tags=["Runs"])


@app.on_event("startup")
async def startup_recover_runs():
    if settings.uses_sql_state:
        init_db()
    pending = get_job_queue().recover()
    logger.info("[STARTUP] Job queue recovered, %s runs pending", pending)


@app.get("/health")
def health():
    return {"status": "ok", "service": "LeadScout API", "timestamp": utc_now_iso()}
