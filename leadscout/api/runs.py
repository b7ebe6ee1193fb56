"""Lead run control: submit, inspect and aggregate queued runs."""
from __future__ import annotations

import logging
import re
from typing import Any, Dict, List, Optional, Union

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from leadscout.agents.sheets_agent import GoogleSheetSync
from leadscout.config import Settings, get_settings, parse_list
from leadscout.schemas import Run, RunOptions
from leadscout.services.dispatcher import resolve_run_options
from leadscout.services.job_queue import JobQueue, get_job_queue

logger = logging.getLogger(__name__)
router = APIRouter()

SHEET_ID_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{20,}$")
SHEET_URL_PATTERN = re.compile(r"/d/([a-zA-Z0-9_-]+)")


class RunIn(BaseModel):
    url: Optional[str] = None
    urls: List[str] = Field(default_factory=list)
    domains_file: Optional[str] = None
    html_folder: Optional[str] = None
    icp: Optional[str] = None
    directory: bool = False
    max_businesses: Optional[int] = Field(default=None, ge=1)
    sheet_name: Optional[str] = None
    sheet_url: Optional[str] = None
    sheet_id: Optional[str] = None
    title: Optional[str] = None
    keyword: Optional[str] = None
    label: Optional[str] = None
    share_with: Union[str, List[str], None] = None
    sheet_folder_id: Optional[str] = None
    reuse_sheet: bool = False
    max_depth: Optional[int] = Field(default=None, ge=0)
    max_pages: Optional[int] = Field(default=None, ge=1)
    max_prioritized_pages: Optional[int] = Field(default=None, ge=0)
    page_concurrency: Optional[int] = Field(default=None, ge=1)
    domain_concurrency: Optional[int] = Field(default=None, ge=1)
    model: Optional[str] = None
    delay: Optional[float] = Field(default=None, ge=0)
    poll_interval: Optional[float] = Field(default=None, gt=0)
    include_paths: List[str] = Field(default_factory=list)
    exclude_paths: List[str] = Field(default_factory=list)
    dry_run: Optional[bool] = None


class RunAccepted(BaseModel):
    id: str
    status: str


def parse_sheet_id(value: Optional[str]) -> Optional[str]:
    """Accept a bare spreadsheet id or a full Google Sheets URL."""
    if not value:
        return None
    value = value.strip()
    if SHEET_ID_PATTERN.match(value):
        return value
    match = SHEET_URL_PATTERN.search(value)
    return match.group(1) if match else None


def normalise_share_list(value: Union[str, List[str], None]) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return parse_list(value.replace(" ", ","))
    return [str(item).strip() for item in value if str(item).strip()]


def to_options(payload: RunIn) -> RunOptions:
    data = payload.model_dump(exclude={"sheet_url", "sheet_id", "share_with"})
    data["sheet_id"] = parse_sheet_id(payload.sheet_url) or parse_sheet_id(payload.sheet_id)
    data["share_with"] = normalise_share_list(payload.share_with)
    return RunOptions(**data)


def run_out(run: Run) -> Dict[str, Any]:
    return run.model_dump(mode="json", exclude={"options"})


@router.post("", status_code=202, response_model=RunAccepted)
@router.post("/", status_code=202, response_model=RunAccepted, include_in_schema=False)
async def create_run(
    payload: RunIn,
    queue: JobQueue = Depends(get_job_queue),
    settings: Settings = Depends(get_settings),
):
    if not payload.url and not payload.urls and not payload.domains_file:
        raise HTTPException(status_code=400, detail="Provide at least one directory or domain URL")
    run = queue.submit(resolve_run_options(to_options(payload), settings))
    return {"id": run.id, "status": run.status.value}


@router.get("")
@router.get("/", include_in_schema=False)
def list_runs(queue: JobQueue = Depends(get_job_queue)):
    return {"runs": [run_out(run) for run in queue.list()]}


@router.get("/stats")
def run_stats(queue: JobQueue = Depends(get_job_queue)):
    return queue.stats()


@router.get("/domains")
def domain_states(queue: JobQueue = Depends(get_job_queue)):
    states = queue.store.list_domain_states()
    return {"domains": {key: state.model_dump() for key, state in states.items()}}


@router.get("/service-account")
def service_account(settings: Settings = Depends(get_settings)):
    email = GoogleSheetSync(settings).service_account_email()
    if not email:
        raise HTTPException(status_code=404, detail="Service account email not available")
    return {"email": email}


@router.get("/{run_id}")
def get_run(run_id: str, queue: JobQueue = Depends(get_job_queue)):
    run = queue.get(run_id)
    if run is None:
        raise HTTPException(status_code=404, detail="Run not found")
    return run_out(run)
