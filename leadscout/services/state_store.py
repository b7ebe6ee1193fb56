"""
Persistence port for run snapshots and per-domain crawl state.

The job queue and dispatcher only talk to `StateStore`; tests use the
in-memory variant, the service uses the SQLAlchemy one.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from sqlalchemy.orm import Session

from leadscout.models import DomainStateRecord, LeadRun
from leadscout.schemas import DomainState, Run
from leadscout.utils.time import utc_now_iso

logger = logging.getLogger(__name__)


def _merge(existing: Optional[Dict[str, Any]], changes: Dict[str, Any]) -> Dict[str, Any]:
    merged = dict(existing or {})
    merged.update(changes)
    merged["updated_at"] = utc_now_iso()
    return merged


def _failure_payload(error: Any) -> Dict[str, Any]:
    if isinstance(error, dict):
        message = error.get("message") or str(error)
        kind = error.get("type")
    else:
        message = str(error) or type(error).__name__
        kind = getattr(error, "kind", None) or type(error).__name__
    return {"message": message, "type": kind, "at": utc_now_iso()}


def _visited_union(current: Iterable[str], urls: Iterable[str]) -> List[str]:
    merged: Dict[str, None] = dict.fromkeys(current or [])
    for url in urls:
        if url:
            merged.setdefault(url, None)
    return list(merged)


class StateStore:
    def load_runs(self) -> List[Run]:
        raise NotImplementedError

    def save_runs(self, runs: Iterable[Run]) -> None:
        raise NotImplementedError

    def get_domain_state(self, domain: str) -> Optional[DomainState]:
        raise NotImplementedError

    def upsert_domain_state(self, domain: str, **changes: Any) -> DomainState:
        raise NotImplementedError

    def list_domain_states(self) -> Dict[str, DomainState]:
        raise NotImplementedError

    def clear_domain(self, domain: str) -> None:
        raise NotImplementedError

    def record_failure(self, domain: str, error: Any) -> DomainState:
        return self.upsert_domain_state(domain, last_failure=_failure_payload(error))

    def append_visited(self, domain: str, urls: Iterable[str]) -> DomainState:
        current = self.get_domain_state(domain)
        return self.upsert_domain_state(domain, visited=_visited_union(current.visited if current else [], urls))


class MemoryStateStore(StateStore):
    def __init__(self):
        self._runs: List[Dict[str, Any]] = []
        self._domains: Dict[str, Dict[str, Any]] = {}

    def load_runs(self) -> List[Run]:
        return [Run.model_validate(copy.deepcopy(payload)) for payload in self._runs]

    def save_runs(self, runs: Iterable[Run]) -> None:
        self._runs = [run.model_dump(mode="json") for run in runs]

    def get_domain_state(self, domain):
        payload = self._domains.get(domain)
        return DomainState.model_validate(payload) if payload is not None else None

    def upsert_domain_state(self, domain, **changes):
        self._domains[domain] = _merge(self._domains.get(domain), changes)
        return DomainState.model_validate(self._domains[domain])

    def list_domain_states(self):
        return {key: DomainState.model_validate(payload) for key, payload in self._domains.items()}

    def clear_domain(self, domain):
        self._domains.pop(domain, None)


class SqlStateStore(StateStore):
    def __init__(self, session_factory: Optional[Callable[[], Session]] = None):
        if session_factory is None:
            from leadscout.database import SessionLocal

            session_factory = SessionLocal
        self.session_factory = session_factory

    def load_runs(self) -> List[Run]:
        with self.session_factory() as db:
            rows = db.query(LeadRun).order_by(LeadRun.created_at.asc()).all()
            runs = []
            for row in rows:
                try:
                    runs.append(Run.model_validate(row.payload))
                except ValueError as exc:
                    logger.warning("[STATE] Skipping unreadable run %s: %s", row.run_id, exc)
            return runs

    def save_runs(self, runs: Iterable[Run]) -> None:
        with self.session_factory() as db:
            db.query(LeadRun).delete()
            for run in runs:
                db.add(
                    LeadRun(
                        run_id=run.id,
                        status=run.status.value,
                        created_at=run.created_at,
                        payload=run.model_dump(mode="json"),
                    )
                )
            db.commit()

    def get_domain_state(self, domain):
        with self.session_factory() as db:
            row = db.get(DomainStateRecord, domain)
            return DomainState.model_validate(row.payload) if row else None

    def upsert_domain_state(self, domain, **changes):
        with self.session_factory() as db:
            row = db.get(DomainStateRecord, domain)
            payload = _merge(row.payload if row else None, changes)
            if row is None:
                db.add(DomainStateRecord(domain_key=domain, payload=payload))
            else:
                row.payload = payload
            db.commit()
        return DomainState.model_validate(payload)

    def list_domain_states(self):
        with self.session_factory() as db:
            rows = db.query(DomainStateRecord).order_by(DomainStateRecord.domain_key.asc()).all()
            return {row.domain_key: DomainState.model_validate(row.payload) for row in rows}

    def clear_domain(self, domain):
        with self.session_factory() as db:
            db.query(DomainStateRecord).filter(DomainStateRecord.domain_key == domain).delete()
            db.commit()


def build_state_store(settings) -> StateStore:
    if settings.uses_sql_state:
        return SqlStateStore()
    return MemoryStateStore()
