"""
ORM tables for run snapshots and per-domain crawl state.

Both keep the full record as a JSON payload; the key columns exist for
lookups and ordering only.
"""
from sqlalchemy import JSON, Column, DateTime, String
from sqlalchemy.sql import func

from leadscout.database import Base


class LeadRun(Base):
    __tablename__ = "lead_runs"

    run_id = Column(String(64), primary_key=True)
    status = Column(String(20), nullable=False, index=True)
    created_at = Column(String(40), nullable=False)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class DomainStateRecord(Base):
    __tablename__ = "domain_states"

    domain_key = Column(String(255), primary_key=True)
    payload = Column(JSON, nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
