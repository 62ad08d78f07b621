"""Sync log model for tracking accounting sync runs."""

import uuid
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Text, JSON

from gym_accounting.core.database import Base


class SyncLog(Base):
    """Audit record of one sync run."""

    __tablename__ = "accounting_sync_logs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    provider = Column(String, nullable=False, index=True)
    sync_type = Column(String, nullable=False)  # "manual", "scheduled"
    status = Column(String, nullable=False, default="running")  # "running", "completed", "partial", "failed"
    started_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    completed_at = Column(DateTime, nullable=True)
    duration_seconds = Column(Integer, nullable=True)
    transactions_attempted = Column(Integer, nullable=False, default=0)
    transactions_succeeded = Column(Integer, nullable=False, default=0)
    transactions_failed = Column(Integer, nullable=False, default=0)
    error_message = Column(Text, nullable=True)
    error_details = Column(JSON, nullable=True)  # [{"payment_id": ..., "error": ...}]
    triggered_by = Column(String, nullable=True)
