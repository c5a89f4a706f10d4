from datetime import datetime, timezone
from sqlalchemy import Column, DateTime, Integer, String, Text, JSON, UniqueConstraint
from .db import Base


def _utcnow():
    return datetime.now(timezone.utc)


class ScanResult(Base):
    __tablename__ = "scan_results"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False, index=True)
    version = Column(String, nullable=False)
    fingerprint = Column(String, nullable=False)
    analysis_text = Column(Text, nullable=False)
    flagged_patterns_json = Column(JSON, nullable=False, default=list)
    model_id = Column(String, nullable=False)
    scanned_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, index=True)
    __table_args__ = (UniqueConstraint("name", "version", "fingerprint", name="u_scan_key"),)


class CacheSession(Base):
    __tablename__ = "cache_sessions"
    id = Column(Integer, primary_key=True)
    recorded_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    total_units = Column(Integer, default=0)
    cache_hits = Column(Integer, default=0)
    cache_misses = Column(Integer, default=0)
    api_calls_saved = Column(Integer, default=0)
