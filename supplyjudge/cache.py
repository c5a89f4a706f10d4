"""Content-addressed store of prior deep-analysis results.

Rows are keyed by (name, version, fingerprint). The cache is strictly an
optimization: when the backing database cannot be opened the instance
switches to a no-op mode where every lookup misses and every store is
dropped, and per-operation errors degrade the same way.
"""

import hashlib
from datetime import datetime, timedelta, timezone
from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from .db import Base, init_engine_and_session, session_scope
from .errors import CacheReadError, CacheUnavailableError, CacheWriteError
from .models import CacheSession, ScanResult
from .schemas import (
    AnalysisResult,
    CachedResult,
    CacheEntry,
    CacheStats,
    FlaggedPattern,
    SessionStats,
    UnitScanCount,
)
from .utils.logging import get_logger

log = get_logger(__name__)

RECENT_WINDOW_DAYS = 7


def fingerprint(content: str) -> str:
    return hashlib.sha256((content or "").encode("utf-8")).hexdigest()


def _as_utc(value: datetime) -> datetime:
    # SQLite hands datetimes back naive; everything is written in UTC
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _patterns(raw) -> List[FlaggedPattern]:
    return [FlaggedPattern.model_validate(p) for p in raw or []]


class ResultCache:
    def __init__(self, database_url: str, enabled: bool = True):
        self.database_url = database_url
        self._engine = None
        self._SessionLocal = None
        if not enabled:
            log.info("Result cache disabled by configuration")
            return
        try:
            self._open()
        except CacheUnavailableError as e:
            log.warning(f"{e}; continuing without cache")

    def _open(self):
        try:
            engine, SessionLocal = init_engine_and_session(self.database_url)
            Base.metadata.create_all(bind=engine, tables=[ScanResult.__table__, CacheSession.__table__])
        except (OSError, SQLAlchemyError) as e:
            raise CacheUnavailableError(f"Failed to open cache database at {self.database_url}: {e}") from e
        self._engine, self._SessionLocal = engine, SessionLocal
        log.info(f"Result cache ready at {self.database_url}")

    @property
    def available(self) -> bool:
        return self._SessionLocal is not None

    def close(self):
        if self._engine is not None:
            self._engine.dispose()

    def lookup(self, name: str, version: str, content_fingerprint: str) -> Optional[CachedResult]:
        if not self.available:
            return None
        try:
            return self._lookup(name, version, content_fingerprint)
        except CacheReadError as e:
            log.warning(f"Cache lookup failed for {name} v{version}: {e}")
            return None

    def _lookup(self, name, version, content_fingerprint):
        try:
            with session_scope(self._SessionLocal) as s:
                row = s.query(ScanResult).filter_by(name=name, version=version, fingerprint=content_fingerprint).first()
                if row is None:
                    return None
                return CachedResult(
                    id=row.id,
                    name=row.name,
                    version=row.version,
                    fingerprint=row.fingerprint,
                    analysis_text=row.analysis_text,
                    flagged_patterns=_patterns(row.flagged_patterns_json),
                    model_id=row.model_id,
                    scanned_at=_as_utc(row.scanned_at),
                )
        except (SQLAlchemyError, ValueError) as e:
            raise CacheReadError(str(e)) from e

    def store(self, name: str, version: str, content_fingerprint: str, result: AnalysisResult, model_id: str) -> Optional[int]:
        if not self.available:
            return None
        try:
            return self._store(name, version, content_fingerprint, result, model_id)
        except CacheWriteError as e:
            log.warning(f"Failed to cache result for {name} v{version}: {e}")
            return None

    def _store(self, name, version, content_fingerprint, result, model_id):
        patterns = [p.model_dump(mode="json") for p in result.flagged_patterns]
        now = datetime.now(timezone.utc)
        try:
            with session_scope(self._SessionLocal) as s:
                existing = s.query(ScanResult).filter_by(name=name, version=version, fingerprint=content_fingerprint).first()
                if existing:
                    existing.analysis_text = result.analysis_text
                    existing.flagged_patterns_json = patterns
                    existing.model_id = model_id
                    existing.scanned_at = now
                    row = existing
                else:
                    row = ScanResult(
                        name=name,
                        version=version,
                        fingerprint=content_fingerprint,
                        analysis_text=result.analysis_text,
                        flagged_patterns_json=patterns,
                        model_id=model_id,
                        scanned_at=now,
                    )
                    s.add(row)
                s.flush()
                row_id = row.id
        except SQLAlchemyError as e:
            raise CacheWriteError(str(e)) from e
        log.debug(f"Cached result for {name} v{version}")
        return row_id

    def cleanup(self, max_age_days: int) -> int:
        if not self.available:
            return 0
        cutoff = datetime.now(timezone.utc) - timedelta(days=max_age_days)
        try:
            with session_scope(self._SessionLocal) as s:
                removed = s.query(ScanResult).filter(ScanResult.scanned_at < cutoff).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            log.warning(f"Cache cleanup failed: {e}")
            return 0
        if removed:
            log.info(f"Removed {removed} cache entries older than {max_age_days} days")
        return removed

    def clear(self) -> int:
        if not self.available:
            return 0
        try:
            with session_scope(self._SessionLocal) as s:
                return s.query(ScanResult).delete(synchronize_session=False)
        except SQLAlchemyError as e:
            log.warning(f"Failed to clear cache: {e}")
            return 0

    def stats(self) -> CacheStats:
        if not self.available:
            return CacheStats()
        since = datetime.now(timezone.utc) - timedelta(days=RECENT_WINDOW_DAYS)
        try:
            with session_scope(self._SessionLocal) as s:
                total = s.query(func.count(ScanResult.id)).scalar() or 0
                recent = s.query(func.count(ScanResult.id)).filter(ScanResult.scanned_at > since).scalar() or 0
        except SQLAlchemyError as e:
            log.warning(f"Failed to read cache stats: {e}")
            return CacheStats()
        return CacheStats(total_entries=total, recent_count=recent)

    def export(self) -> List[CacheEntry]:
        if not self.available:
            return []
        try:
            with session_scope(self._SessionLocal) as s:
                rows = s.query(ScanResult).order_by(ScanResult.scanned_at.desc(), ScanResult.id.desc()).all()
                return [
                    CacheEntry(
                        name=r.name,
                        version=r.version,
                        fingerprint=r.fingerprint,
                        analysis_text=r.analysis_text,
                        flagged_patterns=_patterns(r.flagged_patterns_json),
                        model_id=r.model_id,
                        scanned_at=_as_utc(r.scanned_at),
                    )
                    for r in rows
                ]
        except SQLAlchemyError as e:
            log.warning(f"Failed to export cache: {e}")
            return []

    def popular_units(self, limit: int = 10) -> List[UnitScanCount]:
        if not self.available:
            return []
        try:
            with session_scope(self._SessionLocal) as s:
                rows = (
                    s.query(ScanResult.name, func.count(ScanResult.id).label("scan_count"), func.max(ScanResult.scanned_at))
                    .group_by(ScanResult.name)
                    .order_by(func.count(ScanResult.id).desc(), ScanResult.name)
                    .limit(limit)
                    .all()
                )
        except SQLAlchemyError as e:
            log.warning(f"Failed to read popular units: {e}")
            return []
        return [UnitScanCount(name=n, scan_count=c, last_scanned_at=_as_utc(last)) for n, c, last in rows]

    def record_session(self, session: SessionStats) -> None:
        if not self.available:
            return
        try:
            with session_scope(self._SessionLocal) as s:
                s.add(
                    CacheSession(
                        total_units=session.total_units,
                        cache_hits=session.hits,
                        cache_misses=session.misses,
                        api_calls_saved=session.hits,
                    )
                )
        except SQLAlchemyError as e:
            log.warning(f"Failed to record scan session stats: {e}")

    def session_count(self) -> int:
        if not self.available:
            return 0
        try:
            with session_scope(self._SessionLocal) as s:
                return s.query(func.count(CacheSession.id)).scalar() or 0
        except SQLAlchemyError as e:
            log.warning(f"Failed to count scan sessions: {e}")
            return 0
