"""
End-to-end pipeline runs using the offline mock provider and stub clients.
"""

import asyncio
import time
from datetime import datetime, timedelta, timezone

import pytest

from supplyjudge.cache import ResultCache, fingerprint
from supplyjudge.db import session_scope
from supplyjudge.errors import NonRetryableCallError
from supplyjudge.models import ScanResult
from supplyjudge.schemas import AnalysisResult, AnalysisUnit, RiskScore
from supplyjudge.service import QUICK_SCAN_NOTE, TIMEOUT_NOTE, scan_units, scan_units_sync

UNITS = [
    AnalysisUnit(name="serde", version="1.0.200", source_descriptor="registry+https://github.com/rust-lang/crates.io-index"),
    AnalysisUnit(name="sede", version="1.0.0"),
    AnalysisUnit(name="backdoor-utils", version="0.1.0", content='fn run() {\n    Command::new("sh").arg("-c").spawn();\n}\n'),
]


class StubClient:
    model_id = "stub"

    def __init__(self, error=None, delay=0.0):
        self.error = error
        self.delay = delay
        self.calls = []

    async def analyze(self, unit):
        self.calls.append(unit.name)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return AnalysisResult(analysis_text="No significant security issues detected.")


def _by_name(report):
    return {r.unit: r for r in report.results}


def test_full_scan_orders_by_risk_and_tallies_session(mock_settings):
    report = scan_units_sync(UNITS, settings=mock_settings)

    assert [r.unit for r in report.results] == ["sede", "backdoor-utils", "serde"]
    results = _by_name(report)
    assert results["sede"].risk_score == RiskScore.HIGH
    assert results["backdoor-utils"].risk_score == RiskScore.MEDIUM
    assert results["backdoor-utils"].flagged_patterns[0].line == 2
    assert results["serde"].risk_score == RiskScore.CLEAN
    assert results["serde"].analysis_text == QUICK_SCAN_NOTE
    assert results["serde"].source.kind == "registry"

    session = report.session
    assert (session.total_units, session.hits, session.misses, session.api_calls) == (3, 0, 2, 2)


def test_second_scan_is_served_from_cache(mock_settings):
    scan_units_sync(UNITS, settings=mock_settings)
    report = scan_units_sync(UNITS, settings=mock_settings)

    assert (report.session.hits, report.session.misses, report.session.api_calls) == (2, 0, 0)
    results = _by_name(report)
    assert results["sede"].from_cache and results["backdoor-utils"].from_cache
    assert results["backdoor-utils"].risk_score == RiskScore.MEDIUM

    cache = ResultCache(mock_settings.cache_database_url)
    assert cache.session_count() == 2
    cache.close()


def test_changed_content_misses_cache(mock_settings):
    scan_units_sync(UNITS, settings=mock_settings)
    changed = UNITS[:2] + [UNITS[2].model_copy(update={"content": "fn run() {}\n"})]
    report = scan_units_sync(changed, settings=mock_settings)
    assert (report.session.hits, report.session.misses) == (1, 1)
    assert _by_name(report)["backdoor-utils"].risk_score == RiskScore.CLEAN


def test_failed_call_becomes_note_and_is_not_cached(mock_settings, cache):
    client = StubClient(error=NonRetryableCallError("API error 403: forbidden", 403))
    report = asyncio.run(scan_units(UNITS, settings=mock_settings, cache=cache, client=client))

    assert len(report.results) == 3
    results = _by_name(report)
    assert results["sede"].analysis_text == "Failed to analyze source: API error 403: forbidden"
    assert results["sede"].risk_score == RiskScore.HIGH
    assert report.session.failures == 2
    assert cache.stats().total_entries == 0


def test_slow_call_times_out_without_dropping_units(mock_settings, cache):
    s = mock_settings.model_copy(update={"call_timeout_seconds": 0.05, "unit_timeout_seconds": 2})
    client = StubClient(delay=1.0)
    report = asyncio.run(scan_units(UNITS, settings=s, cache=cache, client=client))

    assert len(report.results) == 3
    assert _by_name(report)["backdoor-utils"].analysis_text == TIMEOUT_NOTE
    assert client.calls == ["sede", "backdoor-utils"]


def test_unavailable_cache_still_completes(mock_settings, tmp_path):
    blocker = tmp_path / "blocker"
    blocker.write_text("file, not a directory")
    cache = ResultCache(f"sqlite:///{blocker / 'sub' / 'cache.db'}")
    report = asyncio.run(scan_units(UNITS, settings=mock_settings, cache=cache))
    assert len(report.results) == 3
    assert report.session.misses == 2


def test_light_only_scan_never_builds_a_client(settings):
    s = settings.model_copy(update={"llm_api_key": None})
    report = scan_units_sync([UNITS[0]], settings=s)
    assert report.results[0].analysis_text == QUICK_SCAN_NOTE
    assert report.session.api_calls == 0


def test_inter_unit_delay_applies_only_after_real_calls(mock_settings):
    s = mock_settings.model_copy(update={"inter_unit_delay_seconds": 0.15})

    start = time.monotonic()
    scan_units_sync(UNITS, settings=s)
    first = time.monotonic() - start

    start = time.monotonic()
    scan_units_sync(UNITS, settings=s)
    second = time.monotonic() - start

    assert first >= 0.14
    assert second < 0.14


def test_auto_cleanup_purges_stale_entries(mock_settings, cache):
    cache.store("stale", "0.0.1", fingerprint("old"), AnalysisResult(analysis_text="old"), "m")
    with session_scope(cache._SessionLocal) as s:
        for row in s.query(ScanResult).all():
            row.scanned_at = datetime.now(timezone.utc) - timedelta(days=200)

    s = mock_settings.model_copy(update={"cache_auto_cleanup": True, "cache_max_age_days": 90})
    asyncio.run(scan_units(UNITS, settings=s, cache=cache))

    names = {e.name for e in cache.export()}
    assert "stale" not in names
    assert names == {"sede", "backdoor-utils"}


def test_bare_names_put_flagged_units_ahead_of_trusted_ones(mock_settings):
    units = [AnalysisUnit(name="serde", version="1.0.0"), AnalysisUnit(name="sede", version="1.0.0"),
             AnalysisUnit(name="backdoor-utils", version="0.1.0")]
    report = scan_units_sync(units, settings=mock_settings)

    assert [(r.unit, r.risk_score) for r in report.results] == [
        ("sede", RiskScore.HIGH),
        ("backdoor-utils", RiskScore.CLEAN),
        ("serde", RiskScore.CLEAN),
    ]
    assert report.results[-1].analysis_text == QUICK_SCAN_NOTE


def test_owned_cache_is_closed_when_the_scan_fails(mock_settings, monkeypatch):
    closed = []
    original_close = ResultCache.close

    def tracking_close(self):
        closed.append(self.database_url)
        original_close(self)

    async def explode(*args, **kwargs):
        raise RuntimeError("boom")

    monkeypatch.setattr(ResultCache, "close", tracking_close)
    monkeypatch.setattr("supplyjudge.service.analyze_deep", explode)
    with pytest.raises(RuntimeError):
        scan_units_sync(UNITS, settings=mock_settings)
    assert closed == [mock_settings.cache_database_url]
