import asyncio
from enum import Enum
from typing import Optional, Sequence, Tuple
from .cache import ResultCache, fingerprint
from .config import Settings, get_settings
from .errors import AnalysisError
from .llm_client import AnalysisClient
from .metadata_flags import derive_flags
from .registry import RegistryClient
from .rules import TriageRules
from .schemas import (
    AnalysisResult,
    AnalysisUnit,
    DependencyAnalysisResult,
    DependencySource,
    ScanReport,
    SessionStats,
)
from .scoring import compute_points, sort_results, tier_for
from .triage import partition
from .utils.logging import get_logger

log = get_logger(__name__)

QUICK_SCAN_NOTE = "Quick scan - no deep code analysis performed"
TIMEOUT_NOTE = "Analysis timed out"


class Outcome(str, Enum):
    HIT = "hit"
    ANALYZED = "analyzed"
    FAILED = "failed"


def tally(session: SessionStats, outcome: Outcome) -> SessionStats:
    if outcome == Outcome.HIT:
        return session.model_copy(update={"hits": session.hits + 1})
    update = {"misses": session.misses + 1, "api_calls": session.api_calls + 1}
    if outcome == Outcome.FAILED:
        update["failures"] = session.failures + 1
    return session.model_copy(update=update)


def build_result(unit, flags, analysis: AnalysisResult, rules, from_cache=False) -> DependencyAnalysisResult:
    points = compute_points(flags, analysis.flagged_patterns, rules)
    return DependencyAnalysisResult(
        unit=unit.name,
        version=unit.version,
        source=DependencySource.from_descriptor(unit.source_descriptor),
        risk_score=tier_for(points, rules),
        score=points,
        flagged_patterns=analysis.flagged_patterns,
        metadata_flags=flags,
        analysis_text=analysis.analysis_text,
        from_cache=from_cache,
    )


async def _cache_or_call(unit, settings, cache, client) -> Tuple[AnalysisResult, Outcome]:
    content_fingerprint = fingerprint(unit.content)
    cached = cache.lookup(unit.name, unit.version, content_fingerprint)
    if cached is not None:
        log.info(f"Cache HIT for {unit.name} v{unit.version} (saved API call)")
        return cached, Outcome.HIT
    log.info(f"Cache MISS for {unit.name} v{unit.version} - calling LLM")
    try:
        result = await asyncio.wait_for(client.analyze(unit), timeout=settings.call_timeout_seconds)
    except asyncio.TimeoutError:
        log.warning(f"Analysis call timeout for {unit.name}")
        return AnalysisResult(analysis_text=TIMEOUT_NOTE), Outcome.FAILED
    except AnalysisError as e:
        log.warning(f"Could not analyze source for {unit.name}: {e}")
        return AnalysisResult(analysis_text=f"Failed to analyze source: {e}"), Outcome.FAILED
    cache.store(unit.name, unit.version, content_fingerprint, result, client.model_id)
    return result, Outcome.ANALYZED


async def analyze_deep(
    unit: AnalysisUnit,
    settings: Settings,
    rules: TriageRules,
    cache: ResultCache,
    client: AnalysisClient,
    registry: Optional[RegistryClient] = None,
) -> Tuple[DependencyAnalysisResult, Outcome]:
    flags = await derive_flags(unit, rules, registry)
    try:
        analysis, outcome = await asyncio.wait_for(
            _cache_or_call(unit, settings, cache, client), timeout=settings.unit_timeout_seconds
        )
    except asyncio.TimeoutError:
        log.warning(f"Analysis timeout for {unit.name}")
        analysis, outcome = AnalysisResult(analysis_text=TIMEOUT_NOTE), Outcome.FAILED
    return build_result(unit, flags, analysis, rules, from_cache=outcome == Outcome.HIT), outcome


async def analyze_light(
    unit: AnalysisUnit, rules: TriageRules, registry: Optional[RegistryClient] = None
) -> DependencyAnalysisResult:
    flags = await derive_flags(unit, rules, registry)
    return build_result(unit, flags, AnalysisResult(analysis_text=QUICK_SCAN_NOTE), rules)


async def scan_units(
    units: Sequence[AnalysisUnit],
    settings: Optional[Settings] = None,
    rules: Optional[TriageRules] = None,
    cache: Optional[ResultCache] = None,
    client: Optional[AnalysisClient] = None,
    registry: Optional[RegistryClient] = None,
) -> ScanReport:
    settings = settings or get_settings()
    rules = rules or TriageRules()
    units = list(units)
    deep, light = partition(units, rules)
    log.info(f"Found {len(units)} units ({len(deep)} high-priority for deep analysis)")

    owns_cache = cache is None
    if owns_cache:
        cache = ResultCache(settings.cache_database_url, enabled=settings.cache_enabled)
    owns_client = client is None and bool(deep)
    if owns_client:
        client = AnalysisClient(settings)
    owns_registry = registry is None
    if owns_registry:
        registry = RegistryClient(settings)

    session = SessionStats(total_units=len(units))
    results = []
    try:
        called_previous = False
        for i, unit in enumerate(deep, start=1):
            if called_previous and settings.inter_unit_delay_seconds > 0:
                await asyncio.sleep(settings.inter_unit_delay_seconds)
            log.info(f"Deep analysis [{i}/{len(deep)}]: {unit.name} v{unit.version}")
            result, outcome = await analyze_deep(unit, settings, rules, cache, client, registry)
            session = tally(session, outcome)
            called_previous = outcome != Outcome.HIT
            results.append(result)

        for unit in light:
            log.info(f"Quick scan: {unit.name} v{unit.version}")
            results.append(await analyze_light(unit, rules, registry))

        cache.record_session(session)
        if settings.cache_auto_cleanup:
            cache.cleanup(settings.cache_max_age_days)
    finally:
        if owns_client:
            await client.aclose()
        if owns_registry:
            await registry.aclose()
        if owns_cache:
            cache.close()
    log.info(
        f"Cache hits: {session.hits}, misses: {session.misses}, hit rate: {session.hit_rate}%, "
        f"failures: {session.failures}"
    )
    return ScanReport(results=sort_results(results), session=session)


def scan_units_sync(units: Sequence[AnalysisUnit], **kwargs) -> ScanReport:
    return asyncio.run(scan_units(units, **kwargs))
