from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional
from .registry import RegistryClient
from .rules import TriageRules
from .schemas import AnalysisUnit, MetadataFlag, MetadataFlagType, Severity, UnitKind
from .triage import find_similar_popular
from .utils.logging import get_logger

log = get_logger(__name__)


def typosquat_flags(name: str, rules: TriageRules) -> List[MetadataFlag]:
    similar = find_similar_popular(name, rules)
    if not similar:
        return []
    return [
        MetadataFlag(
            flag_type=MetadataFlagType.TYPOSQUATTING,
            description=f"Package name '{name}' is similar to popular package '{similar}'",
            severity=Severity.HIGH,
        )
    ]


def capability_flags(dependencies: Iterable[str], rules: TriageRules) -> List[MetadataFlag]:
    names = set(dependencies)
    flags = []
    for flag_type, (reference, severity, description) in rules.capability_sets.items():
        if names & reference:
            flags.append(MetadataFlag(flag_type=flag_type, description=description, severity=severity))
    return flags


def _parse_timestamp(value: Any) -> Optional[datetime]:
    if not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def is_recently_published(doc: Dict[str, Any], rules: TriageRules, now: Optional[datetime] = None) -> bool:
    created = _parse_timestamp(doc.get("created_at"))
    if created is None:
        return False
    now = now or datetime.now(timezone.utc)
    return (now - created).days <= rules.recent_publication_days


def has_low_downloads(doc: Dict[str, Any], rules: TriageRules) -> bool:
    downloads = doc.get("downloads")
    if isinstance(downloads, bool) or not isinstance(downloads, (int, float)):
        # missing download data counts against the package
        return True
    return downloads < rules.low_download_threshold


def registry_flags(doc: Optional[Dict[str, Any]], rules: TriageRules, now: Optional[datetime] = None) -> List[MetadataFlag]:
    if not doc:
        return []
    flags = []
    if is_recently_published(doc, rules, now):
        flags.append(
            MetadataFlag(
                flag_type=MetadataFlagType.RECENT_PUBLICATION,
                description="Package was published very recently, could be a 0-day injection",
                severity=Severity.MEDIUM,
            )
        )
    if has_low_downloads(doc, rules):
        flags.append(
            MetadataFlag(
                flag_type=MetadataFlagType.LOW_DOWNLOADS,
                description="Package has unusually low download count for its age",
                severity=Severity.LOW,
            )
        )
    return flags


async def derive_flags(
    unit: AnalysisUnit,
    rules: Optional[TriageRules] = None,
    registry: Optional[RegistryClient] = None,
    now: Optional[datetime] = None,
) -> List[MetadataFlag]:
    rules = rules or TriageRules()
    if unit.kind != UnitKind.PACKAGE:
        return capability_flags(unit.dependencies, rules)
    flags = typosquat_flags(unit.name, rules)
    if registry is not None:
        doc = await registry.fetch(unit.name)
        flags.extend(registry_flags(doc, rules, now))
    flags.extend(capability_flags(unit.dependencies, rules))
    log.debug(f"{unit.name}: {len(flags)} metadata flags")
    return flags
