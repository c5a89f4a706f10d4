from typing import Iterable, List, Optional, Sequence
from .rules import TriageRules
from .schemas import DependencyAnalysisResult, FlaggedPattern, MetadataFlag, RiskScore


def compute_points(
    flags: Iterable[MetadataFlag],
    patterns: Iterable[FlaggedPattern],
    rules: Optional[TriageRules] = None,
) -> int:
    rules = rules or TriageRules()
    points = 0
    for flag in flags:
        points += rules.flag_weights.get(flag.flag_type, rules.default_flag_weight)
    for pattern in patterns:
        points += rules.severity_weights.get(pattern.severity, rules.default_flag_weight)
    return points


def tier_for(points: int, rules: Optional[TriageRules] = None) -> RiskScore:
    rules = rules or TriageRules()
    for threshold, tier in rules.tier_thresholds:
        if points >= threshold:
            return tier
    return RiskScore.CLEAN


def score(
    flags: Sequence[MetadataFlag],
    patterns: Sequence[FlaggedPattern],
    rules: Optional[TriageRules] = None,
) -> RiskScore:
    return tier_for(compute_points(flags, patterns, rules), rules)


def sort_results(results: Sequence[DependencyAnalysisResult]) -> List[DependencyAnalysisResult]:
    """Highest risk first. The sort is stable, so equal tiers keep processing order
    (deep units before light ones)."""
    return sorted(results, key=lambda r: -r.risk_score.rank)
