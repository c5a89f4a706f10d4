from typing import List, NamedTuple, Optional, Sequence, Tuple
from .rules import TriageRules
from .schemas import AnalysisUnit


class TriageDecision(NamedTuple):
    deep: bool
    reason: str


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    prev = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        cur = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            cur.append(min(prev[j] + 1, cur[j - 1] + 1, prev[j - 1] + cost))
        prev = cur
    return prev[-1]


def find_similar_popular(name: str, rules: Optional[TriageRules] = None) -> Optional[str]:
    """Popular reference name within typo distance of `name`, excluding an exact match."""
    rules = rules or TriageRules()
    for popular in rules.popular:
        distance = levenshtein(name, popular)
        if 0 < distance <= rules.max_typo_distance:
            return popular
    return None


def suspicious_substring(name: str, rules: Optional[TriageRules] = None) -> Optional[str]:
    rules = rules or TriageRules()
    lowered = name.lower()
    for needle in rules.suspicious_substrings:
        if needle in lowered:
            return needle
    return None


def classify(name: str, rules: Optional[TriageRules] = None) -> TriageDecision:
    rules = rules or TriageRules()
    if name in rules.trusted:
        return TriageDecision(False, "trusted")
    if name in rules.known_malicious:
        return TriageDecision(True, "known malicious")
    similar = find_similar_popular(name, rules)
    if similar:
        return TriageDecision(True, f"similar to '{similar}'")
    needle = suspicious_substring(name, rules)
    if needle:
        return TriageDecision(True, f"contains '{needle}'")
    # keep the external call budget for units that earned it
    return TriageDecision(False, "default")


def partition(
    units: Sequence[AnalysisUnit], rules: Optional[TriageRules] = None
) -> Tuple[List[AnalysisUnit], List[AnalysisUnit]]:
    """Split units into (deep, light), each in enumeration order."""
    rules = rules or TriageRules()
    deep, light = [], []
    for unit in units:
        (deep if classify(unit.name, rules).deep else light).append(unit)
    return deep, light
