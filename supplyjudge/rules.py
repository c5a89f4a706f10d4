from typing import Dict, FrozenSet, Tuple
from pydantic import BaseModel, ConfigDict
from .schemas import MetadataFlagType, RiskScore, Severity


# Well-known packages that never need a deep look
TRUSTED_PACKAGES = frozenset([
    "serde", "tokio", "clap", "anyhow", "thiserror", "regex",
    "chrono", "uuid", "log", "once_cell", "parking_lot", "rayon",
])

KNOWN_MALICIOUS = frozenset(["malicious-example"])

# Popular reference names for typosquat checks (name -> approx downloads)
POPULAR_PACKAGES = {
    "serde": 100_000_000,
    "tokio": 50_000_000,
    "clap": 30_000_000,
    "reqwest": 20_000_000,
    "anyhow": 40_000_000,
    "thiserror": 25_000_000,
}

SUSPICIOUS_SUBSTRINGS = (
    "steal", "hack", "backdoor", "malware", "virus", "trojan", "keylog", "password",
    "credit", "bank", "wallet", "bitcoin", "mining", "miner", "crypto", "shell", "reverse",
    "payload",
)

# Capability category -> (reference dependency names, severity, description)
CAPABILITY_SETS = {
    MetadataFlagType.NETWORKING_CAPABILITIES: (
        frozenset(["reqwest", "hyper", "curl", "ureq", "attohttpc"]),
        Severity.MEDIUM,
        "Package has networking dependencies - review network usage",
    ),
    MetadataFlagType.FILE_SYSTEM_ACCESS: (
        frozenset(["walkdir", "glob", "tempfile"]),
        Severity.LOW,
        "Package has file system access dependencies",
    ),
    MetadataFlagType.PROCESS_EXECUTION: (
        frozenset(["tokio-process", "async-process"]),
        Severity.HIGH,
        "Package can execute external processes",
    ),
}

FLAG_WEIGHTS = {
    MetadataFlagType.TYPOSQUATTING: 50,
    MetadataFlagType.SUSPICIOUS_AUTHOR: 40,
    MetadataFlagType.PROCESS_EXECUTION: 30,
    MetadataFlagType.NETWORKING_CAPABILITIES: 20,
    MetadataFlagType.RECENT_PUBLICATION: 15,
    MetadataFlagType.LOW_DOWNLOADS: 10,
}
DEFAULT_FLAG_WEIGHT = 5

SEVERITY_WEIGHTS = {
    Severity.HIGH: 30,
    Severity.MEDIUM: 15,
    Severity.LOW: 5,
}

# Evaluated top-down against the summed points
TIER_THRESHOLDS = (
    (80, RiskScore.CRITICAL),
    (50, RiskScore.HIGH),
    (25, RiskScore.MEDIUM),
    (10, RiskScore.LOW),
)

MAX_TYPO_DISTANCE = 2
RECENT_PUBLICATION_DAYS = 7
LOW_DOWNLOAD_THRESHOLD = 1000


class TriageRules(BaseModel):
    model_config = ConfigDict(frozen=True)

    trusted: FrozenSet[str] = TRUSTED_PACKAGES
    known_malicious: FrozenSet[str] = KNOWN_MALICIOUS
    popular: Dict[str, int] = POPULAR_PACKAGES
    suspicious_substrings: Tuple[str, ...] = SUSPICIOUS_SUBSTRINGS
    capability_sets: Dict[MetadataFlagType, Tuple[FrozenSet[str], Severity, str]] = CAPABILITY_SETS
    flag_weights: Dict[MetadataFlagType, int] = FLAG_WEIGHTS
    default_flag_weight: int = DEFAULT_FLAG_WEIGHT
    severity_weights: Dict[Severity, int] = SEVERITY_WEIGHTS
    tier_thresholds: Tuple[Tuple[int, RiskScore], ...] = TIER_THRESHOLDS
    max_typo_distance: int = MAX_TYPO_DISTANCE
    recent_publication_days: int = RECENT_PUBLICATION_DAYS
    low_download_threshold: int = LOW_DOWNLOAD_THRESHOLD
