from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field


class UnitKind(str, Enum):
    PACKAGE = "package"
    FILE = "file"


class AnalysisUnit(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    version: str = ""
    source_descriptor: Optional[str] = None
    content: str = ""
    kind: UnitKind = UnitKind.PACKAGE
    dependencies: List[str] = []


class DependencySource(BaseModel):
    kind: Literal["registry", "git", "path", "unknown"]
    location: Optional[str] = None
    rev: Optional[str] = None

    @classmethod
    def from_descriptor(cls, descriptor: Optional[str]) -> "DependencySource":
        if not descriptor:
            # no source recorded means a local path dependency
            return cls(kind="path", location="unknown")
        if "registry+" in descriptor:
            return cls(kind="registry", location=descriptor)
        if "git+" in descriptor:
            rev = None
            # the fragment holds the resolved commit; fall back to the requested rev
            for marker in ("#", "?rev="):
                if marker in descriptor:
                    rev = descriptor.rsplit(marker, 1)[1] or None
                    break
            return cls(kind="git", location=descriptor, rev=rev)
        return cls(kind="unknown", location=descriptor)


class Severity(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class FlaggedPattern(BaseModel):
    line: int
    severity: Severity
    description: str
    snippet: str = ""


class MetadataFlagType(str, Enum):
    TYPOSQUATTING = "Typosquatting"
    RECENT_PUBLICATION = "RecentPublication"
    LOW_DOWNLOADS = "LowDownloads"
    SUSPICIOUS_AUTHOR = "SuspiciousAuthor"
    UNUSUAL_DEPENDENCIES = "UnusualDependencies"
    NETWORKING_CAPABILITIES = "NetworkingCapabilities"
    FILE_SYSTEM_ACCESS = "FileSystemAccess"
    PROCESS_EXECUTION = "ProcessExecution"
    CRYPTO_OPERATIONS = "CryptoOperations"


class MetadataFlag(BaseModel):
    flag_type: MetadataFlagType
    description: str
    severity: Severity


class RiskScore(str, Enum):
    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"
    CLEAN = "Clean"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self]


_RISK_RANK = {
    RiskScore.CRITICAL: 4,
    RiskScore.HIGH: 3,
    RiskScore.MEDIUM: 2,
    RiskScore.LOW: 1,
    RiskScore.CLEAN: 0,
}


class AnalysisResult(BaseModel):
    analysis_text: str
    flagged_patterns: List[FlaggedPattern] = []


class CachedResult(AnalysisResult):
    id: int
    name: str
    version: str
    fingerprint: str
    model_id: str
    scanned_at: datetime


class CacheEntry(BaseModel):
    name: str
    version: str
    fingerprint: str
    analysis_text: str
    flagged_patterns: List[FlaggedPattern] = []
    model_id: str
    scanned_at: datetime


class CacheStats(BaseModel):
    total_entries: int = 0
    recent_count: int = 0


class UnitScanCount(BaseModel):
    name: str
    scan_count: int
    last_scanned_at: datetime


class SessionStats(BaseModel):
    total_units: int = 0
    hits: int = 0
    misses: int = 0
    api_calls: int = 0
    failures: int = 0

    @property
    def hit_rate(self) -> float:
        looked_up = self.hits + self.misses
        return round(self.hits / looked_up * 100, 1) if looked_up else 0.0


class DependencyAnalysisResult(BaseModel):
    unit: str
    version: str = ""
    source: DependencySource
    risk_score: RiskScore
    score: int = 0
    flagged_patterns: List[FlaggedPattern] = []
    metadata_flags: List[MetadataFlag] = []
    analysis_text: Optional[str] = None
    from_cache: bool = False


class ScanReport(BaseModel):
    results: List[DependencyAnalysisResult] = Field(default_factory=list)
    session: SessionStats = Field(default_factory=SessionStats)
