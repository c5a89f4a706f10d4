"""Defensive extraction of analysis text from upstream payloads.

The upstream response shape is not guaranteed, so extraction is an
ordered chain of small strategies, each taking the decoded payload and
returning text or None. The chain always ends in a synthetic analysis,
so shape drift alone never fails a unit.
"""

import re
from typing import Any, Callable, List, Optional, Tuple, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from .errors import classify_api_error
from .schemas import AnalysisResult, FlaggedPattern, Severity
from .utils.logging import get_logger

log = get_logger(__name__)

Payload = Any
Strategy = Callable[[Payload], Optional[str]]

ANALYSIS_MARKER = "ANALYSIS:"
PATTERNS_MARKER = "PATTERNS:"
DEFAULT_ANALYSIS = "Security analysis completed."
TRUNCATED_ANALYSIS = (
    "ANALYSIS: Code analysis was truncated due to size limitations. The file is large and requires "
    "manual review for comprehensive security analysis. Focus on reviewing imports, unsafe blocks, "
    "network operations, and file system access patterns."
)
FALLBACK_ANALYSIS = (
    "ANALYSIS: Analysis completed but response format was unexpected. The code was processed by the "
    "LLM but the response structure was not in the expected format. Manual review recommended."
)

COMMON_FIELDS = ("text", "content", "message", "response", "output", "result")
SEARCH_PRIORITY = ("text", "content", "message", "response", "analysis")
SEARCH_HINTS = (ANALYSIS_MARKER, "security", "analysis")
TRUNCATION_REASONS = ("MAX_TOKENS", "length")

PATTERN_LINE = re.compile(
    r"\bLine:\s*(\d+),\s*Severity:\s*(High|Medium|Low),\s*Description:\s*([^,]+),\s*Code:\s*(.+)$"
)


class _LooseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class _Part(_LooseModel):
    text: Optional[str] = None


class _Content(_LooseModel):
    parts: Optional[List[_Part]] = None


class _Candidate(_LooseModel):
    content: Optional[_Content] = None
    finish_reason: Optional[str] = Field(default=None, alias="finishReason")


class _ErrorBody(_LooseModel):
    code: Optional[Union[int, str]] = None
    message: Optional[str] = None
    status: Optional[str] = None


class _Envelope(_LooseModel):
    candidates: Optional[List[_Candidate]] = None
    error: Optional[_ErrorBody] = None


def _first(value: Any) -> Any:
    if isinstance(value, list) and value:
        return value[0]
    return None


def from_candidates(payload: Payload) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    candidate = _first(payload.get("candidates"))
    if not isinstance(candidate, dict) or not isinstance(candidate.get("content"), dict):
        return None
    part = _first(candidate["content"].get("parts"))
    if isinstance(part, dict) and isinstance(part.get("text"), str):
        return part["text"]
    return None


def from_chat_choices(payload: Payload) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    choice = _first(payload.get("choices"))
    if not isinstance(choice, dict) or not isinstance(choice.get("message"), dict):
        return None
    content = choice["message"].get("content")
    return content if isinstance(content, str) and content else None


def from_bare_text(payload: Payload) -> Optional[str]:
    if isinstance(payload, str) and len(payload) > 20:
        log.warning("Using direct text response")
        return payload
    return None


def from_loose_decode(payload: Payload) -> Optional[str]:
    """Lenient typed decode. An embedded error object is a hard failure."""
    if not isinstance(payload, dict):
        return None
    try:
        envelope = _Envelope.model_validate(payload)
    except ValidationError as e:
        log.warning(f"Structured parsing failed: {e.error_count()} errors")
        return None
    if envelope.error is not None:
        err = envelope.error
        status = err.code if isinstance(err.code, int) else None
        raise classify_api_error(status, err.message or err.status or str(err.code or "Unknown error"))
    if not envelope.candidates:
        return None
    candidate = envelope.candidates[0]
    if candidate.finish_reason and candidate.finish_reason != "STOP":
        log.warning(f"Generation finished with reason: {candidate.finish_reason}")
    if candidate.content and candidate.content.parts:
        return candidate.content.parts[0].text
    return None


def _search(value: Any) -> Optional[str]:
    if isinstance(value, str):
        if len(value) > 10 and any(h in value for h in SEARCH_HINTS):
            return value
        return None
    if isinstance(value, dict):
        for key in SEARCH_PRIORITY:
            if key in value:
                found = _search(value[key])
                if found:
                    return found
        for val in value.values():
            found = _search(val)
            if found:
                return found
        return None
    if isinstance(value, list):
        for item in value:
            found = _search(item)
            if found:
                return found
    return None


def from_recursive_search(payload: Payload) -> Optional[str]:
    found = _search(payload)
    if found:
        log.warning("Using fallback text extraction")
    return found


def from_common_fields(payload: Payload) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    for field in COMMON_FIELDS:
        value = payload.get(field)
        if isinstance(value, str) and len(value) > 10:
            log.warning(f"Using '{field}' field as fallback")
            return value
    return None


def from_truncation_signal(payload: Payload) -> Optional[str]:
    if not isinstance(payload, dict):
        return None
    reasons = []
    candidate = _first(payload.get("candidates"))
    if isinstance(candidate, dict):
        reasons.append(candidate.get("finishReason"))
    choice = _first(payload.get("choices"))
    if isinstance(choice, dict):
        reasons.append(choice.get("finish_reason"))
    if any(r in TRUNCATION_REASONS for r in reasons):
        return TRUNCATED_ANALYSIS
    return None


def synthetic_analysis(payload: Payload) -> Optional[str]:
    log.warning("Could not parse response, creating basic analysis")
    return FALLBACK_ANALYSIS


STRATEGIES: Tuple[Strategy, ...] = (
    from_candidates,
    from_chat_choices,
    from_bare_text,
    from_loose_decode,
    from_recursive_search,
    from_common_fields,
    from_truncation_signal,
    synthetic_analysis,
)


def extract_text(payload: Payload, strategies: Tuple[Strategy, ...] = STRATEGIES) -> str:
    for strategy in strategies:
        text = strategy(payload)
        if text:
            return text
    return FALLBACK_ANALYSIS


def parse_analysis_text(text: str) -> AnalysisResult:
    """Split raw text into the summary and the line-level findings."""
    text = text or ""
    patterns: List[FlaggedPattern] = []
    start = text.find(ANALYSIS_MARKER)
    body = text[start + len(ANALYSIS_MARKER):] if start >= 0 else text
    split = body.find(PATTERNS_MARKER)
    if split >= 0:
        analysis = body[:split].strip()
        for line in body[split + len(PATTERNS_MARKER):].splitlines():
            m = PATTERN_LINE.search(line.strip())
            if not m:
                continue
            patterns.append(
                FlaggedPattern(
                    line=int(m.group(1)),
                    severity=Severity(m.group(2)),
                    description=m.group(3).strip(),
                    snippet=m.group(4).strip(),
                )
            )
    else:
        analysis = body.strip()
    return AnalysisResult(analysis_text=analysis or DEFAULT_ANALYSIS, flagged_patterns=patterns)
