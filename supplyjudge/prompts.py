from typing import Tuple
from .schemas import AnalysisUnit, UnitKind


CONCISE_THRESHOLD = 12000
TRUNCATE_THRESHOLD = 15000
SLICE_CHARS = 7500
ELISION_MARKER = "\n\n// ... (middle section truncated for analysis) ...\n\n"

RESPONSE_FORMAT = (
    "Format response as:\n"
    "ANALYSIS: [Your security analysis summary]\n\n"
    "PATTERNS:\n"
    "- Line: [number], Severity: [High/Medium/Low], Description: [description], Code: [snippet]\n\n"
    "If no issues found: ANALYSIS: No significant security issues detected."
)


def reduce_content(content: str) -> Tuple[str, bool]:
    """Cut oversized content to a head/tail slice. Returns (text, truncated)."""
    if len(content) <= TRUNCATE_THRESHOLD:
        return content, False
    return content[:SLICE_CHARS] + ELISION_MARKER + content[-SLICE_CHARS:], True


def build_prompt(unit: AnalysisUnit) -> str:
    code = unit.content or ""
    if len(code) > CONCISE_THRESHOLD:
        return _concise_prompt(unit, code)
    if unit.kind == UnitKind.FILE:
        return (
            "Analyze this code for security vulnerabilities, malicious behavior, backdoors, and unsafe patterns.\n\n"
            f"File: {unit.name}\n"
            f"Code to analyze:\n```\n{code}\n```\n\n"
            f"{RESPONSE_FORMAT}"
        )
    deps = ", ".join(unit.dependencies) or "(none declared)"
    source = f"Source code:\n```\n{code}\n```\n\n" if code else ""
    return (
        "Analyze this package for potential security threats, supply chain attacks, or malicious behavior:\n\n"
        f"Package: {unit.name} v{unit.version}\n"
        f"Dependencies: {deps}\n\n"
        f"{source}"
        "Look specifically for:\n"
        "1. Unexpected network requests or data exfiltration\n"
        "2. File system manipulation beyond normal operations\n"
        "3. Process execution or system command usage\n"
        "4. Cryptographic operations that could be backdoors\n"
        "5. Code obfuscation or suspicious patterns\n"
        "6. Supply chain attack indicators\n\n"
        f"{RESPONSE_FORMAT}"
    )


def _concise_prompt(unit: AnalysisUnit, code: str) -> str:
    reduced, truncated = reduce_content(code)
    label = f"File: {unit.name}" if unit.kind == UnitKind.FILE else f"Package: {unit.name} v{unit.version}"
    return (
        "Analyze this code for security vulnerabilities and suspicious patterns. "
        "Focus on imports, unsafe blocks, network calls, file operations, and external command execution.\n\n"
        f"{label}\n"
        f"Code ({len(code)} chars, {'truncated' if truncated else 'full'} analyzed):\n```\n{reduced}\n```\n\n"
        "Provide a brief analysis focusing on security concerns.\n"
        f"{RESPONSE_FORMAT}"
    )
