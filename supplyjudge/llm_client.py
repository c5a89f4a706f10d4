import asyncio
import json
from typing import Any, Dict, Optional
import httpx
from openai import AsyncOpenAI, APIConnectionError, APIStatusError
from .config import Settings, get_settings
from .errors import (
    AnalysisError,
    ConfigurationError,
    MalformedResponseError,
    TransientCallError,
    classify_api_error,
)
from .prompts import build_prompt
from .rate_limit import AsyncRateLimiter
from .response_parsing import FALLBACK_ANALYSIS, extract_text, parse_analysis_text
from .schemas import AnalysisResult, AnalysisUnit
from .utils.logging import get_logger

log = get_logger(__name__)

GEMINI_ENDPOINT = "https://generativelanguage.googleapis.com"
MOCK_MODEL_ID = "offline-mock"

SYSTEM_PROMPT = (
    "You are a supply-chain security reviewer. Report only concerns visible in the provided code "
    "or metadata, and always answer in the ANALYSIS/PATTERNS format you are given."
)

SAFETY_CATEGORIES = [
    "HARM_CATEGORY_HARASSMENT",
    "HARM_CATEGORY_HATE_SPEECH",
    "HARM_CATEGORY_SEXUALLY_EXPLICIT",
    "HARM_CATEGORY_DANGEROUS_CONTENT",
]

# Offline provider: (needle, severity, description)
MOCK_SIGNATURES = [
    ("Command::new", "High", "Spawns an external process"),
    ("subprocess", "High", "Spawns an external process"),
    ("TcpStream", "Medium", "Opens raw network connections"),
    ("reqwest::", "Medium", "Performs HTTP requests"),
    ("remove_dir_all", "Medium", "Recursively deletes directories"),
    ("unsafe ", "Medium", "Uses unsafe code"),
    ("base64", "Low", "Decodes embedded data"),
    ("env::var", "Low", "Reads environment variables"),
]


def backoff_delay(attempt: int, base: float, cap: float) -> float:
    return min(base * (2 ** (attempt - 1)), cap)


def decode_body(body: str) -> Any:
    try:
        return json.loads(body)
    except ValueError as e:
        preview = body[:200]
        raise MalformedResponseError(f"Non-JSON response received: {preview}") from e


class AnalysisClient:
    """Rate-limited, retrying client for the external analysis capability."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        openai_client: Optional[AsyncOpenAI] = None,
    ):
        self.settings = settings or get_settings()
        self.provider = self.settings.provider
        if self.provider != "mock" and not self.settings.llm_api_key:
            raise ConfigurationError(f"LLM_API_KEY is required for the {self.provider} provider")
        self.model_id = MOCK_MODEL_ID if self.provider == "mock" else self.settings.llm_model
        self.limiter = AsyncRateLimiter(self.settings.min_request_interval_seconds)
        self._http = http_client
        self._owns_http = http_client is None
        self._openai = openai_client
        self._owns_openai = openai_client is None

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.aclose()

    async def aclose(self):
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None
        if self._openai is not None and self._owns_openai:
            await self._openai.close()
            self._openai = None

    async def analyze(self, unit: AnalysisUnit) -> AnalysisResult:
        prompt = build_prompt(unit)
        return await self._with_retry(prompt, unit)

    async def _with_retry(self, prompt: str, unit: AnalysisUnit) -> AnalysisResult:
        s = self.settings
        last_error: Optional[AnalysisError] = None
        for attempt in range(s.max_attempts):
            if attempt > 0:
                delay = backoff_delay(attempt, s.retry_base_delay_seconds, s.retry_max_delay_seconds)
                log.info(f"Retry attempt {attempt} for {unit.name} in {delay:.1f}s")
                await asyncio.sleep(delay)
            try:
                return await self._attempt(prompt, unit)
            except AnalysisError as e:
                log.warning(f"Analysis attempt {attempt + 1} for {unit.name} failed: {e}")
                last_error = e
                if not e.retryable:
                    raise
        if isinstance(last_error, MalformedResponseError):
            log.warning(f"Response for {unit.name} stayed malformed, using placeholder analysis")
            return parse_analysis_text(FALLBACK_ANALYSIS)
        raise last_error

    async def _attempt(self, prompt: str, unit: AnalysisUnit) -> AnalysisResult:
        await self.limiter.acquire()
        log.info(f"Analyzing {unit.name} ({len(prompt)} characters)")
        payload = await self._dispatch(prompt, unit)
        return parse_analysis_text(extract_text(payload))

    async def _dispatch(self, prompt: str, unit: AnalysisUnit) -> Any:
        if self.provider == "mock":
            return self._mock_payload(unit)
        if self.provider == "openai":
            return await self._call_openai(prompt)
        return await self._call_gemini(prompt)

    async def _call_gemini(self, prompt: str) -> Any:
        s = self.settings
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=s.request_timeout_seconds)
        endpoint = (s.llm_api_endpoint or GEMINI_ENDPOINT).rstrip("/")
        url = f"{endpoint}/v1/models/{s.llm_model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": s.llm_temperature,
                "maxOutputTokens": s.llm_max_output_tokens,
                "candidateCount": 1,
            },
            "safetySettings": [{"category": c, "threshold": "BLOCK_NONE"} for c in SAFETY_CATEGORIES],
        }
        try:
            r = await self._http.post(url, params={"key": s.llm_api_key}, json=body)
        except httpx.TimeoutException as e:
            raise TransientCallError(f"Request timed out: {e!r}") from e
        except httpx.HTTPError as e:
            raise TransientCallError(f"HTTP request error: {e!r}") from e
        if r.status_code >= 400:
            raise classify_api_error(r.status_code, r.text[:500])
        log.debug(f"Response length: {len(r.text)} bytes")
        return decode_body(r.text)

    async def _call_openai(self, prompt: str) -> Dict[str, Any]:
        s = self.settings
        if self._openai is None:
            self._openai = AsyncOpenAI(
                api_key=s.llm_api_key,
                base_url=s.llm_api_endpoint,
                timeout=s.request_timeout_seconds,
                max_retries=0,
            )
        try:
            resp = await self._openai.chat.completions.create(
                model=s.llm_model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=s.llm_temperature,
                max_tokens=s.llm_max_output_tokens,
            )
        except APIStatusError as e:
            raise classify_api_error(e.status_code, e.message) from e
        except APIConnectionError as e:
            raise TransientCallError(f"HTTP request error: {e}") from e
        return resp.model_dump()

    def _mock_payload(self, unit: AnalysisUnit) -> Dict[str, Any]:
        # Deterministic offline analysis in the same envelope the gemini provider returns
        lines = []
        for number, line in enumerate((unit.content or "").splitlines(), start=1):
            for needle, severity, description in MOCK_SIGNATURES:
                if needle in line:
                    snippet = line.strip()[:120]
                    lines.append(f"- Line: {number}, Severity: {severity}, Description: {description}, Code: {snippet}")
                    break
        if lines:
            summary = f"Offline review of {unit.name} found {len(lines)} suspicious constructs."
        else:
            summary = "No significant security issues detected."
        text = f"ANALYSIS: {summary}\n\nPATTERNS:\n" + "\n".join(lines)
        return {"candidates": [{"content": {"parts": [{"text": text}]}, "finishReason": "STOP"}]}
