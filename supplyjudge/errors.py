from typing import Optional


class SupplyJudgeError(Exception):
    pass


class ConfigurationError(SupplyJudgeError):
    pass


class AnalysisError(SupplyJudgeError):
    retryable = True

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        self.status = status


class TransientCallError(AnalysisError):
    retryable = True


class NonRetryableCallError(AnalysisError):
    retryable = False


class MalformedResponseError(TransientCallError):
    pass


class CacheError(SupplyJudgeError):
    pass


class CacheUnavailableError(CacheError):
    pass


class CacheReadError(CacheError):
    pass


class CacheWriteError(CacheError):
    pass


def classify_api_error(status: Optional[int], message: str) -> AnalysisError:
    """Map an upstream failure onto the retry policy.

    Quota exhaustion and invalid requests never get better by waiting, so
    they short-circuit; 408/429 and 5xx are worth another attempt.
    """
    text = f"API error {status}: {message}" if status else f"API error: {message}"
    lowered = (message or "").lower()
    if "quota" in lowered or "invalid" in lowered:
        return NonRetryableCallError(text, status)
    if status is not None and 400 <= status < 500 and status not in (408, 429):
        return NonRetryableCallError(text, status)
    return TransientCallError(text, status)
