import os
from typing import Literal, Optional
from pydantic import BaseModel, Field, model_validator
from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str) -> bool:
    return os.getenv(name, default) in ("1", "true", "True")


class Settings(BaseModel):
    # env-sourced default, so it has to be validated like an explicit value
    llm_provider: Literal["gemini", "openai", "mock"] = Field(default=os.getenv("LLM_PROVIDER", "gemini"), validate_default=True)
    llm_api_key: Optional[str] = os.getenv("LLM_API_KEY")
    llm_api_endpoint: Optional[str] = os.getenv("LLM_API_ENDPOINT")
    llm_model: str = os.getenv("LLM_MODEL", "gemini-2.5-flash")
    llm_temperature: float = float(os.getenv("LLM_TEMPERATURE", "0.3"))
    llm_max_output_tokens: int = int(os.getenv("LLM_MAX_OUTPUT_TOKENS", "4096"))
    use_mock_llm: bool = _flag("USE_MOCK_LLM", "0")

    min_request_interval_seconds: float = float(os.getenv("MIN_REQUEST_INTERVAL_SECONDS", "2.0"))
    max_attempts: int = int(os.getenv("MAX_ATTEMPTS", "3"))
    retry_base_delay_seconds: float = float(os.getenv("RETRY_BASE_DELAY_SECONDS", "2.0"))
    retry_max_delay_seconds: float = float(os.getenv("RETRY_MAX_DELAY_SECONDS", "60"))
    request_timeout_seconds: float = float(os.getenv("REQUEST_TIMEOUT_SECONDS", "30"))
    call_timeout_seconds: float = float(os.getenv("CALL_TIMEOUT_SECONDS", "45"))
    unit_timeout_seconds: float = float(os.getenv("UNIT_TIMEOUT_SECONDS", "60"))
    inter_unit_delay_seconds: float = float(os.getenv("INTER_UNIT_DELAY_SECONDS", "4.0"))

    cache_enabled: bool = _flag("CACHE_ENABLED", "1")
    cache_database_url: str = os.getenv("CACHE_DATABASE_URL", "sqlite:///./data/scan_cache.db")
    cache_max_age_days: int = int(os.getenv("CACHE_MAX_AGE_DAYS", "90"))
    cache_auto_cleanup: bool = _flag("CACHE_AUTO_CLEANUP", "1")

    registry_lookups: bool = _flag("REGISTRY_LOOKUPS", "1")
    registry_url_template: str = os.getenv("REGISTRY_URL_TEMPLATE", "https://crates.io/api/v1/crates/{name}")
    registry_timeout_seconds: float = float(os.getenv("REGISTRY_TIMEOUT_SECONDS", "10"))

    @model_validator(mode="after")
    def _check_budgets(self):
        if self.max_attempts < 2:
            raise ValueError("max_attempts must be at least 2")
        # a single call has to fit inside the unit budget or timeouts never surface as notes
        if self.call_timeout_seconds >= self.unit_timeout_seconds:
            raise ValueError("call_timeout_seconds must be shorter than unit_timeout_seconds")
        return self

    @property
    def provider(self) -> str:
        return "mock" if self.use_mock_llm else self.llm_provider


def get_settings() -> Settings:
    return Settings()
