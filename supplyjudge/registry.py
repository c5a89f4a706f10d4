from typing import Any, Dict, Optional
import httpx
from .config import Settings, get_settings
from .utils.logging import get_logger

log = get_logger(__name__)

USER_AGENT = "supplyjudge (supply-chain triage)"


class RegistryClient:
    """Best-effort package metadata lookups. Never raises."""

    def __init__(self, settings: Optional[Settings] = None, http_client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or get_settings()
        self._http = http_client
        self._owns_http = http_client is None

    async def aclose(self):
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def fetch(self, name: str) -> Optional[Dict[str, Any]]:
        s = self.settings
        if not s.registry_lookups:
            return None
        if self._http is None:
            self._http = httpx.AsyncClient(follow_redirects=True, headers={"User-Agent": USER_AGENT})
        url = s.registry_url_template.format(name=name)
        try:
            r = await self._http.get(url, timeout=s.registry_timeout_seconds)
            if r.status_code >= 400:
                log.debug(f"Registry lookup for {name} returned {r.status_code}")
                return None
            doc = r.json()
        except (httpx.HTTPError, ValueError) as e:
            log.debug(f"Registry lookup for {name} failed: {e!r}")
            return None
        if not isinstance(doc, dict):
            return None
        # crates.io nests the package document under "crate"
        inner = doc.get("crate")
        return inner if isinstance(inner, dict) else doc
