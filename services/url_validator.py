"""Reading URL validation — strips hallucinated or dead links.

HEAD first (cheap), GET fallback for hosts that reject HEAD.  Academic
sites often answer 403 to bots; that still proves the page exists.
"""

from __future__ import annotations

import logging
from enum import Enum
from urllib.parse import urlparse

import httpx

from config.settings import get_settings

logger = logging.getLogger(__name__)

_USER_AGENT = "Mozilla/5.0 (compatible; SyllabindBot/1.0)"


class ProbeResult(str, Enum):
    OK = "ok"  # 2xx
    EXISTS = "exists"  # 403: restricted but present
    REJECTED = "rejected"  # 405/406/5xx/network: retry with GET
    NOT_FOUND = "not_found"  # other 4xx


def classify_status(status_code: int) -> ProbeResult:
    if 200 <= status_code < 300:
        return ProbeResult.OK
    if status_code == 403:
        return ProbeResult.EXISTS
    if status_code in (405, 406) or status_code >= 500:
        return ProbeResult.REJECTED
    return ProbeResult.NOT_FOUND


def is_well_formed(url: str) -> bool:
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme in ("http", "https") and bool(parsed.netloc)


class UrlValidator:
    """Async link checker sharing one ``httpx.AsyncClient`` pool."""

    def __init__(self, client: httpx.AsyncClient | None = None, timeout: float | None = None) -> None:
        self._timeout = timeout if timeout is not None else get_settings().url_validation_timeout
        self._http = client

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout),
                follow_redirects=True,
                headers={"User-Agent": _USER_AGENT},
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=5),
            )
        return self._http

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    async def _probe(self, url: str, method: str) -> ProbeResult:
        try:
            response = await self._ensure_client().request(method, url)
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %s", method, url, exc)
            return ProbeResult.REJECTED
        return classify_status(response.status_code)

    async def validate(self, url: str) -> bool:
        """True when ``url`` is well formed and reachable (or restricted but present)."""
        if not is_well_formed(url):
            return False

        head = await self._probe(url, "HEAD")
        if head in (ProbeResult.OK, ProbeResult.EXISTS):
            return True
        if head is ProbeResult.NOT_FOUND:
            return False

        get = await self._probe(url, "GET")
        return get in (ProbeResult.OK, ProbeResult.EXISTS)


# ── Module-level singleton ───────────────────────────────────

_validator: UrlValidator | None = None


def get_url_validator() -> UrlValidator:
    global _validator
    if _validator is None:
        _validator = UrlValidator()
    return _validator


async def close_url_validator() -> None:
    """Close the shared pool (FastAPI lifespan shutdown)."""
    global _validator
    if _validator is not None:
        await _validator.close()
        _validator = None
