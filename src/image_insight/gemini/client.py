from __future__ import annotations

import time
from typing import Any, Callable, Dict, Optional

import requests

from ..errors import MalformedResponse, NetworkError, RateLimitExhausted, UpstreamError
from ..logging import get_logger

MAX_ATTEMPTS = 5
RATE_LIMIT_STATUS = 429


def backoff_delay(attempt: int) -> float:
    """Seconds to wait before retry number ``attempt`` (1-based): 1, 2, 4, 8, ..."""
    if attempt < 1:
        raise ValueError("attempt must be >= 1")
    return float(2 ** (attempt - 1))


def response_text(body: Any) -> str:
    """Return ``candidates[0].content.parts[0].text`` from a generateContent body."""
    try:
        text = body["candidates"][0]["content"]["parts"][0]["text"]
    except (KeyError, IndexError, TypeError) as exc:
        raise MalformedResponse("API response does not contain the expected format") from exc
    if not isinstance(text, str):
        raise MalformedResponse("API response text is not a string")
    return text


class GeminiClient:
    """Thin client for the Gemini generateContent endpoint.

    The API key travels as the ``key`` query parameter. ``generate`` retries
    rate-limited calls with exponential backoff; ``generate_once`` never
    retries. Both map failures onto the pipeline error taxonomy.
    """

    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        base_url: str,
        timeout: int = 120,
        session: Optional[requests.Session] = None,
        sleep: Callable[[float], None] = time.sleep,
        max_attempts: int = MAX_ATTEMPTS,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.base = base_url.rstrip("/")
        self.timeout = int(timeout)
        self.max_attempts = max(1, int(max_attempts))
        self._sleep = sleep
        self.log = get_logger("gemini-client")
        self.s = session or requests.Session()
        self.s.headers.update({"Content-Type": "application/json"})

    # ---------- helpers ----------
    @property
    def url(self) -> str:
        return f"{self.base}/models/{self.model}:generateContent"

    def _post(self, payload: Dict[str, Any]) -> requests.Response:
        try:
            return self.s.post(self.url, params={"key": self.api_key}, json=payload, timeout=self.timeout)
        except requests.RequestException as exc:
            self.log.error(f"Gemini request failed: {exc}")
            raise NetworkError(f"Network error calling Gemini: {exc}") from exc

    def _body(self, r: requests.Response) -> Dict[str, Any]:
        if r.status_code < 200 or r.status_code >= 300:
            preview = (r.text or "")[:500]
            self.log.error(f"Gemini HTTP {r.status_code}: {preview}")
            raise UpstreamError(f"Gemini returned HTTP {r.status_code}", status_code=r.status_code)
        try:
            body = r.json()
        except ValueError as exc:
            raise MalformedResponse("Gemini response body is not JSON") from exc
        if not isinstance(body, dict):
            raise MalformedResponse("Gemini response body is not a JSON object")
        return body

    # ---------- calls ----------
    def generate(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """POST with up to ``max_attempts`` tries while the API answers 429."""
        attempt = 1
        r = self._post(payload)
        while r.status_code == RATE_LIMIT_STATUS:
            if attempt >= self.max_attempts:
                self.log.error(f"Still rate limited after {attempt} attempts; giving up")
                raise RateLimitExhausted(f"Rate limit persisted after {attempt} attempts", attempts=attempt)
            delay = backoff_delay(attempt)
            self.log.warning(f"Rate limited (attempt {attempt}/{self.max_attempts}); retrying in {delay:.0f}s")
            self._sleep(delay)
            attempt += 1
            r = self._post(payload)
        if attempt > 1:
            self.log.info(f"Gemini call succeeded after {attempt} attempts")
        return self._body(r)

    def generate_once(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Single POST; a 429 surfaces as UpstreamError like any other status."""
        return self._body(self._post(payload))
