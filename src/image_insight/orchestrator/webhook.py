"""Forward extraction results to the user's webhook."""

from __future__ import annotations

from typing import Callable, Optional

import requests

from ..domain.models import ExtractionResult
from ..errors import NetworkError, PreconditionNotMet, UpstreamError
from ..logging import get_logger
from .state import WebhookState, WebhookStatus

LOG = get_logger("orchestrator-webhook")

MSG_NOT_CONFIGURED = "No webhook URL is configured."
MSG_SENDING = "Sending data to webhook..."
MSG_SUCCESS = "Data sent to webhook successfully."


class WebhookDispatcher:
    """POST a result once to the configured URL and track a status message.

    The URL is read through ``url_source`` at dispatch time so configuration
    updates apply to the next dispatch without rebuilding the dispatcher.
    """

    def __init__(
        self,
        url_source: Callable[[], str],
        *,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._url_source = url_source
        self.timeout = int(timeout)
        self.s = session or requests.Session()
        self.status = WebhookStatus()

    def reset(self) -> None:
        self.status = WebhookStatus()

    def _set(self, state: WebhookState, message: str) -> None:
        self.status = WebhookStatus(state=state, message=message)

    def dispatch(self, result: ExtractionResult) -> None:
        url = (self._url_source() or "").strip()
        if not url:
            self._set(WebhookState.FAILED, MSG_NOT_CONFIGURED)
            LOG.warning("Webhook dispatch skipped: no URL configured")
            raise PreconditionNotMet("No webhook URL is configured")

        self._set(WebhookState.SENDING, MSG_SENDING)
        LOG.info(f"POST webhook: {url}")
        try:
            r = self.s.post(
                url,
                json=result.to_dict(),
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except (requests.RequestException, ValueError) as exc:
            # urllib3 reports some unusable hosts as a bare ValueError (LocationParseError)
            self._set(WebhookState.FAILED, f"Network error while sending to webhook: {exc}")
            LOG.error(f"Error sending to webhook: {exc}")
            raise NetworkError(f"Webhook request failed: {exc}") from exc

        if 200 <= r.status_code < 300:
            self._set(WebhookState.SUCCESS, MSG_SUCCESS)
            LOG.info(f"Webhook accepted payload (HTTP {r.status_code})")
            return

        self._set(
            WebhookState.FAILED,
            f"Failed to send data to webhook. Status code: {r.status_code}",
        )
        LOG.error(f"Webhook HTTP {r.status_code}: {(r.text or '')[:500]}")
        raise UpstreamError(f"Webhook returned HTTP {r.status_code}", status_code=r.status_code)
