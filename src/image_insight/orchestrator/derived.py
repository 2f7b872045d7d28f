"""Follow-up calls keyed on extracted text: summary and email draft.

Unlike the vision call these use a single attempt with no rate-limit backoff.
"""

from __future__ import annotations

import json
from typing import Any, Dict

from ..domain.models import EmailDraft
from ..errors import MalformedResponse, PreconditionNotMet
from ..gemini.client import GeminiClient, response_text
from ..logging import get_logger

LOG = get_logger("orchestrator-derived")

SUMMARY_INSTRUCTION = "Please summarize the following text concisely:\n\n{text}"

EMAIL_INSTRUCTION = (
    "Write a professional email draft or message based on the following text, using the "
    'text as the main content. The result must be a JSON object with the keys "subject" '
    "and \"body\". Text:\n\n{text}"
)


def _text_payload(prompt: str, *, json_response: bool) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"contents": [{"role": "user", "parts": [{"text": prompt}]}]}
    if json_response:
        payload["generationConfig"] = {"responseMimeType": "application/json"}
    return payload


def _require(text: str, api_key: str) -> None:
    if not text:
        raise PreconditionNotMet("No extracted text available; analyze an image first")
    if not api_key:
        raise PreconditionNotMet("An API key is required")


def summarize(text: str, api_key: str, *, client: GeminiClient) -> str:
    _require(text, api_key)
    LOG.info(f"Requesting summary for {len(text)} characters of text")
    body = client.generate_once(_text_payload(SUMMARY_INSTRUCTION.format(text=text), json_response=False))
    summary = response_text(body)
    LOG.info(f"Received summary with {len(summary)} characters")
    return summary


def draft_email(text: str, api_key: str, *, client: GeminiClient) -> EmailDraft:
    _require(text, api_key)
    LOG.info(f"Requesting email draft for {len(text)} characters of text")
    body = client.generate_once(_text_payload(EMAIL_INSTRUCTION.format(text=text), json_response=True))
    raw = response_text(body)
    try:
        parsed = json.loads(raw)
    except ValueError as exc:
        LOG.debug(f"Email draft JSON parse failed (first 500 chars: {raw[:500]!r})")
        raise MalformedResponse(f"Email draft response is not valid JSON: {exc}") from exc
    draft = EmailDraft.from_payload(parsed)
    LOG.info(f"Received email draft with subject {draft.subject!r}")
    return draft
