"""Vision extraction: image in, six-field structured result out."""

from __future__ import annotations

import json
from typing import Any, Dict, Optional

from ..domain.models import EXTRACTION_KEYS, ExtractionResult, PipelineRequest
from ..errors import MalformedResponse, PreconditionNotMet
from ..gemini.client import GeminiClient, response_text
from ..logging import get_logger

LOG = get_logger("orchestrator-extract")


EXTRACTION_INSTRUCTION = (
    "Extract the text from the image, write a title in the original language, and then "
    "translate both the text and the title into English. Also identify the type of content "
    '(for example "recipe", "shopping list", "document") and suggest, in English, an art '
    "style for generating an AI image relevant to the content. Return everything as a JSON "
    "object with the keys: " + ", ".join(f'"{k}"' for k in EXTRACTION_KEYS) + ". "
    "Make sure the JSON is valid."
)


def build_extraction_payload(image: PipelineRequest, *, instruction: str = EXTRACTION_INSTRUCTION) -> Dict[str, Any]:
    return {
        "contents": [
            {
                "role": "user",
                "parts": [
                    {"text": instruction},
                    {"inlineData": {"mimeType": image.mime_type, "data": image.data}},
                ],
            }
        ],
        "generationConfig": {"responseMimeType": "application/json"},
    }


def parse_extraction_text(text: str) -> ExtractionResult:
    try:
        parsed = json.loads(text)
    except (TypeError, ValueError) as exc:
        LOG.debug(f"Extraction JSON parse failed (first 500 chars: {str(text)[:500]!r})")
        raise MalformedResponse(f"Extraction response is not valid JSON: {exc}") from exc
    return ExtractionResult.from_payload(parsed)


def extract_content(
    image: Optional[PipelineRequest],
    api_key: str,
    *,
    client: GeminiClient,
) -> ExtractionResult:
    """Run the vision call and return the parsed result.

    Raises PreconditionNotMet before any I/O when the image or key is missing.
    Network, upstream, rate-limit and parse errors propagate to the caller.
    """
    if image is None or not image.data:
        LOG.error("No image to analyze.")
        raise PreconditionNotMet("No image to analyze")
    if not api_key:
        LOG.error("No API key configured.")
        raise PreconditionNotMet("An API key is required")

    LOG.info(f"Analyzing image ({image.mime_type}, {len(image.data)} base64 chars) with {client.model}")
    body = client.generate(build_extraction_payload(image))
    result = parse_extraction_text(response_text(body))
    LOG.info(f"Extraction succeeded: contentType={result.content_type!r}, title={result.original_title!r}")
    return result
