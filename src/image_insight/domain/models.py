from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Tuple

from ..errors import MalformedResponse


# camelCase keys as they travel over the wire / into the webhook body
EXTRACTION_KEYS: Tuple[str, ...] = (
    "originalTitle",
    "originalText",
    "englishTitle",
    "englishText",
    "contentType",
    "aiArtStyle",
)

FIELD_MAPPING_KEYS: Tuple[str, ...] = EXTRACTION_KEYS + (
    "summary",
    "emailSubject",
    "emailBody",
)


@dataclass(frozen=True)
class ExtractionResult:
    original_title: str
    original_text: str
    english_title: str
    english_text: str
    content_type: str
    ai_art_style: str

    @classmethod
    def from_payload(cls, payload: Any) -> "ExtractionResult":
        """Build from the model's JSON object; every key must be a string."""
        if not isinstance(payload, dict):
            raise MalformedResponse("Extraction payload must be a JSON object")
        values = []
        for key in EXTRACTION_KEYS:
            value = payload.get(key)
            if not isinstance(value, str):
                raise MalformedResponse(f"Extraction payload field {key!r} missing or not a string")
            values.append(value)
        return cls(*values)

    def to_dict(self) -> Dict[str, str]:
        return {
            "originalTitle": self.original_title,
            "originalText": self.original_text,
            "englishTitle": self.english_title,
            "englishText": self.english_text,
            "contentType": self.content_type,
            "aiArtStyle": self.ai_art_style,
        }


@dataclass(frozen=True)
class EmailDraft:
    subject: str
    body: str

    @classmethod
    def from_payload(cls, payload: Any) -> "EmailDraft":
        if not isinstance(payload, dict):
            raise MalformedResponse("Email draft payload must be a JSON object")
        subject = payload.get("subject")
        body = payload.get("body")
        if not isinstance(subject, str) or not isinstance(body, str):
            raise MalformedResponse("Email draft needs string 'subject' and 'body'")
        return cls(subject=subject, body=body)

    def to_dict(self) -> Dict[str, str]:
        return {"subject": self.subject, "body": self.body}


def _blank_mappings() -> Dict[str, str]:
    return {key: "" for key in FIELD_MAPPING_KEYS}


def normalize_field_mappings(raw: Any) -> Dict[str, str]:
    """Return all nine mapping keys; unknown keys are dropped, gaps become ''."""
    mappings = _blank_mappings()
    if isinstance(raw, Mapping):
        for key in FIELD_MAPPING_KEYS:
            value = raw.get(key)
            if isinstance(value, str):
                mappings[key] = value
    return mappings


@dataclass
class AppConfiguration:
    api_key: str = ""
    google_sheet_id: str = ""
    sheet_name: str = ""
    field_mappings: Dict[str, str] = field(default_factory=_blank_mappings)
    webhook_url: str = ""

    @classmethod
    def from_document(cls, data: Mapping[str, Any]) -> "AppConfiguration":
        def _s(key: str) -> str:
            value = data.get(key)
            return value if isinstance(value, str) else ""

        return cls(
            api_key=_s("apiKey"),
            google_sheet_id=_s("googleSheetId"),
            sheet_name=_s("sheetName"),
            field_mappings=normalize_field_mappings(data.get("fieldMappings")),
            webhook_url=_s("webhookUrl"),
        )

    def to_document(self) -> Dict[str, Any]:
        return {
            "apiKey": self.api_key,
            "googleSheetId": self.google_sheet_id,
            "sheetName": self.sheet_name,
            "fieldMappings": normalize_field_mappings(self.field_mappings),
            "webhookUrl": self.webhook_url,
        }

    def redacted(self) -> Dict[str, Any]:
        """Document view with the API key masked, for logs and CLI output.

        The HTTP API returns the full document so the settings form can edit the key.
        """
        doc = self.to_document()
        if self.api_key:
            doc["apiKey"] = f"{self.api_key[:4]}****" if len(self.api_key) > 8 else "****"
        return doc


@dataclass(frozen=True)
class PipelineRequest:
    data: str  # base64, no data: prefix
    mime_type: str = "image/png"
