import json

import pytest

from conftest import RECEIPT_RESULT, FakeResponse, FakeSession, gemini_body
from image_insight.domain.models import EmailDraft, ExtractionResult, PipelineRequest
from image_insight.errors import MalformedResponse, PreconditionNotMet, UpstreamError
from image_insight.gemini.client import GeminiClient
from image_insight.orchestrator.derived import draft_email, summarize
from image_insight.orchestrator.extract import extract_content


def _client(session, sleeps=None):
    return GeminiClient(
        "VALID",
        model="gemini-test",
        base_url="https://gemini.test/v1beta",
        session=session,
        sleep=(sleeps if sleeps is not None else []).append,
    )


IMAGE = PipelineRequest(data="aGVsbG8=", mime_type="image/jpeg")


def test_extract_builds_vision_request_and_parses_result():
    session = FakeSession([FakeResponse(200, gemini_body(json.dumps(RECEIPT_RESULT)))])
    result = extract_content(IMAGE, "VALID", client=_client(session))

    assert result.to_dict() == RECEIPT_RESULT
    payload = session.calls[0]["json"]
    assert payload["generationConfig"] == {"responseMimeType": "application/json"}
    parts = payload["contents"][0]["parts"]
    assert payload["contents"][0]["role"] == "user"
    assert "originalTitle" in parts[0]["text"]
    assert parts[1] == {"inlineData": {"mimeType": "image/jpeg", "data": "aGVsbG8="}}


@pytest.mark.parametrize("image,key", [(None, "VALID"), (IMAGE, ""), (PipelineRequest(data=""), "VALID")])
def test_extract_preconditions_block_network(image, key):
    session = FakeSession()
    with pytest.raises(PreconditionNotMet):
        extract_content(image, key, client=_client(session))
    assert session.calls == []


def test_extract_rejects_non_json_inner_text():
    session = FakeSession([FakeResponse(200, gemini_body("Sorry, I cannot read this image."))])
    with pytest.raises(MalformedResponse):
        extract_content(IMAGE, "VALID", client=_client(session))


def test_extract_rejects_missing_fields():
    partial = dict(RECEIPT_RESULT)
    del partial["aiArtStyle"]
    session = FakeSession([FakeResponse(200, gemini_body(json.dumps(partial)))])
    with pytest.raises(MalformedResponse):
        extract_content(IMAGE, "VALID", client=_client(session))


def test_extract_retries_rate_limits():
    session = FakeSession([FakeResponse(429), FakeResponse(200, gemini_body(json.dumps(RECEIPT_RESULT)))])
    sleeps = []
    extract_content(IMAGE, "VALID", client=_client(session, sleeps))
    assert len(session.calls) == 2
    assert sleeps == [1.0]


def test_summary_uses_text_verbatim():
    session = FakeSession([FakeResponse(200, gemini_body("  Bread and milk for 2,19.\n"))])
    summary = summarize("Pan 1,20", "VALID", client=_client(session))

    assert summary == "  Bread and milk for 2,19.\n"
    payload = session.calls[0]["json"]
    assert "generationConfig" not in payload
    assert payload["contents"][0]["parts"][0]["text"].endswith("Pan 1,20")


def test_email_draft_parses_subject_and_body():
    draft_json = json.dumps({"subject": "Receipt", "body": "Hello,\nattached the receipt."})
    session = FakeSession([FakeResponse(200, gemini_body(draft_json))])
    draft = draft_email("Pan 1,20", "VALID", client=_client(session))

    assert draft == EmailDraft(subject="Receipt", body="Hello,\nattached the receipt.")
    assert session.calls[0]["json"]["generationConfig"] == {"responseMimeType": "application/json"}


def test_email_draft_malformed_json():
    session = FakeSession([FakeResponse(200, gemini_body("{subject: nope"))])
    with pytest.raises(MalformedResponse):
        draft_email("Pan", "VALID", client=_client(session))


def test_derived_calls_do_not_back_off():
    session = FakeSession([FakeResponse(429), FakeResponse(429)])
    sleeps = []
    with pytest.raises(UpstreamError):
        summarize("Pan", "VALID", client=_client(session, sleeps))
    with pytest.raises(UpstreamError):
        draft_email("Pan", "VALID", client=_client(session, sleeps))
    assert len(session.calls) == 2
    assert sleeps == []


def test_derived_calls_need_text_and_key():
    session = FakeSession()
    with pytest.raises(PreconditionNotMet):
        summarize("", "VALID", client=_client(session))
    with pytest.raises(PreconditionNotMet):
        draft_email("Pan", "", client=_client(session))
    assert session.calls == []


def test_extraction_result_is_frozen():
    result = ExtractionResult.from_payload(RECEIPT_RESULT)
    with pytest.raises(Exception):
        result.original_title = "changed"
