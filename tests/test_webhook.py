import pytest
from urllib3.exceptions import LocationParseError

from conftest import RECEIPT_RESULT, FakeResponse, FakeSession
from image_insight.domain.models import ExtractionResult
from image_insight.errors import NetworkError, PreconditionNotMet, UpstreamError
from image_insight.orchestrator.state import WebhookState
from image_insight.orchestrator.webhook import MSG_NOT_CONFIGURED, MSG_SUCCESS, WebhookDispatcher

RESULT = ExtractionResult.from_payload(RECEIPT_RESULT)


def test_missing_url_fails_without_request():
    session = FakeSession()
    dispatcher = WebhookDispatcher(lambda: "", session=session)
    with pytest.raises(PreconditionNotMet):
        dispatcher.dispatch(RESULT)
    assert dispatcher.status.state is WebhookState.FAILED
    assert dispatcher.status.message == MSG_NOT_CONFIGURED
    assert session.calls == []


def test_posts_result_verbatim_once():
    session = FakeSession([FakeResponse(204)])
    dispatcher = WebhookDispatcher(lambda: "https://hooks.test/in", session=session)
    dispatcher.dispatch(RESULT)

    assert dispatcher.status.state is WebhookState.SUCCESS
    assert dispatcher.status.message == MSG_SUCCESS
    assert len(session.calls) == 1
    call = session.calls[0]
    assert call["url"] == "https://hooks.test/in"
    assert call["json"] == RECEIPT_RESULT
    assert call["headers"]["Content-Type"] == "application/json"


def test_non_2xx_reports_status_code():
    session = FakeSession([FakeResponse(500, text="down"), FakeResponse(200)])
    dispatcher = WebhookDispatcher(lambda: "https://hooks.test/in", session=session)
    with pytest.raises(UpstreamError):
        dispatcher.dispatch(RESULT)
    assert dispatcher.status.state is WebhookState.FAILED
    assert "500" in dispatcher.status.message
    assert len(session.calls) == 1


def test_network_error_reports_reason(network_down):
    session = FakeSession([network_down])
    dispatcher = WebhookDispatcher(lambda: "https://hooks.test/in", session=session)
    with pytest.raises(NetworkError):
        dispatcher.dispatch(RESULT)
    assert dispatcher.status.state is WebhookState.FAILED
    assert "connection refused" in dispatcher.status.message


def test_url_is_read_at_dispatch_time():
    urls = {"current": ""}
    session = FakeSession([FakeResponse(200)])
    dispatcher = WebhookDispatcher(lambda: urls["current"], session=session)
    urls["current"] = "https://hooks.test/late"
    dispatcher.dispatch(RESULT)
    assert session.calls[0]["url"] == "https://hooks.test/late"


def test_unparseable_host_is_reported_as_network_error():
    url = "http://" + "a" * 70 + ".com/hook"
    session = FakeSession([LocationParseError(url)])
    dispatcher = WebhookDispatcher(lambda: url, session=session)
    with pytest.raises(NetworkError):
        dispatcher.dispatch(RESULT)
    assert dispatcher.status.state is WebhookState.FAILED
    assert dispatcher.status.message.startswith("Network error while sending to webhook:")
