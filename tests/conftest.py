import io
import json
import os
import sys
import threading
from typing import Any, Dict, List, Optional

import pytest
import requests
from PIL import Image

# Ensure the repository's src/ is importable
sys.path.insert(0, os.path.abspath("src"))

from image_insight.config import Settings


class FakeResponse:
    def __init__(self, status_code: int = 200, body: Any = None, text: Optional[str] = None) -> None:
        self.status_code = status_code
        self._body = body
        self.text = text if text is not None else (json.dumps(body) if body is not None else "")

    def json(self) -> Any:
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body


class FakeSession:
    """Stands in for requests.Session: replays queued responses, records calls."""

    def __init__(self, responses: Optional[List[Any]] = None) -> None:
        self.headers: Dict[str, str] = {}
        self.responses: List[Any] = list(responses or [])
        self.calls: List[Dict[str, Any]] = []

    def queue(self, *responses: Any) -> "FakeSession":
        self.responses.extend(responses)
        return self

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append({"url": url, **kwargs})
        if not self.responses:
            raise AssertionError(f"Unexpected POST to {url}")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


class GatedSession(FakeSession):
    """FakeSession whose POSTs at the given call indexes block until ``release`` is set.

    The call is recorded and its response taken before blocking, so other
    threads see the queue in call order.
    """

    def __init__(self, responses: Optional[List[Any]] = None, gate: Any = (0,)) -> None:
        super().__init__(responses)
        self.gate = set(gate)
        self.entered = threading.Event()
        self.release = threading.Event()

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        gated = len(self.calls) in self.gate
        response = super().post(url, **kwargs)
        if gated:
            self.entered.set()
            if not self.release.wait(5):
                raise AssertionError(f"Gated POST to {url} was never released")
        return response


def gemini_body(text: str) -> Dict[str, Any]:
    return {"candidates": [{"content": {"parts": [{"text": text}], "role": "model"}}]}


RECEIPT_RESULT = {
    "originalTitle": "Recibo",
    "originalText": "Pan 1,20\nLeche 0,99\nTotal 2,19",
    "englishTitle": "Receipt",
    "englishText": "Bread 1.20\nMilk 0.99\nTotal 2.19",
    "contentType": "receipt",
    "aiArtStyle": "Minimalist flat illustration of a grocery receipt",
}


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        gemini_model="gemini-test",
        gemini_base_url="https://gemini.test/v1beta",
        app_id="test-app",
        http_timeout=5,
        store_path=str(tmp_path / "var" / "documents" / "store.sqlite3"),
        root_dir=str(tmp_path),
    )


@pytest.fixture
def png_bytes() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), color=(200, 10, 10)).save(buf, format="PNG")
    return buf.getvalue()


@pytest.fixture
def network_down() -> requests.ConnectionError:
    return requests.ConnectionError("connection refused")
