import base64
import threading

import pytest
import requests

from invoice_recon.llm_client import DEFAULT_TIMEOUT, ErrorKind, GeminiClient, ServiceError

from fakes import VALID_KEY

ENVELOPE = {"candidates": [{"content": {"parts": [{"text": "{\"products\": []}"}]}}]}


class StubResponse:
    def __init__(self, status_code=200, payload=ENVELOPE, text="raw body"):
        self.status_code = status_code
        self.ok = status_code < 400
        self.text = text
        self._payload = payload

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class StubSession:
    """Records posts and replies with a canned response, or raises `error`."""

    def __init__(self, response=None, error=None):
        self.response = response or StubResponse()
        self.error = error
        self.posts = []

    def post(self, url, json=None, headers=None, timeout=None):
        self.posts.append({"url": url, "json": json, "headers": headers, "timeout": timeout})
        if self.error is not None:
            raise self.error
        return self.response


def _client(session):
    return GeminiClient(VALID_KEY, base_url="https://x/", session=session)


def test_generate_content_request_shape():
    session = StubSession()
    text = _client(session).generate_content("m", "extract", data=b"%PDF", mime_type="application/pdf",
                                             api_version="v1beta")

    assert text == "{\"products\": []}"
    post = session.posts[0]
    assert post["url"] == "https://x/v1beta/models/m:generateContent"
    assert post["headers"] == {"x-goog-api-key": VALID_KEY}
    assert VALID_KEY not in post["url"]
    assert post["timeout"] == DEFAULT_TIMEOUT
    parts = post["json"]["contents"][0]["parts"]
    assert parts[0] == {"text": "extract"}
    assert parts[1]["inlineData"]["mimeType"] == "application/pdf"
    assert base64.b64decode(parts[1]["inlineData"]["data"]) == b"%PDF"
    assert post["json"]["generationConfig"] == {"temperature": 0.2}


def test_text_only_call_has_no_inline_data():
    session = StubSession()
    _client(session).generate_content("m", "hello", timeout=5)
    assert session.posts[0]["json"]["contents"][0]["parts"] == [{"text": "hello"}]
    assert session.posts[0]["timeout"] == 5
    assert session.posts[0]["url"].endswith("/v1/models/m:generateContent")


@pytest.mark.parametrize("status,kind", [
    (404, ErrorKind.MODEL_NOT_FOUND),
    (403, ErrorKind.AUTH),
    (429, ErrorKind.RATE_LIMITED),
    (503, ErrorKind.SERVER),
    (400, ErrorKind.BAD_REQUEST),
])
def test_http_errors_are_classified(status, kind):
    session = StubSession(StubResponse(status_code=status, text="nope"))
    with pytest.raises(ServiceError) as info:
        _client(session).generate_content("m", "p")
    assert info.value.kind is kind
    assert info.value.status == status


def test_transport_failure():
    session = StubSession(error=requests.ConnectionError("refused"))
    with pytest.raises(ServiceError) as info:
        _client(session).generate_content("m", "p")
    assert info.value.kind is ErrorKind.TRANSPORT
    assert info.value.status is None


def test_non_json_body_is_invalid_response():
    session = StubSession(StubResponse(payload=ValueError("bad json")))
    with pytest.raises(ServiceError) as info:
        _client(session).generate_content("m", "p")
    assert info.value.kind is ErrorKind.INVALID_RESPONSE


def test_unexpected_envelope_returns_raw_text():
    session = StubSession(StubResponse(payload={"promptFeedback": {}}, text="{\"invoices\": []}"))
    assert _client(session).generate_content("m", "p") == "{\"invoices\": []}"


def test_injected_session_is_shared():
    session = StubSession()
    client = _client(session)
    seen = []
    worker = threading.Thread(target=lambda: seen.append(client.session))
    worker.start()
    worker.join()
    assert seen == [session]
    assert client.session is session


def test_default_session_is_per_thread():
    client = GeminiClient(VALID_KEY)
    main_session = client.session
    assert client.session is main_session
    assert isinstance(main_session, requests.Session)

    seen = []
    worker = threading.Thread(target=lambda: seen.extend([client.session, client.session]))
    worker.start()
    worker.join()
    assert seen[0] is seen[1]
    assert seen[0] is not main_session
