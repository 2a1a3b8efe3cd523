import pytest
import requests

from receipt_automation.config import AppConfig
from receipt_automation.exceptions import CollaboratorError, CredentialsExpiredError, is_credentials_expired
from receipt_automation.pipeline import vision
from receipt_automation.pipeline.vision import (
    OllamaVisionClient,
    OpenAIVisionClient,
    OpenRouterVisionClient,
    build_vision_client,
)


class _Response:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")


def _config(backend="openrouter", **kwargs):
    defaults = dict(backend=backend, model_name="test-model", api_key="sk-test")
    defaults.update(kwargs)
    return AppConfig(**defaults)


def _patch_post(monkeypatch, response):
    calls = []

    def fake_post(url, **kwargs):
        calls.append((url, kwargs))
        if isinstance(response, Exception):
            raise response
        return response

    monkeypatch.setattr(vision.requests, "post", fake_post)
    return calls


def test_openrouter_success(monkeypatch):
    payload = {"choices": [{"message": {"content": '  {"a": 1}  '}}]}
    calls = _patch_post(monkeypatch, _Response(200, payload))
    text = OpenRouterVisionClient(_config())(b"img", "image/png", "prompt")
    assert text == '{"a": 1}'
    url, kwargs = calls[0]
    assert url == OpenRouterVisionClient.ENDPOINT
    assert kwargs["headers"]["Authorization"] == "Bearer sk-test"
    content = kwargs["json"]["messages"][0]["content"]
    assert content[0]["image_url"]["url"] == "data:image/png;base64,aW1n"
    assert content[1]["text"] == "prompt"


def test_openrouter_content_parts(monkeypatch):
    payload = {"choices": [{"message": {"content": [{"type": "text", "text": "{}"}]}}]}
    _patch_post(monkeypatch, _Response(200, payload))
    assert OpenRouterVisionClient(_config())(b"img", "image/png", "p") == "{}"


def test_openrouter_unauthorized_is_credentials_error(monkeypatch):
    _patch_post(monkeypatch, _Response(401, None, "invalid key"))
    with pytest.raises(CredentialsExpiredError):
        OpenRouterVisionClient(_config())(b"img", "image/png", "p")


def test_openrouter_expired_token_message(monkeypatch):
    _patch_post(monkeypatch, _Response(500, None, "ExpiredToken: the security token included in the request is expired"))
    with pytest.raises(CredentialsExpiredError):
        OpenRouterVisionClient(_config())(b"img", "image/png", "p")


def test_openrouter_server_error(monkeypatch):
    _patch_post(monkeypatch, _Response(500, None, "internal error"))
    with pytest.raises(CollaboratorError) as excinfo:
        OpenRouterVisionClient(_config())(b"img", "image/png", "p")
    assert not isinstance(excinfo.value, CredentialsExpiredError)
    assert "HTTP 500" in str(excinfo.value)


def test_openrouter_network_error(monkeypatch):
    _patch_post(monkeypatch, requests.ConnectionError("refused"))
    with pytest.raises(CollaboratorError, match="request failed"):
        OpenRouterVisionClient(_config())(b"img", "image/png", "p")


@pytest.mark.parametrize(
    "payload",
    [
        {"choices": []},
        {"choices": [{"message": {"content": "   "}}]},
        {"error": {"message": "model overloaded"}},
    ],
)
def test_openrouter_unusable_body(monkeypatch, payload):
    _patch_post(monkeypatch, _Response(200, payload))
    with pytest.raises(CollaboratorError):
        OpenRouterVisionClient(_config())(b"img", "image/png", "p")


def test_missing_api_key_fails_before_any_request(monkeypatch):
    calls = _patch_post(monkeypatch, _Response(200, {}))
    with pytest.raises(CollaboratorError, match="OPENROUTER_API_KEY"):
        OpenRouterVisionClient(_config(api_key=None))(b"img", "image/png", "p")
    with pytest.raises(CollaboratorError, match="OPENAI_API_KEY"):
        OpenAIVisionClient(_config("openai", api_key=None))(b"img", "image/png", "p")
    assert calls == []


def test_ollama_success(monkeypatch):
    calls = _patch_post(monkeypatch, _Response(200, {"message": {"content": '{"a": 1}'}}))
    client = OllamaVisionClient(_config("ollama", api_key=None, ollama_url="http://gpu:11434/"))
    assert client(b"img", "image/jpeg", "prompt") == '{"a": 1}'
    url, kwargs = calls[0]
    assert url == "http://gpu:11434/api/chat"
    assert kwargs["json"]["messages"][0]["images"] == ["aW1n"]
    assert kwargs["json"]["stream"] is False


def test_ollama_error_body(monkeypatch):
    _patch_post(monkeypatch, _Response(200, {"error": "model not found"}))
    with pytest.raises(CollaboratorError, match="model not found"):
        OllamaVisionClient(_config("ollama"))(b"img", "image/jpeg", "p")


def test_ollama_http_error(monkeypatch):
    _patch_post(monkeypatch, _Response(500, {}))
    with pytest.raises(CollaboratorError):
        OllamaVisionClient(_config("ollama"))(b"img", "image/jpeg", "p")


def test_build_vision_client():
    assert isinstance(build_vision_client(_config("openrouter")), OpenRouterVisionClient)
    assert isinstance(build_vision_client(_config("openai")), OpenAIVisionClient)
    assert isinstance(build_vision_client(_config("ollama")), OllamaVisionClient)
    with pytest.raises(CollaboratorError):
        build_vision_client(_config("bedrock"))


@pytest.mark.parametrize(
    "message, expected",
    [
        ("ExpiredTokenException: The security token included in the request is expired", True),
        ("Your session has expired. Please reauthenticate.", True),
        ("InvalidClientTokenId", True),
        ("HTTP 500: internal error", False),
        ("", False),
    ],
)
def test_is_credentials_expired(message, expected):
    assert is_credentials_expired(message) is expected
