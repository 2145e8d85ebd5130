from __future__ import annotations

import base64
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import httpx
import openai
import pytest

from vocab_automation.config import CredentialSettings
from vocab_automation.errors import UpstreamCredentialError, UpstreamFailure, ValidationError
from vocab_automation.orchestrator.extraction import (
    ExtractionOrchestrator,
    parse_data_url,
    to_data_url,
)
from vocab_automation.orchestrator.library.constants import MAX_IMAGE_BYTES, VOCABULARY_PROMPT

PNG = b"\x89PNG\r\n\x1a\nfake"
URL = "https://api.openai.com/v1/chat/completions"


class _FakeCompletions:
    def __init__(self, owner: "_FakeClient") -> None:
        self.owner = owner

    def create(self, **kwargs: Any) -> Any:
        self.owner.calls.append(kwargs)
        if self.owner.error is not None:
            raise self.owner.error
        message = SimpleNamespace(content=self.owner.answer)
        return SimpleNamespace(id="cmpl-1", choices=[SimpleNamespace(message=message)], usage=None)


class _FakeClient:
    def __init__(self, answer: Optional[str] = "Haus,house", error: Optional[Exception] = None) -> None:
        self.answer = answer
        self.error = error
        self.calls: List[Dict[str, Any]] = []
        self.keys: List[str] = []
        self.closed = False
        self.chat = SimpleNamespace(completions=_FakeCompletions(self))

    def factory(self, api_key: str) -> "_FakeClient":
        self.keys.append(api_key)
        return self

    def close(self) -> None:
        self.closed = True


def _orchestrator(client: _FakeClient, key: Optional[str] = "sk-test-123456") -> ExtractionOrchestrator:
    return ExtractionOrchestrator(
        CredentialSettings(fallback=key),
        model_name="gpt-test",
        client_factory=client.factory,
    )


def _status_error(cls, status: int):
    response = httpx.Response(status, request=httpx.Request("POST", URL))
    return cls("boom", response=response, body=None)


def test_sends_prompt_and_image_and_returns_text() -> None:
    client = _FakeClient(answer="Haus,house\nBaum,tree")
    text = _orchestrator(client).extract(PNG, "image/png")

    assert text == "Haus,house\nBaum,tree"
    assert client.keys == ["sk-test-123456"]
    assert client.closed
    (call,) = client.calls
    assert call["model"] == "gpt-test"
    content = call["messages"][0]["content"]
    assert content[0] == {"type": "text", "text": VOCABULARY_PROMPT}
    assert content[1]["image_url"]["url"] == to_data_url(PNG, "image/png")


def test_missing_key_fails_before_any_call() -> None:
    client = _FakeClient()
    with pytest.raises(UpstreamCredentialError):
        _orchestrator(client, key=None).extract(PNG, "image/png")
    assert client.keys == []


def test_key_change_applies_to_next_call() -> None:
    client = _FakeClient()
    orch = _orchestrator(client, key="sk-old-000000")
    orch.settings.set("sk-new-111111")
    orch.extract(PNG, "image/png")
    assert client.keys == ["sk-new-111111"]


def test_rejected_key_maps_to_credential_error() -> None:
    client = _FakeClient(error=_status_error(openai.AuthenticationError, 401))
    with pytest.raises(UpstreamCredentialError):
        _orchestrator(client).extract(PNG, "image/png")
    assert client.closed


def test_server_error_maps_to_upstream_failure() -> None:
    client = _FakeClient(error=_status_error(openai.InternalServerError, 500))
    with pytest.raises(UpstreamFailure) as info:
        _orchestrator(client).extract(PNG, "image/png")
    assert info.value.status_code == 500
    assert len(client.calls) == 1


def test_connection_error_maps_to_upstream_failure() -> None:
    client = _FakeClient(error=openai.APIConnectionError(request=httpx.Request("POST", URL)))
    with pytest.raises(UpstreamFailure):
        _orchestrator(client).extract(PNG, "image/png")


def test_empty_answer_is_a_failure() -> None:
    client = _FakeClient(answer="   ")
    with pytest.raises(UpstreamFailure):
        _orchestrator(client).extract(PNG, "image/png")


@pytest.mark.parametrize(
    "image, mime",
    [
        (PNG, "application/pdf"),
        (PNG, ""),
        (b"", "image/png"),
        (b"x" * (MAX_IMAGE_BYTES + 1), "image/jpeg"),
    ],
)
def test_invalid_images_are_rejected_locally(image: bytes, mime: str) -> None:
    client = _FakeClient()
    with pytest.raises(ValidationError):
        _orchestrator(client).extract(image, mime)
    assert client.calls == []


def test_parse_data_url() -> None:
    data_url = "data:image/JPEG;base64," + base64.b64encode(b"abc").decode("ascii")
    assert parse_data_url(data_url) == (b"abc", "image/jpeg")
    with pytest.raises(ValidationError):
        parse_data_url("not a data url")
    with pytest.raises(ValidationError):
        parse_data_url("data:image/png;base64,@@@")
