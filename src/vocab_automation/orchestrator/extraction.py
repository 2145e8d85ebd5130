"""Vision-model extraction of vocabulary CSV from a photographed list."""

from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import time
from typing import Any, Callable, Optional, Tuple

import httpx
from openai import (
    APIConnectionError,
    APIStatusError,
    AuthenticationError,
    OpenAI,
    OpenAIError,
    PermissionDeniedError,
)

from ..config import DEFAULT_MODEL, CredentialSettings
from ..errors import UpstreamCredentialError, UpstreamFailure, ValidationError
from ..logging import get_logger
from .library.constants import MAX_IMAGE_BYTES, VOCABULARY_PROMPT

LOG = get_logger("orchestrator-extraction")

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+);base64,(?P<data>.*)$", re.DOTALL)

MISSING_KEY_MESSAGE = "Bitte konfigurieren Sie zuerst Ihren API-Schlüssel in den Einstellungen."
INVALID_KEY_MESSAGE = "Ungültiger API-Schlüssel. Bitte überprüfen Sie Ihren API-Schlüssel in den Einstellungen."

ClientFactory = Callable[[str], Any]


def to_data_url(image: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(image).decode('ascii')}"


def parse_data_url(data_url: str) -> Tuple[bytes, str]:
    """Split a base64 data URL (as sent by the browser) into bytes and MIME type."""
    match = _DATA_URL_RE.match((data_url or "").strip())
    if not match:
        raise ValidationError("Bitte wählen Sie eine gültige Bilddatei aus.")
    try:
        data = base64.b64decode(match.group("data"), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("Bilddaten sind nicht gültig base64-kodiert.") from exc
    return data, match.group("mime").lower()


def validate_image(image: bytes, mime_type: Optional[str]) -> None:
    if not mime_type or not mime_type.lower().startswith("image/"):
        raise ValidationError("Bitte wählen Sie eine gültige Bilddatei aus.")
    if not image:
        raise ValidationError("Bitte laden Sie ein Bild hoch.")
    if len(image) > MAX_IMAGE_BYTES:
        raise ValidationError(
            f"Das Bild ist zu groß ({len(image) / (1024 * 1024):.1f} MiB, maximal {MAX_IMAGE_BYTES // (1024 * 1024)} MiB)."
        )


class ExtractionOrchestrator:
    """Sends one image plus the fixed vocabulary prompt to an OpenAI vision model.

    The credential comes from the injected settings object on every call, so a
    key changed in the settings screen applies to the next request. Failures
    are not retried.
    """

    def __init__(
        self,
        settings: CredentialSettings,
        *,
        model_name: str = DEFAULT_MODEL,
        base_url: Optional[str] = None,
        prompt: str = VOCABULARY_PROMPT,
        timeout: float = 120.0,
        client_factory: Optional[ClientFactory] = None,
    ) -> None:
        self.settings = settings
        self.model_name = model_name
        self.base_url = base_url
        self.prompt = prompt
        self.timeout = timeout
        self._client_factory = client_factory or self._default_client

    def _default_client(self, api_key: str) -> OpenAI:
        http_client = httpx.Client(
            timeout=httpx.Timeout(connect=10.0, read=self.timeout, write=30.0, pool=10.0),
            limits=httpx.Limits(max_keepalive_connections=5, max_connections=10),
        )
        if (os.environ.get("OPENAI_LOG") or "").lower() == "debug":
            logging.getLogger("httpx").setLevel(logging.DEBUG)
            logging.getLogger("httpcore").setLevel(logging.DEBUG)
        return OpenAI(
            api_key=api_key,
            base_url=self.base_url,
            http_client=http_client,
            max_retries=0,
        )

    def extract(self, image: bytes, mime_type: str) -> str:
        """Return the raw model answer (expected: one `german,english` per line)."""
        validate_image(image, mime_type)
        api_key = self.settings.get()
        if not api_key:
            LOG.error("No extraction API key configured; cannot run extraction")
            raise UpstreamCredentialError(MISSING_KEY_MESSAGE)

        url = to_data_url(image, mime_type)
        LOG.debug(
            "Preparing request: bytes=%d mime=%s (~data URL %.2f MiB) base_url=%s",
            len(image),
            mime_type,
            len(url) / (1024 * 1024),
            self.base_url or "default",
        )
        messages = [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": self.prompt},
                    {"type": "image_url", "image_url": {"url": url}},
                ],
            }
        ]

        client = self._client_factory(api_key)
        t0 = time.perf_counter()
        try:
            LOG.info("Calling OpenAI Chat Completions (vision) model='%s'", self.model_name)
            completion = client.chat.completions.create(
                model=self.model_name,
                messages=messages,
                timeout=self.timeout,
            )
        except (AuthenticationError, PermissionDeniedError) as e:
            LOG.error("OpenAI rejected the API key (%s)", getattr(e, "status_code", "?"))
            raise UpstreamCredentialError(INVALID_KEY_MESSAGE) from e
        except APIConnectionError as e:
            LOG.error("Network/timeout while calling OpenAI: %s", e)
            raise UpstreamFailure(f"Fehler bei der Verarbeitung: {e}") from e
        except APIStatusError as e:
            body = getattr(getattr(e, "response", None), "text", None)
            LOG.error("OpenAI API returned %s. Body preview: %r", e.status_code, (body[:300] if body else None))
            raise UpstreamFailure(f"Fehler bei der Verarbeitung: {e.message}", status_code=e.status_code) from e
        except OpenAIError as e:
            LOG.error("OpenAI extraction failed: %s", e)
            raise UpstreamFailure(f"Fehler bei der Verarbeitung: {e}") from e
        finally:
            close = getattr(client, "close", None)
            if callable(close):
                close()

        choice = completion.choices[0] if getattr(completion, "choices", None) else None
        text = choice.message.content if choice is not None and getattr(choice, "message", None) else None
        usage = getattr(completion, "usage", None)
        usage_dict = {k: getattr(usage, k, None) if usage else None for k in ("prompt_tokens", "completion_tokens", "total_tokens")}
        LOG.info(
            "Chat completion finished in %.2fs id=%s usage=%s",
            time.perf_counter() - t0,
            getattr(completion, "id", None),
            usage_dict,
        )
        if not text or not text.strip():
            raise UpstreamFailure("Fehler bei der Verarbeitung: leere Antwort vom Modell.")
        return text
