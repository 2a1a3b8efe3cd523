"""Vision-model collaborators: (image bytes, media type, prompt) -> raw text.

Every client raises CollaboratorError instead of returning empty text, and
CredentialsExpiredError when the backend rejects the credentials.
"""

from __future__ import annotations

import base64
import time
from typing import Any, Dict, List, Optional, Protocol

import httpx
import requests
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from ..config import AppConfig
from ..exceptions import CollaboratorError, CredentialsExpiredError, is_credentials_expired
from ..logging import get_logger

LOG = get_logger("vision")


class VisionModel(Protocol):
    def __call__(self, image: bytes, media_type: str, prompt: str) -> str:
        ...


def _b64(image: bytes) -> str:
    return base64.b64encode(image).decode("ascii")


def _data_url(image: bytes, media_type: str) -> str:
    return f"data:{media_type};base64,{_b64(image)}"


def _fail(message: str, *, status_code: Optional[int] = None) -> CollaboratorError:
    if status_code == 401 or is_credentials_expired(message):
        return CredentialsExpiredError(message)
    return CollaboratorError(message)


def _message_text(content: Any) -> str:
    """Chat message content may be a string or a list of typed parts."""
    if isinstance(content, str):
        return content.strip()
    if isinstance(content, list):
        parts = [p.get("text") or "" for p in content if isinstance(p, dict)]
        return "\n".join(parts).strip()
    return ""


class OpenRouterVisionClient:
    """Thin wrapper around OpenRouter chat completions with helpful logging."""

    ENDPOINT = "https://openrouter.ai/api/v1/chat/completions"

    def __init__(self, config: AppConfig) -> None:
        self.config = config

    def __call__(self, image: bytes, media_type: str, prompt: str) -> str:
        if not self.config.api_key:
            raise CollaboratorError("Missing required environment variable: OPENROUTER_API_KEY")
        payload = {
            "model": self.config.model_name,
            "messages": [
                {
                    "role": "user",
                    "content": [
                        {"type": "image_url", "image_url": {"url": _data_url(image, media_type)}},
                        {"type": "text", "text": prompt},
                    ],
                }
            ],
            "temperature": self.config.temperature,
            "max_tokens": self.config.max_tokens,
        }
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
        }
        t0 = time.perf_counter()
        try:
            resp = requests.post(
                self.ENDPOINT,
                headers=headers,
                json=payload,
                timeout=self.config.timeout_seconds,
            )
        except requests.RequestException as exc:
            LOG.error("OpenRouter request failed: %s", exc)
            raise CollaboratorError(f"OpenRouter request failed: {exc}") from exc

        if resp.status_code >= 400:
            LOG.error("OpenRouter HTTP %s: %s", resp.status_code, resp.text[:500])
            raise _fail(f"OpenRouter HTTP {resp.status_code}: {resp.text[:500]}", status_code=resp.status_code)

        try:
            body = resp.json()
        except ValueError as exc:
            raise CollaboratorError(f"OpenRouter returned non-JSON body: {resp.text[:200]!r}") from exc
        if isinstance(body, dict) and body.get("error"):
            err = body["error"]
            message = err.get("message") if isinstance(err, dict) else str(err)
            code = err.get("code") if isinstance(err, dict) else None
            raise _fail(f"OpenRouter error: {message}", status_code=code if isinstance(code, int) else None)

        choices = (body or {}).get("choices") or []
        if not choices:
            LOG.error("OpenRouter returned no choices: %s", str(body)[:500])
            raise CollaboratorError("OpenRouter response did not include any choices")
        text = _message_text((choices[0].get("message") or {}).get("content"))
        if not text:
            raise CollaboratorError("OpenRouter response did not include text content")
        LOG.info("OpenRouter model=%s answered in %.2fs (%d chars)", self.config.model_name, time.perf_counter() - t0, len(text))
        return text


class OpenAIVisionClient:
    """OpenAI chat completions (vision) through the official SDK."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config

    def _messages(self, image: bytes, media_type: str, prompt: str) -> List[Dict[str, Any]]:
        return [
            {
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": _data_url(image, media_type)}},
                ],
            }
        ]

    def __call__(self, image: bytes, media_type: str, prompt: str) -> str:
        if not self.config.api_key:
            raise CollaboratorError("Missing required environment variable: OPENAI_API_KEY")
        http_client = httpx.Client(
            timeout=httpx.Timeout(connect=10.0, read=float(self.config.timeout_seconds), write=30.0, pool=10.0),
        )
        client = OpenAI(api_key=self.config.api_key, http_client=http_client, max_retries=0)
        try:
            LOG.info("Calling OpenAI Chat Completions (vision) model='%s'", self.config.model_name)
            completion = client.chat.completions.create(
                model=self.config.model_name,
                messages=self._messages(image, media_type, prompt),
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except (APIConnectionError, APITimeoutError) as exc:
            LOG.error("Network/timeout while calling OpenAI: %s", exc)
            raise CollaboratorError(f"OpenAI request failed: {exc}") from exc
        except APIStatusError as exc:
            body = getattr(getattr(exc, "response", None), "text", None)
            LOG.error("OpenAI API returned %s. Body preview: %r", exc.status_code, (body[:300] if body else None))
            raise _fail(f"OpenAI HTTP {exc.status_code}: {exc.message}", status_code=exc.status_code) from exc
        finally:
            http_client.close()

        choice = completion.choices[0] if completion.choices else None
        text = (choice.message.content or "").strip() if choice is not None else ""
        if not text:
            raise CollaboratorError("OpenAI response did not include text content")
        return text


class OllamaVisionClient:
    """Local Ollama /api/chat with an attached image."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config

    @property
    def url(self) -> str:
        base = self.config.ollama_url
        return base if base.endswith("/api/chat") else base.rstrip("/") + "/api/chat"

    def __call__(self, image: bytes, media_type: str, prompt: str) -> str:
        payload = {
            "model": self.config.model_name,
            "messages": [{"role": "user", "content": prompt, "images": [_b64(image)]}],
            "stream": False,
            "options": {
                "num_predict": self.config.max_tokens,
                "temperature": self.config.temperature,
            },
        }
        LOG.debug(f"Ollama URL: {self.url}; model: {self.config.model_name}; media_type: {media_type}")
        try:
            resp = requests.post(self.url, json=payload, timeout=self.config.timeout_seconds)
            resp.raise_for_status()
            body = resp.json()
        except requests.RequestException as exc:
            LOG.error(f"Ollama request failed: {exc}")
            raise CollaboratorError(f"Ollama request failed: {exc}") from exc
        except ValueError as exc:
            raise CollaboratorError(f"Ollama returned non-JSON body: {exc}") from exc

        if body.get("error"):
            LOG.error(f"Ollama error: {body['error']}")
            raise CollaboratorError(f"Ollama error: {body['error']}")
        text = _message_text((body.get("message") or {}).get("content")) or str(body.get("response") or "").strip()
        if not text:
            raise CollaboratorError("Ollama returned empty content")
        return text


_CLIENTS = {
    "openrouter": OpenRouterVisionClient,
    "openai": OpenAIVisionClient,
    "ollama": OllamaVisionClient,
}


def build_vision_client(config: AppConfig) -> VisionModel:
    try:
        cls = _CLIENTS[config.backend]
    except KeyError:
        raise CollaboratorError(f"Unknown vision backend: {config.backend}") from None
    LOG.info(f"Vision backend: {config.backend} ({config.model_name})")
    return cls(config)
