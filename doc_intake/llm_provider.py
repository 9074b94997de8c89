from __future__ import annotations

import json
import logging
from typing import Any
from urllib import error, request

from doc_intake.errors import ExternalServiceFailure

logger = logging.getLogger(__name__)


def _post_json(
    url: str,
    payload: dict[str, Any],
    headers: dict[str, str],
    timeout: float | None = None,
) -> Any:
    body = json.dumps(payload).encode("utf-8")
    req = request.Request(url, data=body, headers=headers, method="POST")
    with request.urlopen(req, timeout=timeout) as response:
        response_body = response.read().decode("utf-8")
    return json.loads(response_body)


def _get_json(url: str, timeout: float | None = None) -> Any:
    req = request.Request(url, headers={"Accept": "application/json"}, method="GET")
    with request.urlopen(req, timeout=timeout) as response:
        response_body = response.read().decode("utf-8")
    return json.loads(response_body)


def _http_error_message(provider_name: str, exc: error.HTTPError) -> str:
    response_excerpt = ""
    try:
        response_body = exc.read().decode("utf-8", errors="replace").strip()
    except Exception:  # noqa: BLE001
        response_body = ""

    if response_body:
        try:
            parsed = json.loads(response_body)
            if isinstance(parsed, dict):
                message = parsed.get("error")
                if isinstance(message, str) and message.strip():
                    response_excerpt = message.strip()
        except json.JSONDecodeError:
            response_excerpt = response_body[:200]

    if response_excerpt:
        return f"{provider_name} request failed with HTTP {exc.code}: {response_excerpt}"

    return f"{provider_name} request failed with HTTP {exc.code}."


class OllamaClient:
    """Minimal client for the Ollama HTTP API (tag listing and structured chat)."""

    def __init__(self, base_url: str = "http://localhost:11434", timeout: float | None = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    def list_models(self) -> list[str]:
        try:
            payload = _get_json(f"{self.base_url}/api/tags", timeout=self.timeout)
        except error.HTTPError as exc:
            raise ExternalServiceFailure(_http_error_message("Ollama", exc)) from exc
        except (error.URLError, OSError, json.JSONDecodeError) as exc:
            raise ExternalServiceFailure(f"Ollama tag listing failed: {exc}") from exc

        models = payload.get("models") if isinstance(payload, dict) else None
        return [
            item["name"]
            for item in models or []
            if isinstance(item, dict) and isinstance(item.get("name"), str)
        ]

    def complete(self, model: str, prompt: str, schema: dict[str, Any]) -> Any:
        """Run a non-streaming chat call constrained to ``schema`` and return the raw reply."""
        payload = {
            "model": model,
            "stream": False,
            "format": schema,
            "messages": [{"role": "user", "content": prompt}],
        }
        logger.debug("Requesting structured chat completion from %s with model %s", self.base_url, model)
        try:
            return _post_json(
                f"{self.base_url}/api/chat",
                payload,
                {"Content-Type": "application/json"},
                timeout=self.timeout,
            )
        except error.HTTPError as exc:
            raise ExternalServiceFailure(_http_error_message("Ollama", exc)) from exc
        except (error.URLError, OSError) as exc:
            raise ExternalServiceFailure(f"Ollama request failed before receiving a response: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ExternalServiceFailure(f"Ollama returned a non-JSON response: {exc}") from exc
