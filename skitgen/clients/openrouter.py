from __future__ import annotations

import logging
from typing import Any, Optional

import httpx


class OpenRouterClient:
    """Single-shot chat completion against an OpenAI-compatible endpoint."""

    def __init__(
        self,
        api_key: str | None,
        model: str = "google/gemini-2.0-flash-001",
        base_url: str = "https://openrouter.ai/api",
        timeout: float = 60.0,
        temperature: float = 0.8,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.api_key = (api_key or "").strip()
        self.model = model
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.temperature = temperature
        self.log = logger or logging.getLogger(__name__)

    def enabled(self) -> bool:
        return bool(self.api_key)

    def complete(self, prompt: str) -> str:
        if not self.enabled():
            raise RuntimeError("OpenRouter client is not configured")
        url = f"{self.base_url}/v1/chat/completions"
        payload = {
            "model": self.model,
            "temperature": self.temperature,
            "messages": [
                {"role": "user", "content": prompt},
            ],
        }
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        with httpx.Client(timeout=self.timeout) as client:
            response = client.post(url, headers=headers, json=payload)
            try:
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                self.log.error(
                    "openrouter HTTP error",
                    extra={
                        "status": exc.response.status_code,
                        "body": exc.response.text[:2000],
                        "model": self.model,
                    },
                )
                raise RuntimeError(f"OpenRouter HTTP {exc.response.status_code}: {exc.response.text}") from exc
            body = response.json()
        self.log.debug("openrouter response", extra={"payload": body, "model": self.model})
        return self._extract_text(body)

    def _extract_text(self, payload: dict[str, Any]) -> str:
        choices = payload.get("choices") or []
        if not choices:
            raise ValueError("OpenRouter response missing choices")
        message = choices[0].get("message") or {}
        content = message.get("content")
        if not content:
            raise ValueError("OpenRouter response missing message content")
        return content
