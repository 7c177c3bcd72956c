"""LiteLLM backend via Anthropic Messages API endpoint."""

from __future__ import annotations

import os

from .base import LLMBackend

_SYSTEM_PROMPT = (
    "You plan tool invocations for an orchestrator. "
    "Answer with the requested JSON object only, without prose or code fences."
)


class LiteLLMLLM(LLMBackend):
    """LiteLLM backend answering planning prompts through a messages endpoint.

    Reads credentials from environment variables:
        LITELLM_API_KEY    — required
        LITELLM_BASE_URL   — required (e.g. https://your-litellm-host.example.com)

    Args:
        model_id: Model string passed to LiteLLM (e.g. "GCP/claude-4-sonnet").
        max_tokens: Upper bound on the plan document length.
        timeout: Seconds to wait for the endpoint.
    """

    def __init__(
        self,
        model_id: str = "GCP/claude-4-sonnet",
        max_tokens: int = 1024,
        timeout: float = 60.0,
    ) -> None:
        self._api_key = os.environ["LITELLM_API_KEY"]
        base_url = os.environ["LITELLM_BASE_URL"]
        self._messages_url = base_url.rstrip("/") + "/v1/messages"
        self._model_id = model_id
        self._max_tokens = max_tokens
        self._timeout = timeout

    def generate(self, prompt: str, temperature: float = 0.0) -> str:
        import requests

        resp = requests.post(
            self._messages_url,
            headers={
                "Authorization": f"Bearer {self._api_key}",
                "Content-Type": "application/json",
            },
            json={
                "model": self._model_id,
                "max_tokens": self._max_tokens,
                "temperature": temperature,
                "system": _SYSTEM_PROMPT,
                "messages": [{"role": "user", "content": prompt}],
            },
            timeout=self._timeout,
        )
        resp.raise_for_status()
        blocks = resp.json()["content"]
        return "".join(b.get("text", "") for b in blocks if b.get("type", "text") == "text")
