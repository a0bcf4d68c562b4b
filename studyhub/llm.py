"""
Chat-completion client for the assistant chat.

Wraps the official OpenAI SDK. Callers pass role-tagged messages and get back
the reply text with token usage; any SDK or transport failure surfaces as
``CompletionError``.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from openai import OpenAI

log = logging.getLogger("studyhub.llm")


class CompletionError(Exception):
    pass


@dataclass
class Completion:
    content: str
    model: str
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionClient:
    def __init__(self, api_key: str = "", base_url: Optional[str] = None, timeout: float = 60.0):
        self.api_key = api_key
        self.base_url = base_url or None
        self.timeout = timeout
        self._client: Optional[OpenAI] = None

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def _get_client(self) -> OpenAI:
        if self._client is None:
            if not self.api_key:
                raise CompletionError("OpenAI API key is not configured")
            self._client = OpenAI(api_key=self.api_key, base_url=self.base_url, timeout=self.timeout)
        return self._client

    def complete(
        self,
        messages: list[dict],
        model: str,
        temperature: float = 0.7,
        max_tokens: int = 1000,
    ) -> Completion:
        client = self._get_client()
        try:
            response = client.chat.completions.create(
                model=model,
                messages=messages,
                max_tokens=max_tokens,
                temperature=temperature,
                presence_penalty=0.1,
                frequency_penalty=0.1,
            )
        except Exception as e:
            log.error("OpenAI API error: %s", e, extra={"model": model, "error_type": type(e).__name__})
            raise CompletionError(f"OpenAI API error: {e}") from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise CompletionError("OpenAI returned empty content")

        usage = response.usage
        return Completion(
            content=content,
            model=model,
            prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
        )

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


def get_llm(request: Request) -> ChatCompletionClient:
    return request.app.state.llm
