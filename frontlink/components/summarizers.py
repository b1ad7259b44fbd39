"""
Summarization components for the frontlink pipeline.

A summarizer sends one document body plus a pair of prompts to a chat model
and returns the model's short answer, used for the `synopsis` and `tagline`
front-matter fields.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
import logging
import os
from typing import Optional

import httpx
import openai
from openai import OpenAI
from dotenv import load_dotenv

from ..utils.errors import (
    PermanentServiceError,
    TransientServiceError,
    classify_http_status,
    classify_openai_error,
)

load_dotenv()

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Prompts:
    system: str
    user: str


SUMMARY_PROMPTS = Prompts(
    system="Respond in the first-person as if you are the author. Never refer to the blog post directly.",
    user="Re-write this as a single short concise paragraph, using an active voice. Be direct. Only cover the key points.",
)

TAGLINE_PROMPTS = Prompts(
    system="Use the past tense",
    user="Write a tagline for this blog post. Answer with only the tagline. Answer in a single short sentence.",
)

# CLI model choices mapped to (summarizer type, model name).
MODEL_CHOICES = {
    "gpt-4o": ("openai", "gpt-4o"),
    "gpt-4o-mini": ("openai", "gpt-4o-mini"),
    "claude-3-5-sonnet": ("claude", "claude-3-5-sonnet-20240620"),
    "claude-3-haiku": ("claude", "claude-3-haiku-20240307"),
}


def _clean(text: str) -> str:
    text = text.strip()
    if len(text) > 1 and text[0] == text[-1] == '"':
        text = text[1:-1].strip()
    return text


class BaseSummarizer(ABC):
    """Abstract base class for all summarizer components."""

    @property
    @abstractmethod
    def model_tag(self) -> str:
        pass

    @abstractmethod
    def summarize(self, text: str, prompts: Prompts = SUMMARY_PROMPTS) -> str:
        """
        Asks the model to condense `text` according to `prompts`.

        Raises:
            TransientServiceError: On timeouts, connection problems or rate limiting.
            PermanentServiceError: When the request can never succeed as sent.
        """
        pass


class OpenAISummarizer(BaseSummarizer):
    """A summarizer using OpenAI chat completions."""

    def __init__(
        self,
        model_name: str = "gpt-4o",
        api_key: Optional[str] = None,
        timeout: float = 120.0,
        base_url: Optional[str] = None,
    ):
        self.model_name = model_name
        self.api_key = api_key or os.getenv("OPENAI_API_KEY")
        if not self.api_key:
            raise ValueError(
                "You need an OpenAI API key. Pass it as the 'api_key' argument or set the 'OPENAI_API_KEY' environment variable."
            )
        self.client = OpenAI(
            api_key=self.api_key, base_url=base_url, timeout=timeout, max_retries=0
        )
        logger.info(f"Initialized OpenAISummarizer with model '{self.model_name}'.")

    @property
    def model_tag(self) -> str:
        return f"openai/{self.model_name}"

    def summarize(self, text: str, prompts: Prompts = SUMMARY_PROMPTS) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    {"role": "system", "content": prompts.system},
                    {"role": "user", "content": f"{prompts.user}\n\n{text}"},
                ],
            )
        except openai.OpenAIError as e:
            raise classify_openai_error(e, provider="openai") from e

        if not response.choices or not response.choices[0].message.content:
            raise PermanentServiceError("No choices in response", provider="openai")
        return _clean(response.choices[0].message.content)


class ClaudeSummarizer(BaseSummarizer):
    """
    A summarizer using the Anthropic Messages API over plain HTTP.

    Attributes:
        model_name: Claude model id
        max_tokens: Upper bound on the answer length
        http_client: Optional pre-configured httpx client (used by tests)
    """

    API_URL = "https://api.anthropic.com/v1/messages"
    API_VERSION = "2023-06-01"

    def __init__(
        self,
        model_name: str = "claude-3-5-sonnet-20240620",
        api_key: Optional[str] = None,
        max_tokens: int = 1024,
        timeout: float = 120.0,
        http_client: Optional[httpx.Client] = None,
    ):
        self.model_name = model_name
        self.max_tokens = max_tokens
        self.api_key = api_key or os.getenv("ANTHROPIC_API_KEY")
        if not self.api_key:
            raise ValueError(
                "You need an Anthropic API key. Pass it as the 'api_key' argument or set the 'ANTHROPIC_API_KEY' environment variable."
            )
        self.http_client = http_client or httpx.Client(timeout=timeout)
        logger.info(f"Initialized ClaudeSummarizer with model '{self.model_name}'.")

    @property
    def model_tag(self) -> str:
        return f"anthropic/{self.model_name}"

    def summarize(self, text: str, prompts: Prompts = SUMMARY_PROMPTS) -> str:
        payload = {
            "model": self.model_name,
            "max_tokens": self.max_tokens,
            "system": prompts.system,
            "messages": [{"role": "user", "content": f"{prompts.user}\n\n{text}"}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": self.API_VERSION,
            "content-type": "application/json",
        }
        try:
            response = self.http_client.post(self.API_URL, headers=headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise self._status_error(e.response) from e
        except httpx.TransportError as e:
            raise TransientServiceError(
                f"Could not reach anthropic: {e}", provider="anthropic"
            ) from e

        body = response.json()
        parts = [block.get("text", "") for block in body.get("content", []) if block.get("type") == "text"]
        if not parts:
            raise PermanentServiceError(f"No content in response: {body}", provider="anthropic")
        return _clean("".join(parts))

    @staticmethod
    def _status_error(response: httpx.Response):
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        message = error.get("message") or response.text
        return classify_http_status(
            response.status_code,
            f"anthropic API error {response.status_code}: {message}",
            provider="anthropic",
        )
