"""OpenAI-compatible AI gateway provider using the openai SDK."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Final

import openai
from openai import AsyncOpenAI

from app.ai.providers.base import ModelResponse, PromptPayload, ProviderHTTPError

if TYPE_CHECKING:
  from app.config import Settings

logger = logging.getLogger(__name__)


class GatewayProvider:
  """Chat-completions client for the generation gateway.

  SDK-level retries are disabled: the job runner's RetryPolicy is the only retry loop, so a 429 is
  surfaced here as a ProviderHTTPError on the first response.
  """

  _DEFAULT_MODEL: Final[str] = "google/gemini-2.5-flash"

  def __init__(self, *, api_key: str, base_url: str, model: str | None = None, timeout_seconds: float = 120.0, client: AsyncOpenAI | None = None) -> None:
    if not api_key and client is None:
      raise ValueError("LECTERN_AI_API_KEY is required to call the AI gateway.")
    self.model = model or self._DEFAULT_MODEL
    self._client = client or AsyncOpenAI(api_key=api_key, base_url=base_url, timeout=timeout_seconds, max_retries=0)

  @classmethod
  def from_settings(cls, settings: Settings, *, model: str | None = None) -> GatewayProvider:
    return cls(api_key=settings.ai_api_key or "", base_url=settings.ai_base_url, model=model or settings.ai_model, timeout_seconds=settings.ai_request_timeout_seconds)

  async def generate(self, payload: PromptPayload) -> ModelResponse:
    """Issue one chat completion and return its text content."""
    model = payload.model or self.model
    request: dict[str, Any] = {
      "model": model,
      "messages": [{"role": "system", "content": payload.system_prompt}, {"role": "user", "content": payload.user_prompt}],
    }
    if payload.temperature is not None:
      request["temperature"] = payload.temperature

    try:
      response = await self._client.chat.completions.create(**request)
    except openai.APIStatusError as exc:
      logger.warning("Gateway returned HTTP %s for model %s: %s", exc.status_code, model, exc.message)
      raise ProviderHTTPError(exc.status_code, exc.message) from exc
    except openai.APIConnectionError as exc:
      # Covers timeouts as well; there is no HTTP status to classify.
      logger.warning("Gateway request failed for model %s: %s", model, exc)
      raise ProviderHTTPError(None, str(exc) or type(exc).__name__) from exc

    if not response.choices:
      raise ProviderHTTPError(None, "Gateway response contained no choices.")

    content = response.choices[0].message.content or ""
    logger.info("Gateway response received model=%s chars=%d", model, len(content))
    usage = None
    if response.usage:
      usage = {"prompt_tokens": response.usage.prompt_tokens, "completion_tokens": response.usage.completion_tokens, "total_tokens": response.usage.total_tokens}

    return ModelResponse(content=content, usage=usage)
