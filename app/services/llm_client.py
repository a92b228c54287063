"""
Chat-completion client over Anthropic or OpenAI.

Anthropic is used when ANTHROPIC_API_KEY is set, OpenAI otherwise; callers
only see `complete(...) -> str`. Calls go through the service gateway
(circuit breaker + retry, no timeout for LLM providers).

TEST_MODE returns canned replies without any network call.
"""
from typing import Dict, List, Optional

from anthropic import AsyncAnthropic
from openai import AsyncOpenAI

from app.config import get_settings
from app.services.gateway import get_gateway
from app.utils.logger import get_logger
from app.utils.metrics import inc

logger = get_logger("llm")

Message = Dict[str, str]


class LLMClient:
    def __init__(self):
        settings = get_settings()
        self.settings = settings
        self.test_mode = settings.test_mode
        self.provider = settings.llm_provider
        self._anthropic: Optional[AsyncAnthropic] = None
        self._openai: Optional[AsyncOpenAI] = None

        if self.test_mode:
            logger.info("llm.test_mode")
            return
        if self.provider == "anthropic":
            self._anthropic = AsyncAnthropic(api_key=settings.anthropic_api_key)
        elif settings.openai_api_key:
            self._openai = AsyncOpenAI(api_key=settings.openai_api_key)
        else:
            raise ValueError(
                "No LLM provider configured. Set ANTHROPIC_API_KEY or OPENAI_API_KEY, "
                "or TEST_MODE=true to use canned replies."
            )

    async def complete(
        self,
        messages: List[Message],
        system: Optional[str] = None,
        max_tokens: int = 1024,
        json_mode: bool = False,
        fast: bool = False,
    ) -> str:
        """
        Run one chat completion and return the reply text.

        `fast` picks the smaller model (used for dossier analysis). `json_mode`
        asks OpenAI for a JSON object; Anthropic relies on the prompt.
        Provider errors propagate to the caller.
        """
        if self.test_mode:
            return "{}" if json_mode else "[TEST MODE] Thanks, that's helpful. Tell me more."

        if self._anthropic is not None:
            text, truncated = await self._complete_anthropic(messages, system, max_tokens, fast)
        else:
            text, truncated = await self._complete_openai(messages, system, max_tokens, json_mode)

        if truncated:
            inc(f"{self.provider}.truncated")
            logger.warning("llm.truncated", extra={"provider": self.provider, "count": max_tokens})
        return text

    async def _complete_anthropic(self, messages, system, max_tokens, fast):
        model = self.settings.anthropic_fast_model if fast else self.settings.anthropic_model
        kwargs = {"model": model, "max_tokens": max_tokens, "messages": messages}
        if system:
            kwargs["system"] = system
        response = await get_gateway().execute("anthropic", self._anthropic.messages.create, **kwargs)
        text = "".join(block.text for block in response.content if block.type == "text")
        return text, response.stop_reason == "max_tokens"

    async def _complete_openai(self, messages, system, max_tokens, json_mode):
        chat = ([{"role": "system", "content": system}] if system else []) + list(messages)
        kwargs = {
            "model": self.settings.openai_model,
            "messages": chat,
            "max_completion_tokens": max_tokens,
        }
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        response = await get_gateway().execute("openai", self._openai.chat.completions.create, **kwargs)
        choice = response.choices[0]
        return choice.message.content or "", choice.finish_reason == "length"


_client: Optional[LLMClient] = None


def get_llm_client() -> LLMClient:
    global _client
    if _client is None:
        _client = LLMClient()
    return _client


def set_llm_client(client) -> None:
    """Swap the process-wide client (tests inject a scripted fake)."""
    global _client
    _client = client
