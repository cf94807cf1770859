"""
Model Providers
===============
One interface over Groq, Gemini and xAI Grok:
  - ``complete``: single blocking completion → text + token usage
  - ``stream``: async iterator of text chunks, usage filled in at the end
  - Hybrid mode with automatic failover across configured providers
  - Vendor exceptions normalised to ``ProviderError`` (status + message)
"""

import asyncio
import logging
from functools import lru_cache
from typing import AsyncIterator, Callable, Dict, List, Optional, Tuple

import google.generativeai as genai
from groq import AsyncGroq
from openai import AsyncOpenAI
from pydantic import BaseModel

from mindmap_backend.core.config import Settings, settings
from mindmap_backend.core.errors import ProviderError
from mindmap_backend.schemas.outline import TokenUsage

logger = logging.getLogger(__name__)

PROVIDERS = ("groq", "grok", "gemini")


class Completion(BaseModel):
    text: str
    usage: TokenUsage
    provider: str
    model: str


def provider_for_model(model: str) -> str:
    """Pick the provider that serves an explicit model identifier."""
    name = model.lower()
    if name.startswith("gemini"):
        return "gemini"
    if name.startswith("grok"):
        return "grok"
    return "groq"


def _as_provider_error(provider: str, exc: Exception) -> ProviderError:
    status = getattr(exc, "status_code", None)
    if status is None:
        status = getattr(exc, "code", None)
    if not isinstance(status, int):
        status = None
    if "Timeout" in type(exc).__name__:
        status = 504
    message = getattr(exc, "message", None) or str(exc) or type(exc).__name__
    return ProviderError(f"{provider}: {message}", status_code=status, provider=provider)


def _usage(prompt: Optional[int], completion: Optional[int], total: Optional[int] = None) -> TokenUsage:
    prompt = prompt or 0
    completion = completion or 0
    return TokenUsage(
        prompt_tokens=prompt,
        completion_tokens=completion,
        total_tokens=total or prompt + completion,
    )


class ModelClient:
    """Provider router. Vendor SDK clients are created on first use."""

    def __init__(self, config: Settings = settings):
        self._settings = config
        self._groq: Optional[AsyncGroq] = None
        self._grok: Optional[AsyncOpenAI] = None
        self._gemini_ready = False

    # ── Client initialization ────────────────────────────────────────────────

    def _groq_client(self) -> AsyncGroq:
        if not self._settings.GROQ_API_KEY:
            raise ProviderError("Groq API key missing", status_code=503, provider="groq")
        if self._groq is None:
            self._groq = AsyncGroq(api_key=self._settings.GROQ_API_KEY)
            logger.info("[LLM] ✓ Groq client ready")
        return self._groq

    def _grok_client(self) -> AsyncOpenAI:
        if not self._settings.GROK_API_KEY:
            raise ProviderError("Grok API key missing", status_code=503, provider="grok")
        if self._grok is None:
            self._grok = AsyncOpenAI(
                api_key=self._settings.GROK_API_KEY,
                base_url=self._settings.GROK_BASE_URL,
            )
            logger.info("[LLM] ✓ Grok client ready")
        return self._grok

    def _gemini_model(self, model: str, max_tokens: int, temperature: float, json_mode: bool):
        if not self._settings.GOOGLE_API_KEY:
            raise ProviderError("Google API key missing", status_code=503, provider="gemini")
        if not self._gemini_ready:
            genai.configure(api_key=self._settings.GOOGLE_API_KEY, transport="rest")
            self._gemini_ready = True
            logger.info("[LLM] ✓ Gemini client ready")
        config = {"temperature": temperature, "max_output_tokens": max_tokens}
        if json_mode:
            config["response_mime_type"] = "application/json"
        return genai.GenerativeModel(model_name=model, generation_config=config)

    def _default_model(self, provider: str) -> str:
        return {
            "groq": self._settings.GROQ_MODEL,
            "grok": self._settings.GROK_MODEL,
            "gemini": self._settings.GEMINI_MODEL,
        }[provider]

    def _has_key(self, provider: str) -> bool:
        return bool({
            "groq": self._settings.GROQ_API_KEY,
            "grok": self._settings.GROK_API_KEY,
            "gemini": self._settings.GOOGLE_API_KEY,
        }[provider])

    def _plan(self, model: Optional[str]) -> List[Tuple[str, str]]:
        """Ordered ``(provider, model)`` attempts for one call."""
        if model:
            return [(provider_for_model(model), model)]
        mode = self._settings.AI_PROVIDER
        if mode != "hybrid":
            return [(mode, self._default_model(mode))]
        plan = [(p, self._default_model(p)) for p in PROVIDERS if self._has_key(p)]
        if not plan:
            raise ProviderError("No AI provider API key configured", status_code=503)
        return plan

    # ── Completion ───────────────────────────────────────────────────────────

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        model: Optional[str] = None,
        max_tokens: int = 4000,
        temperature: float = 0.7,
        json_mode: bool = False,
    ) -> Completion:
        """Single completion with failover across the planned providers."""
        callers: Dict[str, Callable] = {
            "groq": self._call_groq,
            "grok": self._call_grok,
            "gemini": self._call_gemini,
        }
        last_error: Optional[ProviderError] = None
        for provider, model_name in self._plan(model):
            try:
                return await callers[provider](
                    system_prompt, user_prompt, model_name, max_tokens, temperature, json_mode
                )
            except ProviderError as e:
                last_error = e
                logger.warning(f"[LLM] {provider} failed: {str(e)[:200]}. Trying next...")

        raise last_error

    async def _call_groq(self, system_prompt, user_prompt, model, max_tokens, temperature, json_mode) -> Completion:
        client = self._groq_client()
        logger.info(f"[LLM] Calling Groq ({model})...")
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except Exception as e:
            raise _as_provider_error("groq", e) from e

        usage = completion.usage
        return Completion(
            text=completion.choices[0].message.content or "",
            usage=_usage(
                getattr(usage, "prompt_tokens", 0),
                getattr(usage, "completion_tokens", 0),
                getattr(usage, "total_tokens", 0),
            ),
            provider="groq",
            model=model,
        )

    async def _call_grok(self, system_prompt, user_prompt, model, max_tokens, temperature, json_mode) -> Completion:
        client = self._grok_client()
        logger.info(f"[LLM] Calling Grok ({model})...")
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            completion = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except Exception as e:
            raise _as_provider_error("grok", e) from e

        usage = completion.usage
        return Completion(
            text=completion.choices[0].message.content or "",
            usage=_usage(
                getattr(usage, "prompt_tokens", 0),
                getattr(usage, "completion_tokens", 0),
                getattr(usage, "total_tokens", 0),
            ),
            provider="grok",
            model=model,
        )

    async def _call_gemini(self, system_prompt, user_prompt, model, max_tokens, temperature, json_mode) -> Completion:
        gemini = self._gemini_model(model, max_tokens, temperature, json_mode)
        logger.info(f"[LLM] Calling Gemini ({model})...")
        full_prompt = f"{system_prompt}\n\nUser Task:\n{user_prompt}"
        try:
            response = await asyncio.to_thread(gemini.generate_content, full_prompt)
            text = response.text
        except Exception as e:
            raise _as_provider_error("gemini", e) from e

        meta = getattr(response, "usage_metadata", None)
        return Completion(
            text=text or "",
            usage=_usage(
                getattr(meta, "prompt_token_count", 0),
                getattr(meta, "candidates_token_count", 0),
                getattr(meta, "total_token_count", 0),
            ),
            provider="gemini",
            model=model,
        )

    # ── Streaming ────────────────────────────────────────────────────────────

    async def stream(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        usage: TokenUsage,
        model: Optional[str] = None,
        max_tokens: int = 4000,
        temperature: float = 0.7,
    ) -> AsyncIterator[str]:
        """
        Yield text chunks as the provider produces them.
        Failover only happens before the first chunk; afterwards errors propagate.
        """
        streamers = {
            "groq": self._stream_openai_style,
            "grok": self._stream_openai_style,
            "gemini": self._stream_gemini,
        }
        last_error: Optional[ProviderError] = None
        for provider, model_name in self._plan(model):
            emitted = False
            try:
                async for chunk in streamers[provider](
                    provider, system_prompt, user_prompt, model_name, max_tokens, temperature, usage
                ):
                    emitted = True
                    yield chunk
                return
            except ProviderError as e:
                if emitted:
                    raise
                last_error = e
                logger.warning(f"[LLM] {provider} stream failed: {str(e)[:200]}. Trying next...")

        raise last_error

    async def _stream_openai_style(
        self, provider, system_prompt, user_prompt, model, max_tokens, temperature, usage: TokenUsage
    ) -> AsyncIterator[str]:
        """Groq and xAI share the OpenAI chat-completions streaming shape."""
        logger.info(f"[LLM] Streaming from {provider} ({model})...")
        kwargs = {}
        if provider == "grok":
            client = self._grok_client()
            kwargs["stream_options"] = {"include_usage": True}
        else:
            client = self._groq_client()
        try:
            response = await client.chat.completions.create(
                model=model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                stream=True,
                **kwargs,
            )
            async for chunk in response:
                # Groq reports usage under x_groq on the final chunk
                chunk_usage = getattr(chunk, "usage", None) or getattr(
                    getattr(chunk, "x_groq", None), "usage", None
                )
                if chunk_usage:
                    usage.add(_usage(
                        getattr(chunk_usage, "prompt_tokens", 0),
                        getattr(chunk_usage, "completion_tokens", 0),
                        getattr(chunk_usage, "total_tokens", 0),
                    ))
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except Exception as e:
            raise _as_provider_error(provider, e) from e

    async def _stream_gemini(
        self, provider, system_prompt, user_prompt, model, max_tokens, temperature, usage: TokenUsage
    ) -> AsyncIterator[str]:
        """The Gemini SDK streams synchronously; a worker thread feeds a queue."""
        gemini = self._gemini_model(model, max_tokens, temperature, json_mode=False)
        logger.info(f"[LLM] Streaming from Gemini ({model})...")
        full_prompt = f"{system_prompt}\n\nUser Task:\n{user_prompt}"
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue = asyncio.Queue()

        def _produce() -> None:
            try:
                response = gemini.generate_content(full_prompt, stream=True)
                for part in response:
                    loop.call_soon_threadsafe(queue.put_nowait, ("text", part.text))
                loop.call_soon_threadsafe(
                    queue.put_nowait, ("usage", getattr(response, "usage_metadata", None))
                )
            except Exception as e:  # forwarded to the consumer below
                loop.call_soon_threadsafe(queue.put_nowait, ("error", e))
            finally:
                loop.call_soon_threadsafe(queue.put_nowait, ("end", None))

        worker = loop.run_in_executor(None, _produce)
        while True:
            kind, value = await queue.get()
            if kind == "end":
                break
            if kind == "error":
                raise _as_provider_error("gemini", value)
            if kind == "usage" and value is not None:
                usage.add(_usage(
                    getattr(value, "prompt_token_count", 0),
                    getattr(value, "candidates_token_count", 0),
                    getattr(value, "total_token_count", 0),
                ))
            elif kind == "text" and value:
                yield value
        await worker


@lru_cache
def get_model_client() -> ModelClient:
    return ModelClient(settings)
