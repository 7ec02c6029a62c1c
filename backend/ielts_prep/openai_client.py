from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, List, Optional
from .settings import settings


logger = logging.getLogger(__name__)


class OpenAIClient:
	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None) -> None:
		self.api_key = api_key or settings.openai_api_key
		if not self.api_key:
			raise ValueError("OPENAI_API_KEY is not configured")
		self.model = model or settings.openai_model
		self.base_url = (base_url or settings.openai_base_url).rstrip("/") + "/chat/completions"
		self._client = httpx.AsyncClient(timeout=settings.openai_timeout_seconds)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		self._fallback_enabled = bool(settings.openrouter_api_key)
		self._openrouter_api_key = settings.openrouter_api_key
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		if self._fallback_enabled:
			self._fallback_client = httpx.AsyncClient(timeout=settings.openai_timeout_seconds)

	async def chat(
		self,
		prompt: str,
		*,
		system: Optional[str] = None,
		temperature: float = 0.3,
		max_tokens: int = 1500,
	) -> str:
		messages: List[Dict[str, str]] = []
		if system:
			messages.append({"role": "system", "content": system})
		messages.append({"role": "user", "content": prompt})
		payload: Dict[str, Any] = {
			"model": self.model,
			"messages": messages,
			"temperature": temperature,
			"max_tokens": max_tokens,
		}
		headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
		last_error: Optional[Exception] = None
		try:
			r = await self._client.post(self.base_url, headers=headers, json=payload)
			r.raise_for_status()
		except (httpx.HTTPStatusError, httpx.RequestError) as err:
			last_error = err
		if last_error is None:
			try:
				data = r.json()
				return data["choices"][0]["message"]["content"]
			except Exception:
				last_error = RuntimeError(f"Unexpected OpenAI response: {r.text}")
		logger.warning("OpenAI call failed: %s", last_error)
		if not self._fallback_enabled:
			raise last_error
		return await self._fallback_chat(messages, temperature, max_tokens, last_error)

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def _fallback_chat(
		self,
		messages: List[Dict[str, str]],
		temperature: float,
		max_tokens: int,
		primary_error: Optional[Exception],
	) -> str:
		if not self._fallback_client or not self._openrouter_api_key:
			raise primary_error or RuntimeError("Fallback requested but OpenRouter is not configured")
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": messages,
			"temperature": temperature,
			"max_tokens": max_tokens,
		}
		try:
			r = await self._fallback_client.post(
				self._openrouter_base_url,
				headers=headers,
				json=payload,
			)
			r.raise_for_status()
			data = r.json()
			return data["choices"][0]["message"]["content"]
		except Exception as fallback_err:
			if primary_error is not None:
				raise RuntimeError(
					f"OpenAI primary call failed ({primary_error}); fallback via OpenRouter also failed"
				) from fallback_err
			raise fallback_err
