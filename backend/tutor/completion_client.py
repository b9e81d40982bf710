from __future__ import annotations
import logging
import httpx
from typing import Any, Dict, Optional
from .settings import settings

logger = logging.getLogger(__name__)


class CompletionError(RuntimeError):
	"""Raised when no provider produced a reply."""


class CompletionGateway:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		model: Optional[str] = None,
		base_url: Optional[str] = None,
		openrouter_api_key: Optional[str] = None,
		timeout: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key if api_key is not None else settings.gemini_api_key
		self.model = model or settings.gemini_model
		root = (base_url or settings.gemini_base_url).rstrip("/")
		self.base_url = f"{root}/{self.model}:generateContent"
		timeout = timeout if timeout is not None else settings.completion_timeout_seconds
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
		self._openrouter_api_key = openrouter_api_key if openrouter_api_key is not None else settings.openrouter_api_key
		self._fallback_enabled = bool(self._openrouter_api_key)
		self._openrouter_model = settings.openrouter_model
		self._openrouter_base_url = settings.openrouter_base_url
		self._openrouter_headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}" if self._openrouter_api_key else "",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}

	@property
	def configured(self) -> bool:
		return bool(self.api_key) or self._fallback_enabled

	async def complete(
		self,
		prompt: str,
		*,
		system_instruction: str,
		max_tokens: Optional[int] = None,
		temperature: Optional[float] = None,
	) -> str:
		max_tokens = max_tokens if max_tokens is not None else settings.completion_max_tokens
		temperature = temperature if temperature is not None else settings.completion_temperature
		if not self.configured:
			raise CompletionError("no completion provider configured (set GEMINI_API_KEY or OPENROUTER_API_KEY)")
		last_error: Optional[Exception] = None
		if self.api_key:
			try:
				return await self._gemini_complete(prompt, system_instruction, max_tokens, temperature)
			except CompletionError as err:
				last_error = err
				logger.warning("Gemini completion failed: %s", err)
		if not self._fallback_enabled:
			raise last_error or CompletionError("Gemini call failed and no fallback configured")
		try:
			return await self._openrouter_complete(prompt, system_instruction, max_tokens, temperature)
		except CompletionError as fallback_err:
			if last_error is not None:
				raise CompletionError(
					f"Gemini primary call failed ({last_error}); fallback via OpenRouter also failed"
				) from fallback_err
			raise

	async def _gemini_complete(self, prompt: str, system_instruction: str, max_tokens: int, temperature: float) -> str:
		payload: Dict[str, Any] = {
			"systemInstruction": {"parts": [{"text": system_instruction}]},
			"contents": [{"role": "user", "parts": [{"text": prompt}]}],
			"generationConfig": {"maxOutputTokens": max_tokens, "temperature": temperature},
		}
		headers = {"x-goog-api-key": self.api_key or ""}
		try:
			r = await self._client.post(self.base_url, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise CompletionError(f"Gemini returned HTTP {http_err.response.status_code}") from http_err
		except httpx.RequestError as net_err:
			raise CompletionError(f"Gemini request failed: {net_err!r}") from net_err
		try:
			data = r.json()
			candidate = (data.get("candidates") or [])[0]
			parts = (candidate.get("content") or {}).get("parts") or []
		except Exception as err:
			raise CompletionError(f"Unexpected Gemini response: {r.text[:200]}") from err
		return "".join(p.get("text", "") for p in parts if isinstance(p, dict))

	async def _openrouter_complete(self, prompt: str, system_instruction: str, max_tokens: int, temperature: float) -> str:
		headers = {k: v for k, v in self._openrouter_headers.items() if v}
		payload: Dict[str, Any] = {
			"model": self._openrouter_model,
			"messages": [
				{"role": "system", "content": system_instruction},
				{"role": "user", "content": prompt},
			],
			"max_tokens": max_tokens,
			"temperature": temperature,
		}
		try:
			r = await self._client.post(self._openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
		except httpx.HTTPStatusError as http_err:
			raise CompletionError(f"OpenRouter returned HTTP {http_err.response.status_code}") from http_err
		except httpx.RequestError as net_err:
			raise CompletionError(f"OpenRouter request failed: {net_err!r}") from net_err
		try:
			data = r.json()
			content = data["choices"][0]["message"].get("content")
		except Exception as err:
			raise CompletionError(f"Unexpected OpenRouter response: {r.text[:200]}") from err
		return content or ""

	async def aclose(self) -> None:
		await self._client.aclose()
