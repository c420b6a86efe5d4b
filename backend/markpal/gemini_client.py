from __future__ import annotations
import httpx
import logging
from typing import Any, Dict, Optional, Tuple
from .settings import settings

logger = logging.getLogger(__name__)


class GeminiClient:
	"""Thin async client for Gemini text generation, with an optional OpenRouter fallback.

	Used by the model judge (JSON output) and by the mark-scheme formatter.
	Transport and HTTP errors propagate; the marking engine decides what to retry.
	"""

	def __init__(self, api_key: Optional[str] = None, *, base_url: Optional[str] = None, model: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
		self.temperature = settings.gemini_temperature
		if self.provider == "vertex":
			region = settings.vertex_region
			project = settings.vertex_project or "placeholder-project"
			# Vertex AI Generative REST endpoint (API key via header)
			self.base_url = base_url or (
				f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}/locations/{region}/publishers/google/models/{self.model}:generateContent"
			)
			self._auth_in_query = False
		else:
			# Google AI Studio (Generative Language API)
			self.base_url = base_url or f"https://generativelanguage.googleapis.com/v1beta/models/{self.model}:generateContent"
			self._auth_in_query = True
		timeout = settings.gemini_timeout_seconds
		self._client = httpx.AsyncClient(timeout=timeout, transport=transport)
		self._openrouter_api_key = settings.openrouter_api_key
		self._fallback_client: Optional[httpx.AsyncClient] = None
		if self._openrouter_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=timeout, transport=transport)

	async def __aenter__(self) -> "GeminiClient":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.aclose()

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()

	async def generate(
		self,
		prompt: str,
		*,
		system_instruction: Optional[str] = None,
		json_output: bool = False,
		thinking_budget: Optional[int] = None,
	) -> str:
		config: Dict[str, Any] = {"temperature": self.temperature}
		if json_output:
			config["responseMimeType"] = "application/json"
		payload: Dict[str, Any] = {
			"contents": [{"role": "user", "parts": [{"text": prompt}]}],
			"generationConfig": config,
		}
		if system_instruction:
			payload["systemInstruction"] = {"parts": [{"text": system_instruction}]}
		try:
			return await self._post_gemini(payload, thinking_budget)
		except (httpx.HTTPError, RuntimeError) as err:
			if self._fallback_client is None:
				raise
			logger.warning("Gemini call failed (%s); trying OpenRouter", err)
			return await self._post_openrouter(prompt, system_instruction, err)

	def _auth(self) -> Tuple[Dict[str, Any], Dict[str, str]]:
		if self._auth_in_query:
			return {"key": self.api_key}, {}
		return {}, {"x-goog-api-key": self.api_key}

	async def _post_gemini(self, payload: Dict[str, Any], thinking_budget: Optional[int]) -> str:
		params, headers = self._auth()
		if thinking_budget is not None:
			try:
				budget = int(thinking_budget)
			except (TypeError, ValueError):
				budget = 0
			thinking = {**payload["generationConfig"], "thinkingConfig": {"thinkingBudget": budget}}
			r = await self._client.post(self.base_url, params=params, headers=headers, json={**payload, "generationConfig": thinking})
			if r.status_code < 400:
				return _candidate_text(r)
			# Older models reject thinkingConfig; retry once without it
			logger.info("Gemini rejected thinkingConfig (%s); retrying without it", r.status_code)
		r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
		r.raise_for_status()
		return _candidate_text(r)

	async def _post_openrouter(self, prompt: str, system_instruction: Optional[str], primary_error: Exception) -> str:
		headers = {
			"Authorization": f"Bearer {self._openrouter_api_key}",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		messages = []
		if system_instruction:
			messages.append({"role": "system", "content": system_instruction})
		messages.append({"role": "user", "content": prompt})
		payload: Dict[str, Any] = {
			"model": settings.openrouter_model,
			"messages": messages,
			"temperature": self.temperature,
		}
		try:
			r = await self._fallback_client.post(settings.openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
			return r.json()["choices"][0]["message"]["content"]
		except (httpx.HTTPError, ValueError, KeyError, IndexError, TypeError) as fallback_err:
			raise RuntimeError(
				f"Gemini primary call failed ({primary_error}); fallback via OpenRouter also failed"
			) from fallback_err


def _candidate_text(r: httpx.Response) -> str:
	try:
		return r.json()["candidates"][0]["content"]["parts"][0]["text"]
	except (ValueError, KeyError, IndexError, TypeError):
		raise RuntimeError(f"Unexpected Gemini response: {r.text[:500]}")
