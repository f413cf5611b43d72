from __future__ import annotations
import logging
import httpx
from typing import Any, Callable, Dict, Optional, Protocol, Tuple
from .prompts import QUESTION_LIST_SCHEMA
from .settings import settings

logger = logging.getLogger(__name__)


class TextGenerator(Protocol):
	"""Prompt in, raw model text out. No structural guarantee on the output."""

	async def generate(self, prompt: str) -> str: ...

	async def aclose(self) -> None: ...


GeneratorFactory = Callable[[], TextGenerator]


def _endpoint(model: str) -> Tuple[str, bool]:
	"""generateContent URL for the configured provider, and whether the key goes in the query."""
	if settings.gemini_provider == "vertex":
		region = settings.vertex_region
		project = settings.vertex_project or "placeholder-project"
		return (
			f"https://{region}-aiplatform.googleapis.com/v1/projects/{project}"
			f"/locations/{region}/publishers/google/models/{model}:generateContent",
			False,
		)
	return f"https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent", True


def _candidate_text(data: Dict[str, Any]) -> str:
	candidate = data["candidates"][0]
	if candidate.get("finishReason") == "MAX_TOKENS":
		logger.warning("Gemini output hit maxOutputTokens; the JSON is likely truncated")
	parts = candidate.get("content", {}).get("parts") or []
	text = "".join(part.get("text", "") for part in parts)
	if not text:
		raise ValueError(f"Gemini returned no text (finishReason={candidate.get('finishReason')})")
	return text


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		response_schema: Optional[Dict[str, Any]] = None,
		timeout: Optional[float] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ValueError("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.response_schema = response_schema
		default_url, self._key_in_query = _endpoint(self.model)
		self.base_url = base_url or default_url
		timeout = timeout or settings.gemini_timeout_seconds
		self._client = httpx.AsyncClient(timeout=timeout)
		self._fallback_client: Optional[httpx.AsyncClient] = None
		if settings.openrouter_api_key:
			self._fallback_client = httpx.AsyncClient(timeout=timeout)

	def _generation_config(self) -> Dict[str, Any]:
		config: Dict[str, Any] = {
			"temperature": settings.gemini_temperature,
			"topP": settings.gemini_top_p,
			"maxOutputTokens": settings.gemini_max_output_tokens,
		}
		if self.response_schema is not None:
			config["responseMimeType"] = "application/json"
			config["responseSchema"] = self.response_schema
		return config

	async def generate(self, prompt: str) -> str:
		try:
			return await self._primary_generate(prompt)
		except (httpx.HTTPError, KeyError, IndexError, ValueError) as err:
			if self._fallback_client is None:
				raise
			logger.warning("Gemini call failed (%s); trying OpenRouter", err)
			return await self._fallback_generate(prompt, err)

	async def _primary_generate(self, prompt: str) -> str:
		payload = {
			"contents": [{"role": "user", "parts": [{"text": prompt}]}],
			"generationConfig": self._generation_config(),
		}
		if self._key_in_query:
			params, headers = {"key": self.api_key}, {}
		else:
			params, headers = {}, {"x-goog-api-key": self.api_key}
		r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
		r.raise_for_status()
		return _candidate_text(r.json())

	async def _fallback_generate(self, prompt: str, primary_error: Exception) -> str:
		headers = {
			"Authorization": f"Bearer {settings.openrouter_api_key}",
			"Content-Type": "application/json",
			"HTTP-Referer": settings.openrouter_referer,
			"X-Title": settings.openrouter_title,
		}
		payload = {
			"model": settings.openrouter_model,
			"messages": [{"role": "user", "content": prompt}],
			"temperature": settings.gemini_temperature,
			"top_p": settings.gemini_top_p,
		}
		try:
			r = await self._fallback_client.post(settings.openrouter_base_url, headers=headers, json=payload)
			r.raise_for_status()
			return r.json()["choices"][0]["message"]["content"]
		except (httpx.HTTPError, KeyError, IndexError, ValueError) as fallback_err:
			raise RuntimeError(
				f"Gemini call failed ({primary_error}); OpenRouter fallback failed too ({fallback_err})"
			) from fallback_err

	async def aclose(self) -> None:
		await self._client.aclose()
		if self._fallback_client is not None:
			await self._fallback_client.aclose()


def default_generator_factory() -> TextGenerator:
	schema = QUESTION_LIST_SCHEMA if settings.gemini_structured_output else None
	return GeminiClient(response_schema=schema)


def get_generator_factory() -> GeneratorFactory:
	return default_generator_factory
