from __future__ import annotations
import asyncio
import logging
import httpx
from typing import Any, Dict, List, Optional
from .errors import ParserUnavailable, UpstreamError
from .settings import settings

logger = logging.getLogger(__name__)

# Status codes worth another attempt; everything else fails fast
RETRYABLE_STATUS = {408, 429, 500, 502, 503, 504}


class GeminiClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		model: Optional[str] = None,
		timeout: Optional[float] = None,
		max_retries: Optional[int] = None,
		backoff: Optional[float] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.gemini_api_key
		if not self.api_key:
			raise ParserUnavailable("GEMINI_API_KEY is not configured")
		self.model = model or settings.gemini_model
		self.provider = settings.gemini_provider
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
		self.max_retries = settings.gemini_max_retries if max_retries is None else max_retries
		self.backoff = settings.gemini_retry_backoff_seconds if backoff is None else backoff
		self._client = httpx.AsyncClient(
			timeout=timeout or settings.gemini_timeout_seconds,
			transport=transport,
		)

	async def generate_multimodal(
		self,
		parts: List[Dict[str, Any]],
		*,
		role: str = "user",
		response_schema: Optional[Dict[str, Any]] = None,
	) -> str:
		payload: Dict[str, Any] = {"contents": [{"role": role, "parts": parts}]}
		if response_schema is not None:
			payload["generationConfig"] = {
				"responseMimeType": "application/json",
				"responseSchema": response_schema,
			}
		return await self._post_payload(payload)

	async def _post_payload(self, payload: Dict[str, Any]) -> str:
		params: Dict[str, Any] = {}
		headers: Dict[str, str] = {}
		if self._auth_in_query:
			params["key"] = self.api_key
		else:
			headers["x-goog-api-key"] = self.api_key
		last_error: Optional[str] = None
		for attempt in range(self.max_retries + 1):
			if attempt:
				await asyncio.sleep(self.backoff * attempt)
			try:
				r = await self._client.post(self.base_url, params=params, headers=headers, json=payload)
			except httpx.RequestError as net_err:
				last_error = f"{type(net_err).__name__}: {net_err}"
				logger.warning("Gemini request failed (attempt %d/%d): %s", attempt + 1, self.max_retries + 1, last_error)
				continue
			if r.status_code in RETRYABLE_STATUS:
				last_error = f"HTTP {r.status_code}"
				logger.warning("Gemini returned %s (attempt %d/%d)", r.status_code, attempt + 1, self.max_retries + 1)
				continue
			if r.is_error:
				raise UpstreamError(f"Gemini rejected the request: HTTP {r.status_code}")
			try:
				data = r.json()
				return data["candidates"][0]["content"]["parts"][0]["text"]
			except (ValueError, KeyError, IndexError, TypeError):
				raise UpstreamError(f"Unexpected Gemini response: {r.text[:200]}")
		raise UpstreamError(f"Gemini call failed after {self.max_retries + 1} attempts ({last_error})")

	async def aclose(self) -> None:
		await self._client.aclose()
