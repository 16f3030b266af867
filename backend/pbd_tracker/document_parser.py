from __future__ import annotations
import base64
import json
import logging
import re
from typing import Any, Callable, Dict, List, Optional

from .errors import UpstreamError, ValidationFailed
from .gemini_client import GeminiClient

logger = logging.getLogger(__name__)

STUDENT_LIST_PROMPT = "Extract a list of student names from this file. Return as a JSON array of strings."
DSKP_PROMPT = (
	"Extract Standard Kandungan (SK) and Standard Pembelajaran (SP) from this DSKP document. "
	"Return as a JSON array of objects with 'sk' and 'sp' fields."
)

STUDENT_LIST_SCHEMA: Dict[str, Any] = {"type": "ARRAY", "items": {"type": "STRING"}}
DSKP_SCHEMA: Dict[str, Any] = {
	"type": "ARRAY",
	"items": {
		"type": "OBJECT",
		"properties": {"sk": {"type": "STRING"}, "sp": {"type": "STRING"}},
		"required": ["sk", "sp"],
	},
}

ROSTER_MIME_TYPES = ("application/pdf", "text/plain")
DSKP_MIME_TYPES = ("application/pdf",)


def _extract_json_array(text: str) -> List[Any]:
	try:
		data = json.loads(text)
	except ValueError:
		data = None
		code_block = re.search(r"```(?:json)?\s*([\s\S]*?)\s*```", text)
		candidate = code_block.group(1) if code_block else text[text.find("[") : text.rfind("]") + 1]
		try:
			data = json.loads(candidate)
		except ValueError:
			pass
	if not isinstance(data, list):
		raise UpstreamError("Document parser did not return a JSON array")
	return data


class DocumentParser:
	"""Delegates roster and DSKP extraction to Gemini."""

	def __init__(self, client_factory: Callable[[], GeminiClient] = GeminiClient) -> None:
		self._client_factory = client_factory

	async def _extract(self, prompt: str, data: bytes, mime_type: str, schema: Dict[str, Any]) -> List[Any]:
		client = self._client_factory()
		try:
			parts = [
				{"text": prompt},
				{"inline_data": {"mime_type": mime_type, "data": base64.b64encode(data).decode("ascii")}},
			]
			raw = await client.generate_multimodal(parts, response_schema=schema)
		finally:
			await client.aclose()
		return _extract_json_array(raw)

	async def parse_student_list(self, data: bytes, mime_type: Optional[str]) -> List[str]:
		mime_type = _check_mime(mime_type, ROSTER_MIME_TYPES, allow_images=True)
		items = await self._extract(STUDENT_LIST_PROMPT, data, mime_type, STUDENT_LIST_SCHEMA)
		names = [str(n).strip() for n in items if isinstance(n, (str, int, float)) and str(n).strip()]
		logger.info("Extracted %d student names from %s upload", len(names), mime_type)
		return names

	async def parse_dskp(self, data: bytes, mime_type: Optional[str]) -> List[Dict[str, str]]:
		mime_type = _check_mime(mime_type, DSKP_MIME_TYPES)
		items = await self._extract(DSKP_PROMPT, data, mime_type, DSKP_SCHEMA)
		pairs: List[Dict[str, str]] = []
		for item in items:
			if not isinstance(item, dict):
				continue
			sk = str(item.get("sk") or "").strip()
			sp = str(item.get("sp") or "").strip()
			if sk and sp:
				pairs.append({"sk": sk, "sp": sp})
		logger.info("Extracted %d DSKP items from %s upload", len(pairs), mime_type)
		return pairs


def _check_mime(mime_type: Optional[str], allowed, *, allow_images: bool = False) -> str:
	mime_type = (mime_type or "").split(";")[0].strip().lower()
	if mime_type in allowed or (allow_images and mime_type.startswith("image/")):
		return mime_type
	raise ValidationFailed(f"unsupported file type {mime_type or 'unknown'}")


def get_document_parser() -> DocumentParser:
	return DocumentParser()
