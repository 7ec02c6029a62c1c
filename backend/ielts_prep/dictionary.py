from __future__ import annotations
import logging
import re
import httpx
from typing import Any, Dict, Optional

from .feedback import extract_json_object
from .openai_client import OpenAIClient
from .settings import settings


logger = logging.getLogger(__name__)

LOOKUP_SYSTEM = "You return only valid JSON with the exact keys requested."


def first_sense(definition: str) -> str:
	"""First numbered sense of a dictionary definition, without [Obs.]-style labels."""
	text = (definition or "").strip()
	if not text:
		return ""
	match = re.match(r"^(.*?)(?:\s+\d+\.)", text)
	text = match.group(1) if match else text.split("\n")[0]
	text = re.sub(r"\[[^\]]+\]", "", text)
	return re.sub(r"\s+", " ", text).strip()


class DictionaryClient:
	def __init__(
		self,
		api_key: Optional[str] = None,
		*,
		base_url: Optional[str] = None,
		transport: Optional[httpx.AsyncBaseTransport] = None,
	) -> None:
		self.api_key = api_key or settings.dictionary_api_key
		if not self.api_key:
			raise ValueError("DICTIONARY_API_KEY is not configured")
		self.base_url = base_url or settings.dictionary_base_url
		self._client = httpx.AsyncClient(timeout=settings.openai_timeout_seconds, transport=transport)

	async def define(self, term: str) -> Optional[str]:
		"""Meaning of ``term``, or None when the dictionary does not know it."""
		try:
			r = await self._client.get(self.base_url, params={"word": term}, headers={"X-Api-Key": self.api_key})
		except httpx.RequestError as err:
			logger.warning("Dictionary lookup for %r failed: %s", term, err)
			return None
		if r.status_code != 200:
			logger.warning("Dictionary lookup for %r returned HTTP %s", term, r.status_code)
			return None
		try:
			data = r.json()
		except ValueError:
			return None
		if not isinstance(data, dict) or data.get("valid") is False:
			return None
		return first_sense(str(data.get("definition") or "")) or None

	async def aclose(self) -> None:
		await self._client.aclose()


def build_lookup_prompt(term: str, language: str) -> str:
	return f"""
You are a bilingual English-{language} dictionary assistant.

Your ONLY response must be a single JSON object with EXACTLY these keys:
{{
  "term": "original user input",
  "detected_language": "English" | "{language}",
  "english_meaning": "If the input is English: define it in natural English. Otherwise: translate it to natural English.",
  "translation": "If the input is English: translate it to natural {language}. Otherwise: paraphrase it in natural {language}.",
  "example": "one natural English sentence using the English meaning"
}}

Strict rules:
- All fields must be non-empty strings, never null.
- No extra keys, no markdown, no explanations.

Input: "{term}"
""".strip()


def _first_of(data: Dict[str, Any], *keys: str) -> str:
	for k in keys:
		if data.get(k):
			return str(data[k]).strip()
	return ""


async def lookup_word_ai(term: str) -> Dict[str, str]:
	language = settings.lookup_language
	client = OpenAIClient()
	try:
		raw = await client.chat(build_lookup_prompt(term, language), system=LOOKUP_SYSTEM, temperature=0.3, max_tokens=800)
	finally:
		await client.aclose()
	data = extract_json_object(raw)
	if "term" not in data:
		raise ValueError("AI lookup response has no term")
	return {
		"term": _first_of(data, "term") or term,
		"detected_language": _first_of(data, "detected_language"),
		"english_meaning": _first_of(data, "english_meaning", "englishTranslation", "englishMeaning"),
		"translation": _first_of(data, "translation", f"{language.lower()}Translation", f"{language.lower()}Meaning"),
		"translation_language": language,
		"example": _first_of(data, "example"),
	}
