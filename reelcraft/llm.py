"""Script, visual-cue and title drafting via an OpenAI-compatible chat API."""

from __future__ import annotations

import json
import logging
from typing import Any

import openai
from openai import AsyncOpenAI

from reelcraft.config import LLMConfig
from reelcraft.errors import (
    InvalidInputError,
    UpstreamError,
    UpstreamRejectedError,
    UpstreamUnavailableError,
)
from reelcraft.models import VisualCue

logger = logging.getLogger(__name__)

_CUE_KEYS = ("visuals", "visual_cues", "keywords", "images", "results")
_MAX_TITLE_CHARS = 100

_SCRIPT_SYSTEM = (
    "You are a scriptwriter for viral short-form videos. "
    "Write spoken narration only, without stage directions or speaker labels."
)
_CONVERSATION_SYSTEM = (
    "You are a scriptwriter for viral short-form video conversations. Write engaging "
    "dialogue. Output ONLY dialogue lines in 'Speaker: text' format, one per line."
)
_VISUALS_SYSTEM = "You pick visuals for short videos. Always respond with valid JSON only."
_TITLE_SYSTEM = "You are a YouTube title expert. Generate viral, engaging titles."


def clean_json_response(text: str) -> str:
    """Strip Markdown code fences around a JSON payload."""
    text = text.strip()
    if text.startswith("```json"):
        text = text[len("```json"):]
    elif text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    return text.strip()


def parse_visual_cues(content: str) -> list[VisualCue]:
    """Parse cues from a bare JSON array or an object wrapping one.

    Entries without a keyword are skipped and duplicates (case-insensitive
    keyword) keep their first occurrence.
    """
    try:
        data: Any = json.loads(clean_json_response(content))
    except json.JSONDecodeError as exc:
        raise UpstreamRejectedError(f"llm: visual cues are not valid JSON: {exc}", body=content) from exc

    cues = cues_from_data(data)
    if cues is None:
        raise UpstreamRejectedError("llm: no visual cue list in response", body=content)
    return cues


def cues_from_data(data: Any) -> list[VisualCue] | None:
    """Cues from decoded JSON/YAML, or None when it holds no cue list."""
    if isinstance(data, dict):
        for key in _CUE_KEYS:
            if isinstance(data.get(key), list):
                data = data[key]
                break
    if not isinstance(data, list):
        return None

    cues: list[VisualCue] = []
    seen: set[str] = set()
    for item in data:
        if isinstance(item, str):
            item = {"keyword": item}
        if not isinstance(item, dict):
            continue
        cue = VisualCue.from_dict(item)
        key = cue.keyword.lower()
        if not key or key in seen:
            continue
        seen.add(key)
        cues.append(cue)
    return cues


def clean_title(title: str) -> str:
    lines = title.strip().splitlines()
    title = lines[0].strip().strip("\"'").strip() if lines else ""
    return title[:_MAX_TITLE_CHARS].strip()


def fallback_title(topic: str, script: str, max_words: int = 8) -> str:
    if topic.strip():
        return topic.strip()
    words = script.split()
    return " ".join(words[:max_words])


class LLMClient:
    """Async wrapper over the chat completions endpoint.

    Usage::

        async with LLMClient(config.llm) as llm:
            script = await llm.generate_script("octopuses")
            cues = await llm.generate_visuals(script, 5)
    """

    def __init__(self, config: LLMConfig, client: AsyncOpenAI | None = None) -> None:
        if client is None and not config.api_key:
            raise InvalidInputError("llm.api_key is not set")
        self.config = config
        self._client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url or None,
            timeout=config.timeout,
            max_retries=0,
        )

    async def __aenter__(self) -> LLMClient:
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.close()

    async def _chat(self, system: str, prompt: str, json_mode: bool = False) -> str:
        kwargs: dict[str, Any] = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(
                model=self.config.model,
                messages=[
                    {"role": "system", "content": system},
                    {"role": "user", "content": prompt},
                ],
                **kwargs,
            )
        except openai.APIStatusError as exc:
            raise _status_error(exc) from exc
        except openai.APIConnectionError as exc:
            raise UpstreamUnavailableError(f"llm: {exc}") from exc

        content = response.choices[0].message.content or ""
        if not content.strip():
            raise UpstreamRejectedError("llm: empty completion")
        return content.strip()

    async def generate_script(self, topic: str) -> str:
        prompt = (
            f"Write a narration of about {self.config.script_length} words about {topic}. "
            "Use high-retention language, short sentences and a hook in the first sentence. "
            "Do not include stage directions or speaker labels. Just the spoken text."
        )
        logger.info("Drafting script about %r", topic)
        return await self._chat(_SCRIPT_SYSTEM, prompt)

    async def generate_conversation(self, topic: str, speakers: list[str]) -> str:
        if not speakers:
            raise InvalidInputError("A conversation needs at least one speaker")
        prompt = (
            f"Write a conversation of about {self.config.script_length} words about {topic}.\n\n"
            f"Speakers: {', '.join(speakers)}\n\n"
            "Each line MUST start with the speaker name followed by a colon, e.g.\n"
            f"{speakers[0]}: First line of dialogue here.\n"
            f"{speakers[-1]}: Response dialogue here.\n\n"
            "Use short punchy sentences, natural back-and-forth and no stage directions."
        )
        logger.info("Drafting conversation about %r with %s", topic, ", ".join(speakers))
        return await self._chat(_CONVERSATION_SYSTEM, prompt)

    async def generate_visuals(self, script: str, count: int | None = None) -> list[VisualCue]:
        count = count or self.config.visual_count
        prompt = (
            f"Pick up to {count} moments of this script that deserve an on-screen image.\n\n"
            f"Script: {script}\n\n"
            'Return JSON: {"visuals": [{"keyword": "word from the script", '
            '"search_query": "specific image search", "type": "image"}]}\n'
            "The keyword MUST appear verbatim in the script. Use type \"gif\" for "
            "reactions or motion, otherwise \"image\"."
        )
        content = await self._chat(_VISUALS_SYSTEM, prompt, json_mode=True)
        cues = parse_visual_cues(content)[:count]
        logger.info("LLM proposed %d visual cue(s)", len(cues))
        return cues

    async def generate_title(self, script: str) -> str:
        prompt = (
            "Generate a catchy YouTube Shorts title for this script. "
            f"Max 60 characters. No quotes. No hashtags. Just the title.\n\nScript: {script}"
        )
        return clean_title(await self._chat(_TITLE_SYSTEM, prompt))


def _status_error(exc: openai.APIStatusError) -> UpstreamError:
    status = exc.status_code
    message = f"llm: HTTP {status}: {exc.message}"
    body = exc.body
    if status == 429 or status >= 500:
        return UpstreamUnavailableError(message, status_code=status, body=body)
    return UpstreamRejectedError(message, status_code=status, body=body)
