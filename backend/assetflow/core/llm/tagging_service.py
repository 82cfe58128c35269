"""
Vision tagging via an OpenAI-compatible chat completions endpoint.

The medium thumbnail is sent inline as a base64 data URL together with the
asset's title and filename; the model answers with JSON:

    {"tags": [{"label": "mountain", "confidence": 0.92}, ...]}

Normalisation (canonical tag form, thresholds, limits) is done by the tagging stage,
not here.
"""

import base64
import json
import logging
import re
from functools import lru_cache
from typing import Any, List, Mapping, Optional

import httpx
from openai import OpenAI

from assetflow.config import settings
from assetflow.core.pipeline.interfaces import TagCandidate
from assetflow.core.pipeline.models import TagGenerationError

logger = logging.getLogger("assetflow.llm.tagging")

SYSTEM_PROMPT = (
    "You label images for a digital asset library. "
    "Return short, concrete, lower-case tags describing subjects, setting, style and mood. "
    "Respond ONLY as compact JSON: {\"tags\": [{\"label\": str, \"confidence\": float 0-1}]}"
)


def _strip_code_fence(text: str) -> str:
    text = re.sub(r"^```(?:json)?\s*", "", text.strip())
    return re.sub(r"\s*```$", "", text).strip()


def parse_tag_response(content: Optional[str]) -> List[TagCandidate]:
    """Parse the model's JSON answer; plain string tags get confidence 1.0."""
    if not content:
        raise TagGenerationError("Empty response from tagging model")
    try:
        payload = json.loads(_strip_code_fence(content))
    except json.JSONDecodeError as e:
        raise TagGenerationError(f"Tagging model returned invalid JSON: {e}") from e

    items = payload.get("tags") if isinstance(payload, dict) else payload
    if not isinstance(items, list):
        raise TagGenerationError("Tagging model response has no tag list")

    candidates = []
    for item in items:
        if isinstance(item, str):
            candidates.append(TagCandidate(label=item))
        elif isinstance(item, dict) and isinstance(item.get("label"), str):
            try:
                confidence = float(item.get("confidence", 1.0))
            except (TypeError, ValueError):
                confidence = 0.0
            candidates.append(TagCandidate(label=item["label"], confidence=confidence))
    return candidates


class VisionTagGenerator:
    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        base_url: str = "https://api.openai.com/v1",
        timeout: float = 60.0,
        max_retries: int = 3,
        max_tags: int = 15,
    ):
        self.model = model
        self.max_tags = max_tags
        self._client: Optional[OpenAI] = None

        if not api_key:
            logger.warning("No LLM API key configured; AI tagging unavailable")
            return

        self._client = OpenAI(
            api_key=api_key,
            base_url=base_url,
            http_client=httpx.Client(timeout=timeout),
            max_retries=max_retries,
        )

    @classmethod
    def from_settings(cls, settings) -> "VisionTagGenerator":
        return cls(
            api_key=settings.openai_api_key,
            model=settings.openai_model,
            base_url=settings.openai_base_url,
            timeout=settings.openai_timeout,
            max_retries=settings.openai_max_retries,
            max_tags=settings.ai_tag_max_tags,
        )

    def is_available(self) -> bool:
        return self._client is not None

    def generate(self, image: bytes, context: Mapping[str, Any]) -> List[TagCandidate]:
        if self._client is None:
            raise TagGenerationError("LLM client not available")

        hints = ", ".join(f"{k}: {v}" for k, v in context.items() if v)
        data_url = "data:image/jpeg;base64," + base64.b64encode(image).decode("ascii")

        try:
            resp = self._client.chat.completions.create(
                model=self.model,
                temperature=0,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {
                        "role": "user",
                        "content": [
                            {"type": "text", "text": f"Tag this image (up to {self.max_tags} tags). {hints}".strip()},
                            {"type": "image_url", "image_url": {"url": data_url}},
                        ],
                    },
                ],
                max_tokens=500,
            )
        except Exception as e:
            raise TagGenerationError(f"Tagging request failed: {e}") from e

        return parse_tag_response(resp.choices[0].message.content)


@lru_cache()
def get_tag_generator() -> VisionTagGenerator:
    """Process-wide generator; its HTTP connection pool is reused across tasks."""
    return VisionTagGenerator.from_settings(settings)
