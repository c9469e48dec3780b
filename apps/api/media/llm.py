import json
import logging
from typing import Any, Optional

from openai import OpenAI

from config import llm_api_key, settings

logger = logging.getLogger(__name__)


def get_llm_client() -> Optional[OpenAI]:
    """Get an OpenAI-compatible client, or None when no usable key is configured."""
    api_key = llm_api_key()
    if not api_key:
        return None
    return OpenAI(
        api_key=api_key,
        base_url=settings.LLM_BASE_URL or None,
        timeout=settings.EXTERNAL_REQUEST_TIMEOUT_SECONDS,
        max_retries=0,
    )


def complete(
    client: OpenAI,
    system_prompt: str,
    user_prompt: str,
    *,
    max_tokens: int = 1500,
    temperature: float = 0.3,
) -> str:
    """Single chat completion; raises on transport errors or an empty reply."""
    response = client.chat.completions.create(
        model=settings.LLM_MODEL,
        messages=[
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": user_prompt},
        ],
        max_tokens=max_tokens,
        temperature=temperature,
    )
    content = (response.choices[0].message.content or "").strip() if response.choices else ""
    if not content:
        raise ValueError("Empty response from language model")
    return content


def parse_json_reply(content: str) -> Any:
    """
    Parse a model reply that must be bare JSON.
    A surrounding markdown code fence is tolerated; any other prose is not.
    """
    text = content.strip()
    if text.startswith("```"):
        text = text.split("\n", 1)[1] if "\n" in text else ""
        if text.rstrip().endswith("```"):
            text = text.rstrip()[:-3]
    return json.loads(text)
