"""OpenAI chat helpers shared by classification, extraction and relevance scoring."""

import json
import re
from typing import Optional, Union

from .config import settings


def _get_openai_client():
    """Get OpenAI client instance."""
    api_key = settings.openai_api_key
    if not api_key:
        raise ValueError("OPENAI_API_KEY not set. Add to .env or environment.")
    from openai import OpenAI
    return OpenAI(api_key=api_key)


def call_llm(
    prompt: str,
    max_tokens: int = 500,
    force_json: bool = False,
    system: Optional[str] = None,
    temperature: Optional[float] = None,
) -> str:
    """Call OpenAI chat model and return response text."""
    client = _get_openai_client()
    kwargs = {}
    if temperature is None:
        temperature = settings.openai_temperature
    kwargs["temperature"] = float(temperature)
    if force_json:
        # If supported by the model, this strongly enforces valid JSON output.
        kwargs["response_format"] = {"type": "json_object"}

    messages = []
    if system:
        messages.append({"role": "system", "content": system})
    messages.append({"role": "user", "content": prompt})

    response = client.chat.completions.create(
        model=settings.openai_model or "gpt-4o-mini",
        max_tokens=max_tokens,
        messages=messages,
        **kwargs,
    )
    return (response.choices[0].message.content or "").strip()


def strip_code_fences(text: str) -> str:
    """Remove markdown code fences the model sometimes wraps JSON in."""
    text = re.sub(r"```json\s*", "", text or "")
    text = re.sub(r"```\w*\s*", "", text)
    return text.strip()


def parse_json_response(text: str) -> Union[dict, list, None]:
    """Parse JSON from LLM response, handling markdown code blocks. None when nothing parses."""
    text = strip_code_fences(text)
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # Try to extract a JSON object or array from surrounding prose
        for pattern in (r"\{[\s\S]*\}", r"\[[\s\S]*\]"):
            match = re.search(pattern, text)
            if match:
                try:
                    return json.loads(match.group())
                except json.JSONDecodeError:
                    continue
        return None
