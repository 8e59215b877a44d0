"""Best-effort JSON decoding of LLM output."""

from __future__ import annotations

import json
import re
from typing import Any

from libs.common.errors import LLMParseError

MAX_JSON_CHARS = 50_000

_FENCE = re.compile(r"^```(?:json|JSON)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding markdown code fence, if any."""
    stripped = text.strip()
    match = _FENCE.match(stripped)
    return match.group(1).strip() if match else stripped


def parse_llm_json(text: str) -> Any:
    """Decode a JSON object or array from model output.

    Tolerates code fences and prose around the JSON value.

    Raises:
        LLMParseError: input too large, empty, or no decodable JSON found
    """
    if text is None or not text.strip():
        raise LLMParseError("Empty LLM response")
    if len(text) > MAX_JSON_CHARS:
        raise LLMParseError(f"LLM response exceeds {MAX_JSON_CHARS} characters")

    candidate = strip_code_fences(text)
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        pass

    # Fall back to the first object/array embedded in free text
    decoder = json.JSONDecoder()
    for index, char in enumerate(candidate):
        if char in "{[":
            try:
                value, _ = decoder.raw_decode(candidate, index)
                return value
            except json.JSONDecodeError:
                continue

    raise LLMParseError("No JSON value found in LLM response")
