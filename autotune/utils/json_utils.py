"""Best-effort extraction of JSON objects from free-form LLM text."""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

_decoder = json.JSONDecoder()


@dataclass(frozen=True)
class JsonParseResult:
    """Either a parsed object or the reason none could be found."""

    value: Optional[Dict[str, Any]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.value is not None


def parse_json_object(text: Optional[str]) -> JsonParseResult:
    """Return the last well-formed top-level JSON object embedded in ``text``.

    Models often wrap their answer in prose or markdown fences, and sometimes
    echo an example object before the real one, so the trailing object wins.
    Never raises.
    """
    if not text:
        return JsonParseResult(error="empty response")

    last: Optional[Dict[str, Any]] = None
    pos = text.find("{")
    while pos != -1:
        try:
            value, end = _decoder.raw_decode(text, pos)
        except json.JSONDecodeError:
            pos = text.find("{", pos + 1)
            continue
        if isinstance(value, dict):
            last = value
        # Skip past the decoded span so nested objects are not picked up
        pos = text.find("{", end)

    if last is None:
        return JsonParseResult(error="no JSON object found")
    return JsonParseResult(value=last)
