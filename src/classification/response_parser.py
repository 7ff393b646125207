"""Recover a JSON object from free-form model output, and size prompts."""
import json
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

# Rough estimation: 1 token ~ 4 characters
CHARS_PER_TOKEN = 4

CODE_FENCE = re.compile(r"```(?:json|JSON)?\s*|\s*```")
OUTERMOST_OBJECT = re.compile(r"\{[\s\S]*\}")
SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def truncate_text(text: str, max_tokens: int = 6000) -> str:
    """Shorten text to a token budget, cutting at a sentence boundary.

    Falls back to the last word boundary when the first sentence alone
    exceeds the budget. Never cuts mid-word.
    """
    max_chars = max_tokens * CHARS_PER_TOKEN
    if len(text) <= max_chars:
        return text

    truncated = ""
    for sentence in SENTENCE_END.split(text):
        candidate = f"{truncated} {sentence}" if truncated else sentence
        if len(candidate) > max_chars:
            break
        truncated = candidate

    if truncated:
        return truncated

    cut = text[:max_chars]
    space = cut.rfind(" ")
    return cut[:space] if space > 0 else cut


def _loads_object(text: str) -> Optional[dict]:
    try:
        value = json.loads(text)
    except (json.JSONDecodeError, ValueError):
        return None
    return value if isinstance(value, dict) else None


def balance_json(fragment: str) -> str:
    """Close whatever a truncated JSON object left open.

    Tracks string state so braces inside values are not counted, closes
    an unterminated string, drops a dangling comma, fills a dangling
    key with null and appends the missing ] and } in nesting order.
    """
    stack: list[str] = []
    in_string = False
    escaped = False

    for char in fragment:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            stack.append("}" if char == "{" else "]")
        elif char in "}]" and stack and stack[-1] == char:
            stack.pop()

    repaired = fragment
    if in_string:
        if escaped:
            repaired = repaired[:-1]
        repaired += '"'

    repaired = repaired.rstrip()
    if repaired.endswith(","):
        repaired = repaired[:-1]
    elif repaired.endswith(":"):
        repaired += " null"

    return repaired + "".join(reversed(stack))


def recover_json(response: str) -> Optional[dict]:
    """Extract a JSON object from model output.

    Tries, in order: the text with code fences removed, the outermost
    ``{...}`` span, and a bracket-balanced repair of everything from the
    first ``{``. Returns None when nothing parses to an object.
    """
    if not response:
        return None

    cleaned = CODE_FENCE.sub("", response).strip()
    parsed = _loads_object(cleaned)
    if parsed is not None:
        return parsed

    match = OUTERMOST_OBJECT.search(cleaned)
    if match:
        parsed = _loads_object(match.group(0))
        if parsed is not None:
            logger.debug("Recovered JSON from surrounding text")
            return parsed

    start = cleaned.find("{")
    if start != -1:
        parsed = _loads_object(balance_json(cleaned[start:]))
        if parsed is not None:
            logger.debug("Recovered JSON by balancing brackets")
            return parsed

    logger.warning("Could not recover JSON from model response: %.200s", response)
    return None
