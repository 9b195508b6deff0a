"""
Model reply → JSON object.

Parsing is a two-stage result: a plain parse, then one sanitize-and-reparse
attempt, then a terminal "unparseable" variant. Nothing here raises.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger("scribe.response_parser")

PARSED = "parsed"
SANITIZED = "sanitized"
UNPARSEABLE = "unparseable"

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
# Object keys only: bare or single-quoted names right after { or ,
_BARE_KEY_RE = re.compile(r"([{,]\s*)('?)([A-Za-z0-9_]+)\2\s*:")
_STRING_RE = re.compile(r'("(?:\\.|[^"\\])*")')


@dataclass
class ParseResult:
    status: str
    data: Optional[dict] = None
    reason: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status != UNPARSEABLE


def extract_json_block(text: str) -> Optional[str]:
    """Find the JSON object in a free-text reply (markdown fences tolerated)."""
    if not text:
        return None
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)
    match = _OBJECT_RE.search(text)
    return match.group(0) if match else None


def sanitize(json_str: str) -> str:
    """Strip trailing commas and quote bare object keys, outside string literals."""
    parts = _STRING_RE.split(json_str)
    # Odd indices are the double-quoted literals captured by the split
    for i in range(0, len(parts), 2):
        cleaned = _TRAILING_COMMA_RE.sub(r"\1", parts[i])
        parts[i] = _BARE_KEY_RE.sub(r'\1"\3":', cleaned)
    return "".join(parts)


def _load_object(json_str: str) -> dict:
    data = json.loads(json_str)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return data


def parse_json_object(json_str: str) -> ParseResult:
    """Parse an already-isolated JSON string, sanitizing once on failure."""
    try:
        return ParseResult(PARSED, _load_object(json_str))
    except ValueError as first_error:
        logger.warning(f"Error parsing JSON from response: {first_error}. Attempting to sanitize...")
        try:
            return ParseResult(SANITIZED, _load_object(sanitize(json_str)))
        except ValueError as final_error:
            logger.warning(f"JSON parsing failed after sanitization: {final_error}")
            return ParseResult(UNPARSEABLE, reason=str(final_error))


def parse_model_reply(text: str) -> ParseResult:
    """Extract and parse the JSON object of a free-text model reply."""
    block = extract_json_block(text)
    if block is None:
        logger.warning("No JSON object found in model response")
        return ParseResult(UNPARSEABLE, reason="no JSON object in response")
    return parse_json_object(block)
