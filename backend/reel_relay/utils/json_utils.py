"""
JSON extraction from model responses.

Generative models often wrap JSON in markdown fences or surround it with
prose. These helpers find the first complete JSON object and parse it.

Example:
    from reel_relay.utils.json_utils import parse_json_object

    data = parse_json_object('Sure!\\n```json\\n{"title": "Hi"}\\n```')
    # {'title': 'Hi'}
"""

import json
import logging
import re
from typing import Any

logger = logging.getLogger(__name__)

CODE_FENCE_PATTERN = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def extract_json_object(text: str) -> str:
    """
    Return the first balanced {...} block in text, or "" when there is none.

    Braces inside JSON strings are ignored while balancing.
    """
    if not text:
        return ""

    fenced = CODE_FENCE_PATTERN.search(text)
    body = fenced.group(1) if fenced else text

    start = body.find("{")
    if start == -1:
        return ""

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(body)):
        char = body[index]
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return body[start : index + 1]

    # Unbalanced; let the parser report it
    return body[start:]


def parse_json_object(text: str) -> dict[str, Any] | None:
    """
    Extract and parse a JSON object from a model response.

    Args:
        text: Raw model response

    Returns:
        Parsed dict, or None if no valid object was found
    """
    candidate = extract_json_object(text)
    if not candidate:
        logger.warning("No JSON object found in model response")
        return None

    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        preview = candidate[:200] + "..." if len(candidate) > 200 else candidate
        logger.warning(f"Failed to parse JSON: {e}. Input: {preview}")
        return None

    return data if isinstance(data, dict) else None
