"""Parsing structured (JSON) replies from chat models."""

import json
import re

_OBJECT_PATTERN = re.compile(r"\{.*\}", re.DOTALL)


def parse_json_reply(raw_text: str) -> dict:
    """Parse a JSON object from a model reply.

    Models often wrap JSON in ```json fences or surround it with prose.
    Fences are stripped first; failing that, the outermost {...} span is
    parsed.

    Raises:
        json.JSONDecodeError: If no JSON object can be recovered
    """
    content = raw_text.strip()

    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]
    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]
    content = content.strip()

    try:
        parsed = json.loads(content)
    except json.JSONDecodeError:
        match = _OBJECT_PATTERN.search(content)
        if not match:
            raise
        parsed = json.loads(match.group(0))

    if not isinstance(parsed, dict):
        raise json.JSONDecodeError("Expected a JSON object", content, 0)
    return parsed
