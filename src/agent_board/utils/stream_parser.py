"""Utilities for parsing JSON Lines streams and JSON-or-JSONL tool output."""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)


def parse_jsonl_to_dicts(
    content: str,
    *,
    strict: bool = False
) -> list[dict[str, Any]]:
    """
    Parse JSONL content into list of dictionaries.

    Args:
        content: JSONL content (one JSON object per line)
        strict: If True, raise on parse errors; if False, skip invalid lines

    Returns:
        List of successfully parsed dictionaries

    Raises:
        json.JSONDecodeError: If strict=True and a line fails to parse
    """
    dicts = []
    for line in content.strip().split('\n'):
        if not line.strip():
            continue

        try:
            data = json.loads(line)
        except json.JSONDecodeError as e:
            if strict:
                raise
            logger.debug(f"Failed to parse JSONL line: {e}")
            continue
        if isinstance(data, dict):
            dicts.append(data)

    return dicts


def parse_json_records(content: str) -> list[dict[str, Any]]:
    """
    Parse output that is a JSON array, a single JSON object, or JSON Lines.

    The first significant character picks the variant:
    ``[`` is a JSON array of records, ``{`` is tried as one (possibly
    pretty-printed) object before falling back to JSON Lines, and anything
    else is JSON Lines with non-JSON lines skipped. Empty output yields an
    empty list.

    Raises:
        json.JSONDecodeError: If the output starts with ``[`` but isn't valid JSON
    """
    stripped = content.strip()
    if not stripped:
        return []

    if stripped[0] == "[":
        data = json.loads(stripped)
        return [item for item in data if isinstance(item, dict)]

    if stripped[0] == "{":
        try:
            data = json.loads(stripped)
        except json.JSONDecodeError:
            pass
        else:
            return [data] if isinstance(data, dict) else []

    return parse_jsonl_to_dicts(stripped)
