"""Tolerant JSON extraction from free-form model output.

The response is never assumed to be valid JSON as a whole: the first `{` to
the last `}` (or `[` to `]`) is cut out and parsed, and individual entries are
validated so one malformed item does not discard the rest.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Literal, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

_BRACKETS = {"object": ("{", "}"), "array": ("[", "]")}


def _slice(text: str, kind: str) -> Any | None:
    open_, close = _BRACKETS[kind]
    start = text.find(open_)
    end = text.rfind(close) + 1
    if start < 0 or end <= start:
        return None
    try:
        return json.loads(text[start:end])
    except json.JSONDecodeError:
        return None


def extract_json(text: str | None, prefer: Literal["object", "array"] = "object") -> Any | None:
    """Parse the preferred JSON shape out of `text`, falling back to the other.

    Returns a dict or list, or None when neither shape parses.
    """
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    order = ("object", "array") if prefer == "object" else ("array", "object")
    for kind in order:
        parsed = _slice(text, kind)
        if parsed is not None:
            return parsed
    logger.debug("No JSON found in response: %s", text[:200])
    return None


def validate_items(items: Any, model: type[M]) -> list[M]:
    """Validate each entry of `items` against `model`, dropping invalid ones."""
    if not isinstance(items, list):
        return []
    valid: list[M] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        try:
            valid.append(model.model_validate(item))
        except ValidationError as e:
            logger.debug("Dropped invalid %s: %s", model.__name__, e.errors()[:1])
    return valid


def validate_object(data: Any, model: type[M]) -> M | None:
    if not isinstance(data, dict):
        return None
    try:
        return model.model_validate(data)
    except ValidationError as e:
        logger.debug("Invalid %s: %s", model.__name__, e.errors()[:1])
        return None
