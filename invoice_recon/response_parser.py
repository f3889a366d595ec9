"""
Best-effort JSON recovery from model output.

Models asked for "JSON only" still wrap answers in markdown fences or add
prose around them. Three strategies are tried in a fixed order; each returns
None instead of raising.
"""

import json
import re
from typing import Any, Callable, Optional, Tuple

import logging

logger = logging.getLogger(__name__)

FENCE_PATTERN = re.compile(r'```(?:json)?\s*([\s\S]*?)```', re.IGNORECASE)


def _loads(text: str) -> Optional[Any]:
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return None


def parse_direct(text: str) -> Optional[Any]:
    """The whole response is JSON."""
    return _loads(text)


def parse_fenced(text: str) -> Optional[Any]:
    """JSON inside a ```json fenced block."""
    match = FENCE_PATTERN.search(text)
    if not match:
        return None
    return _loads(match.group(1))


def parse_brace_scan(text: str) -> Optional[Any]:
    """The substring between the first '{' and the last '}'."""
    start = text.find('{')
    end = text.rfind('}') + 1
    if start < 0 or end <= start:
        return None
    return _loads(text[start:end])


PARSE_STRATEGIES: Tuple[Tuple[str, Callable[[str], Optional[Any]]], ...] = (
    ('direct', parse_direct),
    ('fenced', parse_fenced),
    ('brace_scan', parse_brace_scan),
)


def parse_model_output(text: Optional[str]) -> Optional[Any]:
    """
    Parse model output text into a JSON value.

    Args:
        text: Raw text returned by the model.

    Returns:
        The parsed value from the first strategy that succeeds, or None.
    """
    if not text:
        return None
    for name, strategy in PARSE_STRATEGIES:
        parsed = strategy(text)
        if parsed is not None:
            logger.debug(f"Model output parsed with '{name}' strategy")
            return parsed
    logger.warning(f"Could not parse model output as JSON ({len(text)} chars)")
    return None
