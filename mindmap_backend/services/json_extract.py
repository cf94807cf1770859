import json
import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)


def _loads_object(text: str) -> Optional[Dict[str, Any]]:
    try:
        value = json.loads(text)
    except (ValueError, RecursionError):
        return None
    return value if isinstance(value, dict) else None


def extract_json_object(raw_text: str) -> Optional[Dict[str, Any]]:
    """
    Best-effort JSON recovery from model output. Never raises.
    1. Parse the whole text
    2. Parse the span from the first ``{`` to the last ``}``
    Returns ``None`` when neither yields a JSON object.
    """
    if not raw_text or not raw_text.strip():
        return None

    cleaned = raw_text.strip()
    parsed = _loads_object(cleaned)
    if parsed is not None:
        return parsed

    start = cleaned.find("{")
    end = cleaned.rfind("}")
    if start == -1 or end <= start:
        logger.debug("No brace span in model output (first 200 chars): %s", raw_text[:200])
        return None

    parsed = _loads_object(cleaned[start:end + 1])
    if parsed is None:
        logger.debug("Brace span is not valid JSON (first 200 chars): %s", raw_text[:200])
    return parsed
