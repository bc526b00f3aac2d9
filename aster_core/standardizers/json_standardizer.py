"""
JSON Standardizer - validate and describe JSON documents
"""

import json
import logging
from typing import Any, Dict

from ..documents import ErrorDocument, JsonDocument, StandardizedDocument
from ..metadata import UploadedFile, build_metadata

logger = logging.getLogger(__name__)


def js_type(value: Any) -> str:
    """Name of a value's type as JavaScript's ``typeof`` reports it."""
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    return "object"  # dict, list and null


def analyze_json_structure(value: Any) -> Dict[str, Any]:
    """Root type plus a key -> type map (first element for arrays)."""
    if isinstance(value, list):
        if not value:
            sample = None
        elif isinstance(value[0], dict):
            sample = {key: js_type(item) for key, item in value[0].items()}
        else:
            sample = js_type(value[0])
        return {"type": "array", "length": len(value), "sampleItemTypes": sample}

    if isinstance(value, dict):
        return {
            "type": "object",
            "keys": list(value.keys()),
            "keyCount": len(value),
            "valueTypes": {key: js_type(item) for key, item in value.items()},
        }

    return {"type": js_type(value), "primitive": True}


def standardize_json(content: str, uploaded: UploadedFile) -> StandardizedDocument:
    """Parse JSON text; invalid JSON yields an ErrorDocument."""
    try:
        parsed = json.loads(content)
    except (ValueError, TypeError, RecursionError) as e:
        logger.warning(f"Invalid JSON in {uploaded.name}: {e}")
        return ErrorDocument(metadata=build_metadata(uploaded, "std-json"), error=f"Invalid JSON: {e}")

    return JsonDocument(
        metadata=build_metadata(uploaded, "std-json"),
        data=parsed,
        analysis=analyze_json_structure(parsed),
    )
