import json
import logging
from enum import Enum


def _default(value):
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if hasattr(value, "to_dict"):
        return value.to_dict()
    return str(value)


def safe_json_dumps(payload, **kwargs):
    """Serialize payloads that may contain enums, sets or dataclasses."""
    return json.dumps(payload, default=_default, ensure_ascii=False, **kwargs)


def log_event(level, message, **fields):
    payload = {"message": message, **fields}
    try:
        logging.log(level, safe_json_dumps(payload, sort_keys=True))
    except Exception as exc:
        logging.log(level, f"log_event_serialization_failed: {exc} message={message}")
