"""Redaction of secret-bearing values."""
import copy
from typing import Any

# Keys whose values never leave the engine unmasked and never take part in diffs
SECRET_KEYS = frozenset({
    "password", "bindPassword", "secret", "passphrase", "base64", "privateKey",
})

MASK = "********"


def mask_secrets(value: Any) -> Any:
    """Deep copy of value with every secret-bearing key replaced by MASK."""
    if isinstance(value, dict):
        return {
            k: (MASK if k in SECRET_KEYS and v is not None else mask_secrets(v))
            for k, v in value.items()
        }
    if isinstance(value, list):
        return [mask_secrets(v) for v in value]
    return copy.deepcopy(value)


def strip_secrets(value: Any) -> Any:
    """Deep copy of value with every secret-bearing key removed."""
    if isinstance(value, dict):
        return {k: strip_secrets(v) for k, v in value.items() if k not in SECRET_KEYS}
    if isinstance(value, list):
        return [strip_secrets(v) for v in value]
    return copy.deepcopy(value)


def contains_secrets(value: Any) -> bool:
    if isinstance(value, dict):
        return any(k in SECRET_KEYS or contains_secrets(v) for k, v in value.items())
    if isinstance(value, list):
        return any(contains_secrets(v) for v in value)
    return False
