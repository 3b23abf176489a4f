"""
Key casing conversion between the wire format (snake_case) and the
application format (camelCase).
"""

import re
from typing import Any, Callable

_SNAKE_SEGMENT = re.compile(r"[-_]([a-z])")
_UPPER_LETTER = re.compile(r"[A-Z]")


def snake_to_camel(value: str) -> str:
    """student_status -> studentStatus"""
    return _SNAKE_SEGMENT.sub(lambda m: m.group(1).upper(), value)


def camel_to_snake(value: str) -> str:
    """studentStatus -> student_status"""
    return _UPPER_LETTER.sub(lambda m: f"_{m.group(0).lower()}", value)


def convert_keys(obj: Any, converter: Callable[[str], str]) -> Any:
    """Recursively convert the keys of plain dicts (and dicts inside lists)."""
    if isinstance(obj, list):
        return [convert_keys(item, converter) for item in obj]
    # Only plain dicts; uploads and other objects pass through untouched
    if type(obj) is dict:
        return {
            (converter(key) if isinstance(key, str) else key): convert_keys(value, converter)
            for key, value in obj.items()
        }
    return obj


def convert_keys_to_camel(obj: Any) -> Any:
    return convert_keys(obj, snake_to_camel)


def convert_keys_to_snake(obj: Any) -> Any:
    return convert_keys(obj, camel_to_snake)
