"""Small coercion helpers shared by config, borsh and the compiler."""

import re
from typing import Any


_CAMEL_RE = re.compile(r"(?<=[a-z0-9])([A-Z])")


def snake_case(value: str) -> str:
    return _CAMEL_RE.sub(r"_\1", value).replace("-", "_").lower()


def program_name(template_id: str) -> str:
    return snake_case(template_id)


def parse_bool(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off", ""}:
        return False
    return default


def ensure_int(value, name: str) -> int:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool):
        raise ValueError(f"{name} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip(), 0)
        except ValueError:
            pass
    raise ValueError(f"{name} must be an integer")
