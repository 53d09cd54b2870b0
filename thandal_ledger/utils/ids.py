"""Identifier parsing helpers"""

import uuid
from typing import Type


def parse_uuid(value, error_cls: Type[Exception], label: str = "id") -> uuid.UUID:
    """Coerce a string or UUID; malformed ids surface as the caller's not-found error"""
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except (ValueError, TypeError, AttributeError) as e:
        raise error_cls(f"Invalid {label}: {value!r}") from e
