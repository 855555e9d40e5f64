from __future__ import annotations

import re
from datetime import date, datetime


_LEADING_INT = re.compile(r'^\s*([+-]?\d+)')
_EMAIL = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')


def is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_leading_int(value) -> int | None:
    """Base-10 integer from the leading digits of `value`; "12abc" -> 12, "abc" -> None."""
    if is_blank(value) or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value == value else None
    match = _LEADING_INT.match(str(value))
    if not match:
        return None
    return int(match.group(1))


def parse_non_negative_int(value, *, field_label: str, default: int = 0) -> int:
    if is_blank(value):
        return default
    parsed = parse_leading_int(value)
    if parsed is None or parsed < 0:
        raise ValueError(f'{field_label} must be a non-negative integer.')
    return parsed


def is_valid_email(value: str | None) -> bool:
    return bool(value) and bool(_EMAIL.match(value))


def normalize_email(value: str | None) -> str:
    return (value or '').strip().lower()


def cell_to_text(value) -> str:
    """Render a spreadsheet cell the way a user would read it."""
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'yes' if value else 'no'
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, datetime):
        if value.time() == datetime.min.time():
            return value.date().isoformat()
        return value.isoformat()
    if isinstance(value, date):
        return value.isoformat()
    return str(value).strip()


def normalize_header(value) -> str:
    return ' '.join(cell_to_text(value).lower().split())


def parse_yes(value: str | None) -> bool:
    return (value or '').strip().lower() in {'yes', 'y', 'true', '1'}
