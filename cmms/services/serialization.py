from __future__ import annotations

from sqlalchemy import inspect


def model_to_dict(row, *, exclude: set[str] | None = None) -> dict | None:
    """Flat dict of a mapped row's column attributes."""
    if row is None:
        return None
    skip = exclude or set()
    return {
        attr.key: getattr(row, attr.key)
        for attr in inspect(row).mapper.column_attrs
        if attr.key not in skip
    }
