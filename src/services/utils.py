"""Shared helpers for service-layer queries."""


def escape_ilike(value: str) -> str:
    r"""Escape LIKE wildcards so user search text matches literally (use with escape='\\')."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
