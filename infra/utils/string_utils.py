"""String helpers for console summaries."""

import re
from typing import Iterable, List


def mask_secret(value: str, visible: int = 4) -> str:
    """Hide all but the last ``visible`` characters of a secret."""
    if not value:
        return ""
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * 8 + value[-visible:]


def matching_lines(text: str, pattern: str) -> List[str]:
    """Return the lines of ``text`` matching regex ``pattern`` (stripped)."""
    regex = re.compile(pattern)
    return [line.strip() for line in text.splitlines() if regex.search(line)]


def format_list(items: Iterable[str], bullet: str = "  • ") -> str:
    return "\n".join(f"{bullet}{item}" for item in items)
