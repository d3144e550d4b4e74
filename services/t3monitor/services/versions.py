"""Version string helpers."""

import re

_LEADING_DIGITS = re.compile(r"\d+")


def version_to_integer(version: str) -> int:
    """Encode "major.minor.patch" as a sortable integer.

    Each part contributes its leading digits (0 when there are none); parts
    after the third are ignored. "8.7.12" -> 8007012, "10.4" -> 10004000,
    "9.5.0-dev" -> 9005000.
    """
    parts = (version or "").strip().split(".")
    numbers = []
    for part in (parts + ["", "", ""])[:3]:
        match = _LEADING_DIGITS.match(part)
        numbers.append(int(match.group()) if match else 0)
    major, minor, patch = numbers
    return major * 1_000_000 + min(minor, 999) * 1_000 + min(patch, 999)
