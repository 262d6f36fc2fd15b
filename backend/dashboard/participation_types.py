"""Classification of free-text participation types entered upstream."""

from __future__ import annotations

from typing import Any, Optional

DEFAULT_PARTICIPATION_TYPE = "Individual"

# Upstream data entry is inconsistent ("Team", "teams", "Group Project", ...);
# any value containing one of these tokens counts as team-based.
TEAM_BASED_TOKENS = ("team", "teams", "group", "collaborative")


def normalize_participation_type(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    return str(value).strip().lower()


def is_team_based_participation(participation_type: Any) -> bool:
    normalized = normalize_participation_type(participation_type)
    if not normalized:
        return False
    return any(normalized == token or token in normalized for token in TEAM_BASED_TOKENS)


def resolve_participation_type(*candidates: Optional[str]) -> str:
    """Return the first non-blank candidate, or the individual default."""
    for candidate in candidates:
        if candidate is not None and str(candidate).strip():
            return str(candidate)
    return DEFAULT_PARTICIPATION_TYPE


__all__ = [
    "DEFAULT_PARTICIPATION_TYPE",
    "TEAM_BASED_TOKENS",
    "is_team_based_participation",
    "normalize_participation_type",
    "resolve_participation_type",
]
