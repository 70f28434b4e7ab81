"""
Shared validation functions for Pydantic schemas.

Length limits come from settings so deployments can tune them without a code change.
URL validity is deliberately not checked here: the service layer normalizes the
URL and reports InvalidUrlError itself.
"""
from core.config import get_settings
from services.tag_normalizer import normalize_tag_name


def validate_title_length(title: str | None) -> str | None:
    """Validate title doesn't exceed maximum length."""
    settings = get_settings()
    if title is not None and len(title) > settings.max_title_length:
        raise ValueError(
            f"Title exceeds maximum length of {settings.max_title_length:,} characters "
            f"(got {len(title):,} characters).",
        )
    return title


def validate_note_length(note: str | None) -> str | None:
    """Validate note doesn't exceed maximum length."""
    settings = get_settings()
    if note is not None and len(note) > settings.max_note_length:
        raise ValueError(
            f"Note exceeds maximum length of {settings.max_note_length:,} characters "
            f"(got {len(note):,} characters).",
        )
    return note


def validate_tag_name(name: str) -> str:
    """
    Validate a single tag display name.

    Returns:
        The trimmed display name (case preserved).

    Raises:
        ValueError: If the name is blank or too long.
    """
    settings = get_settings()
    trimmed = name.strip()
    if not normalize_tag_name(trimmed):
        raise ValueError("Tag name cannot be empty")
    if len(trimmed) > settings.max_tag_name_length:
        raise ValueError(
            f"Tag name exceeds maximum length of {settings.max_tag_name_length} characters",
        )
    return trimmed


def validate_tag_names(names: list[str] | None) -> list[str]:
    """
    Validate a list of tag display names.

    Blank entries are skipped and names that normalize identically are collapsed,
    keeping the first occurrence.
    """
    if not names:
        return []
    result = []
    seen: set[str] = set()
    for name in names:
        if not isinstance(name, str) or not name.strip():
            continue
        validated = validate_tag_name(name)
        key = normalize_tag_name(validated)
        if key not in seen:
            seen.add(key)
            result.append(validated)
    return result
