"""Tag name normalization."""


def normalize_tag_name(name: str) -> str:
    """
    Return the comparison key for a tag name.

    Total over all strings: leading/trailing whitespace is trimmed and the result
    lowercased. Two tags are the same tag exactly when their keys are equal.
    """
    return name.strip().lower()


def normalize_tag_names(names: list[str]) -> list[str]:
    """
    Normalize a list of tag names, dropping blanks and duplicates.

    First occurrence wins, so the input order is preserved.
    """
    seen: set[str] = set()
    result = []
    for name in names:
        normalized = normalize_tag_name(name)
        if normalized and normalized not in seen:
            seen.add(normalized)
            result.append(normalized)
    return result
