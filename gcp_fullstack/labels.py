"""GCP label helpers."""

import re

LABEL_KEY_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{0,62}$")
LABEL_VALUE_PATTERN = re.compile(r"^[a-z0-9_-]{0,63}$")


def merge_labels(*label_sets: dict[str, str] | None) -> dict[str, str]:
    """Merge label dictionaries, later sets winning on key conflicts."""
    merged: dict[str, str] = {}
    for labels in label_sets:
        if labels:
            merged.update(labels)
    return merged


def invalid_labels(labels: dict[str, str]) -> list[str]:
    """Return the keys whose key or value breaks GCP label rules."""
    return [
        key
        for key, value in labels.items()
        if not LABEL_KEY_PATTERN.match(key) or not LABEL_VALUE_PATTERN.match(value)
    ]
