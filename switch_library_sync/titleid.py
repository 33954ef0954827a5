"""Title id normalization and classification."""

import re

TITLE_ID_RE = re.compile(r"^[0-9a-f]{16}$")

BASE = "base"
UPDATE = "update"
DLC = "dlc"


def normalize_title_id(value: str | None) -> str:
    """Canonical form used for every title id comparison."""
    if not value:
        return ""
    return value.strip().lower()


def normalize_id_set(values) -> set[str]:
    """Build an ignore set from free-form configuration strings."""
    return {normalize_title_id(v) for v in values or [] if normalize_title_id(v)}


def is_valid_title_id(title_id: str) -> bool:
    return bool(TITLE_ID_RE.match(normalize_title_id(title_id)))


def title_type(title_id: str) -> str:
    """
    Classify a title id by its suffix.

    Base ids end in 000, updates in 800, everything else is DLC.
    """
    title_id = normalize_title_id(title_id)
    if not TITLE_ID_RE.match(title_id):
        raise ValueError(f"Invalid title id: {title_id!r}")
    suffix = title_id[13:]
    if suffix == "000":
        return BASE
    if suffix == "800":
        return UPDATE
    return DLC


def base_title_id(title_id: str) -> str:
    """
    Return the id of the base game a title id belongs to.

    DLC ids live one step above their base in the 13-digit prefix, e.g.
    0100abcd12341001 belongs to 0100abcd12340000.
    """
    kind = title_type(title_id)
    title_id = normalize_title_id(title_id)
    if kind in (BASE, UPDATE):
        return title_id[:13] + "000"
    prefix = int(title_id[:13], 16) - 1
    return f"{prefix:013x}000"


def version_to_text(version: int) -> str:
    return f"v{version}"
