"""Row-level transformations shared by the stages."""

from __future__ import annotations

from typing import Any, Iterable, Mapping

# MySQL's "latin1" is Windows-1252 in practice.
LEGACY_ENCODING = "cp1252"


def normalize_text(value: Any) -> Any:
    """
    Coerce text to valid 4-byte UTF-8 (utf8mb4) content.

    Bytes are decoded as UTF-8, falling back to the legacy single-byte
    encoding. Strings carrying lone surrogates are repaired. Other values are
    returned untouched.
    """

    if value is None:
        return None
    if isinstance(value, memoryview):
        value = value.tobytes()
    if isinstance(value, (bytes, bytearray)):
        raw = bytes(value)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            return raw.decode(LEGACY_ENCODING, errors="replace")
    if isinstance(value, str):
        try:
            value.encode("utf-8")
        except UnicodeEncodeError:
            return value.encode("utf-8", errors="replace").decode("utf-8")
        return value
    return value


def normalize_columns(row: Mapping[str, Any], columns: Iterable[str]) -> dict[str, Any]:
    """Return a copy of ``row`` with ``columns`` passed through ``normalize_text``."""

    normalized = dict(row)
    for column in columns:
        if column in normalized:
            normalized[column] = normalize_text(normalized[column])
    return normalized


def strip_prefix(key: str, prefix: str) -> str:
    if prefix and key.startswith(prefix):
        return key[len(prefix):]
    return key


def swap_prefix(key: str, source_prefix: str, target_prefix: str) -> str:
    """Replace a leading ``source_prefix`` with ``target_prefix``."""

    if source_prefix and key.startswith(source_prefix):
        return f"{target_prefix}{key[len(source_prefix):]}"
    return key
