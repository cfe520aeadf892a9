"""MIME detection from base64 payload signatures."""

from __future__ import annotations

# Base64 prefixes of well-known file signatures.
_BASE64_SIGNATURES: tuple[tuple[str, str], ...] = (
    ("/9j/", "image/jpeg"),
    ("iVBORw0KGgo", "image/png"),
    ("R0lGOD", "image/gif"),
    ("UklGR", "image/webp"),
    ("JVBERi0", "application/pdf"),
)


def sniff_mime(data_b64: str) -> str | None:
    """Detect a MIME type from the base64 text of a payload."""
    for prefix, mime in _BASE64_SIGNATURES:
        if data_b64.startswith(prefix):
            return mime
    return None
