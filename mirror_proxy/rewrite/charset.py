"""Charset helpers used when an HTML body is decoded, rewritten and re-encoded."""

import codecs
from typing import Optional

DEFAULT_CHARSET = "utf-8"
DEFAULT_HTML_CONTENT_TYPE = "text/html; charset=utf-8"


def is_html(content_type: Optional[str]) -> bool:
    """Substring match on ``text/html``; MIME parameters are not parsed."""
    return "text/html" in (content_type or "").lower()


def has_charset(content_type: Optional[str]) -> bool:
    return "charset" in (content_type or "").lower()


def extract_charset(content_type: Optional[str]) -> Optional[str]:
    """Return the charset parameter of a Content-Type value, if any."""
    if not content_type:
        return None
    for param in content_type.split(";")[1:]:
        name, _, value = param.partition("=")
        if name.strip().lower() == "charset":
            value = value.strip().strip("\"'")
            return value or None
    return None


def ensure_charset(content_type: Optional[str]) -> str:
    """Force ``text/html; charset=utf-8`` when no charset token is present."""
    if has_charset(content_type):
        return content_type
    return DEFAULT_HTML_CONTENT_TYPE


def resolve_codec(content_type: Optional[str]) -> str:
    """
    Name of the codec for a body, falling back to UTF-8.

    Raises LookupError for charsets Python does not know.
    """
    charset = extract_charset(content_type) or DEFAULT_CHARSET
    return codecs.lookup(charset).name


def decode_body(body: bytes, codec: str) -> str:
    # surrogateescape keeps invalid bytes so re-encoding is lossless
    return body.decode(codec, errors="surrogateescape")


def encode_body(text: str, codec: str) -> bytes:
    return text.encode(codec, errors="surrogateescape")
