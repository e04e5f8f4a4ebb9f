"""Normalize and defang every field before it reaches the registry.

This is the only place loosely typed GitHub data is coerced: text goes
through a real HTML parser, URLs through `urllib.parse`, star counts through
a numeric check. Entity encoding happens here and only here; `&` leaves as
`&amp;` so the site templates must not escape again.
"""

from __future__ import annotations

import math
import re
import warnings
from collections.abc import Mapping
from typing import Any
from urllib.parse import urlsplit

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning, NavigableString

from adopters.core.schema import AdopterEntry

MAX_TEXT_LENGTH = 200

GITHUB_URL_PREFIXES = ("https://github.com/",)
AVATAR_URL_PREFIXES = (
    "https://avatars.githubusercontent.com/",
    "https://github.com/",
)

# Dropped together with everything inside them
_NON_TEXT_TAGS = ("script", "style", "textarea", "option", "noscript")
_ESCAPED_ANGLE_RE = re.compile(r"\\u003[cCeE]")

_TEXT_FIELDS = (
    "owner",
    "repo",
    "full_name",
    "description",
    "language",
    "default_branch",
    "file_path",
    "date_added",
)


def _strip_markup(text: str) -> str:
    with warnings.catch_warnings():
        warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
        soup = BeautifulSoup(text, "html.parser")
    for tag in soup.find_all(_NON_TEXT_TAGS):
        tag.decompose()
    # Exact type check skips comments, doctypes and CDATA sections
    return "".join(s for s in soup.find_all(string=True) if type(s) is NavigableString)


def _strip_angles(text: str) -> str:
    previous = None
    while text != previous:
        previous = text
        text = _ESCAPED_ANGLE_RE.sub("", text)
        text = text.replace("<", "").replace(">", "")
    return text


def _utf16_len(text: str) -> int:
    return len(text.encode("utf-16-le")) // 2


def _encode_and_truncate(text: str, limit: int) -> str:
    out: list[str] = []
    size = 0
    for ch in text:
        piece = "&amp;" if ch == "&" else ch
        width = _utf16_len(piece)
        if size + width > limit:
            break
        out.append(piece)
        size += width
    return "".join(out)


def sanitize_text(value: Any) -> str:
    """Plain text with no markup, no angle brackets, at most 200 code units."""
    if value is None:
        return ""
    if not isinstance(value, str):
        value = str(value)
    # Lone surrogates (valid in JSON, unencodable anywhere else) become U+FFFD
    value = value.encode("utf-16-le", "surrogatepass").decode("utf-16-le", "replace")
    text = _strip_markup(value)
    text = _strip_angles(text)
    return _encode_and_truncate(text, MAX_TEXT_LENGTH)


def sanitize_url(value: Any, allowed_prefixes: tuple[str, ...] | list[str]) -> str:
    """Return value unchanged if it is an allow-listed https URL, else ""."""
    if not isinstance(value, str):
        return ""
    if not any(value.startswith(p) for p in allowed_prefixes):
        return ""

    allowed_hosts = {urlsplit(p).hostname for p in allowed_prefixes}
    try:
        parsed = urlsplit(value)
        hostname = parsed.hostname
        # "https://github.com@evil.com" style userinfo spoofing
        if parsed.username or parsed.password:
            return ""
    except ValueError:
        return ""

    if parsed.scheme != "https":
        return ""
    if hostname not in allowed_hosts:
        return ""
    return value


def sanitize_stars(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    if not math.isfinite(value):
        return 0
    return max(0, math.floor(value))


def sanitize_entry(obj: Any) -> AdopterEntry | None:
    if not isinstance(obj, Mapping):
        return None

    fields: dict[str, Any] = {name: sanitize_text(obj.get(name)) for name in _TEXT_FIELDS}
    fields["stars"] = sanitize_stars(obj.get("stars"))
    fields["avatar"] = sanitize_url(obj.get("avatar"), AVATAR_URL_PREFIXES)
    fields["url"] = sanitize_url(obj.get("url"), GITHUB_URL_PREFIXES)
    fields["file_url"] = sanitize_url(obj.get("file_url"), GITHUB_URL_PREFIXES)
    return AdopterEntry(**fields)


def sanitize_collection(items: Any) -> list[AdopterEntry]:
    """Sanitize a list of raw entries, dropping anything without a valid url."""
    if not isinstance(items, list):
        return []
    entries = (sanitize_entry(item) for item in items)
    return [e for e in entries if e is not None and e.url != ""]
