"""Minimal regex-based extraction from trusted, schema-following XML.

These helpers walk element paths with regular expressions instead of a
parser. They never raise on malformed input: a missing tag yields ``None``
(or an empty list). They are only correct for documents whose repeated
elements do not nest inside themselves, which holds for camt.054 entries
and Sumex responses.

Tags are matched by local name, case-insensitively, with an optional
namespace prefix (``<invoice:balance>`` matches ``balance``).
"""

import re
from functools import lru_cache

from xml.sax.saxutils import unescape

_PREFIX = r"(?:[\w.-]+:)?"


@lru_cache(maxsize=256)
def _block_pattern(tag: str) -> re.Pattern:
    name = re.escape(tag)
    return re.compile(
        rf"<{_PREFIX}{name}(?=[\s/>])[^>]*>(.*?)</{_PREFIX}{name}\s*>",
        re.IGNORECASE | re.DOTALL,
    )


@lru_cache(maxsize=256)
def _element_pattern(tag: str) -> re.Pattern:
    name = re.escape(tag)
    return re.compile(
        rf"<{_PREFIX}{name}(?=[\s/>])[^>]*?/>"
        rf"|<{_PREFIX}{name}(?=[\s/>])[^>]*>.*?</{_PREFIX}{name}\s*>",
        re.IGNORECASE | re.DOTALL,
    )


@lru_cache(maxsize=256)
def _attr_pattern(tag: str, attr: str) -> re.Pattern:
    return re.compile(
        rf"<{_PREFIX}{re.escape(tag)}(?=[\s/>])[^>]*?\s{re.escape(attr)}\s*=\s*"
        r"(?:\"([^\"]*)\"|'([^']*)')",
        re.IGNORECASE,
    )


def get_tag_content(xml: str | None, path: str) -> str | None:
    """Return the stripped inner text of the first element at ``path``.

    ``path`` lists tag names separated by ``>``; each step searches inside the
    content found by the previous step, e.g. ``"Acct>Id>IBAN"``.
    """
    if not xml:
        return None
    context = xml
    for tag in path.split(">"):
        match = _block_pattern(tag.strip()).search(context)
        if match is None:
            return None
        context = match.group(1)
    return context.strip()


def get_attr(xml: str | None, tag: str, attr: str) -> str | None:
    """Return the value of ``attr`` on the first ``tag`` element."""
    if not xml:
        return None
    match = _attr_pattern(tag, attr).search(xml)
    if match is None:
        return None
    return match.group(1) if match.group(1) is not None else match.group(2)


def get_all_matches(xml: str | None, tag: str) -> list[str]:
    """Return every top-level ``tag`` element, markup included.

    Self-closing elements (``<error code="1"/>``) are returned too.
    """
    if not xml:
        return []
    return [m.group(0) for m in _element_pattern(tag).finditer(xml)]


def text_of(xml: str | None, path: str) -> str | None:
    """Like :func:`get_tag_content` but decodes XML entities.

    Use for leaf values only; empty results become ``None``.
    """
    value = get_tag_content(xml, path)
    if not value:
        return None
    return unescape(value, {"&quot;": '"', "&apos;": "'"})
