# ─────────────────────────────────────────────────────────────────────────────
# Temp Mail Inbox - A Professional Temporary Email Client
# Copyright © 2024‑2025  zebbern  <https://github.com/zebbern>
# ─────────────────────────────────────────────────────────────────────────────
# Safe rendering of untrusted message bodies: allow-list sanitizing, image
# links and hardened anchors, with a preformatted plain-text fallback.
# ─────────────────────────────────────────────────────────────────────────────

from __future__ import annotations

import html
from dataclasses import dataclass
from typing import Any, Dict, Optional

import bleach
from bleach.css_sanitizer import CSSSanitizer
from bs4 import BeautifulSoup

ALLOWED_TAGS = frozenset({
    "a", "b", "br", "div", "em", "h1", "h2", "h3", "h4", "h5", "h6",
    "i", "li", "ol", "p", "small", "span", "strong", "table", "tbody",
    "td", "th", "thead", "tr", "u", "ul", "img", "blockquote", "hr",
    "pre", "code",
})

ALLOWED_ATTRIBUTES = frozenset({
    "href", "target", "rel", "style", "src", "alt", "width", "height",
    "class", "title",
})

ALLOWED_PROTOCOLS = frozenset({"http", "https", "mailto", "cid", "data"})

DATA_IMAGE_PREFIXES = (
    "data:image/png", "data:image/jpeg", "data:image/jpg", "data:image/gif", "data:image/webp",
)

# Dropped with everything inside them, not just the tags.
DROPPED_CONTAINERS = ("script", "style", "iframe", "object", "embed", "noscript", "template")

LINK_TARGET = "_blank"
LINK_REL = "noopener noreferrer"

_CSS_SANITIZER = CSSSanitizer()


@dataclass(frozen=True)
class RenderInput:
    body_html: Optional[str] = None
    body_text: Optional[str] = None

    @classmethod
    def from_message(cls, message: Dict[str, Any]) -> "RenderInput":
        """Build render input from a mail API message payload.

        The API returns ``html`` as a list of fragments; they are joined.
        """
        body_html = message.get("html")
        if isinstance(body_html, list):
            body_html = "".join(part for part in body_html if part)
        return cls(body_html=body_html or None, body_text=message.get("text"))


def _allow_attribute(tag: str, name: str, value: str) -> bool:
    if name not in ALLOWED_ATTRIBUTES:
        return False
    if name in ("href", "src"):
        lowered = value.strip().lower()
        # Inline images only; image links reuse the image's own src.
        if lowered.startswith("data:"):
            return tag in ("img", "a") and lowered.startswith(DATA_IMAGE_PREFIXES)
    return True


def _strip_containers(markup: str) -> str:
    # html5lib builds the same tree bleach will see, including elements
    # that a browser moves out of a <table>.
    soup = BeautifulSoup(markup, "html5lib")
    for node in soup.find_all(DROPPED_CONTAINERS):
        node.decompose()
    if soup.body is None:
        return ""
    return soup.body.decode_contents()


def _link_images(soup: BeautifulSoup) -> None:
    for img in soup.find_all("img"):
        src = img.get("src")
        if not src or img.find_parent("a") is not None:
            continue
        img.wrap(soup.new_tag("a", href=src))


def _harden_links(soup: BeautifulSoup) -> None:
    for anchor in soup.find_all("a"):
        anchor["target"] = LINK_TARGET
        anchor["rel"] = LINK_REL


def _sort_attributes(soup: BeautifulSoup) -> None:
    # Stable attribute order keeps a second pass byte-identical.
    for tag in soup.find_all(True):
        tag.attrs = dict(sorted(tag.attrs.items()))


def sanitize_html(markup: str) -> str:
    """Return ``markup`` reduced to the allow-list with hardened links."""
    cleaned = bleach.clean(
        _strip_containers(markup),
        tags=ALLOWED_TAGS,
        attributes=_allow_attribute,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
        css_sanitizer=_CSS_SANITIZER,
    )
    soup = BeautifulSoup(cleaned, "html.parser")
    _link_images(soup)
    _harden_links(soup)
    _sort_attributes(soup)
    return str(soup)


def wrap_plain_text(text: str) -> str:
    """Render text verbatim inside ``<pre>``; markup is shown, never parsed."""
    return f"<pre>{html.escape(text, quote=False)}</pre>"


def render(source: RenderInput) -> str:
    """Produce display-safe HTML for a message body.

    HTML wins when present and non-blank, otherwise the plain text is
    shown preformatted. Both absent or empty yields an empty string.
    """
    if source.body_html and source.body_html.strip():
        return sanitize_html(source.body_html)
    if source.body_text:
        return wrap_plain_text(source.body_text)
    return ""
