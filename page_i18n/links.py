from __future__ import annotations

import posixpath
import re
from typing import Optional
from urllib.parse import urljoin, urlsplit

from bs4 import Tag

from .utils import to_posix


ANCHOR_TAGS = ("a", "area")

# Only used to resolve relative hrefs; never appears in output.
_BASE_ORIGIN = "http://localhost"
_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")
_SKIP_PREFIXES = ("#", "mailto:", "tel:", "//")


def localize_href(href: str, target_lang: str, page_path: str) -> Optional[str]:
    """
    Site-internal page link rewritten under ``/<target_lang>``, or None to leave it alone.

    ``page_path`` is the current page relative to the site root, e.g. ``blog/post.html``.
    Fragments, mailto/tel, absolute and protocol-relative URLs, and links to
    assets (any extension other than ``.html``) are skipped.
    """
    if not href or href.startswith(_SKIP_PREFIXES) or _SCHEME_RE.match(href):
        return None

    base = urljoin(_BASE_ORIGIN + "/", to_posix(page_path).lstrip("/"))
    try:
        resolved = urlsplit(urljoin(base, href))
    except ValueError:
        return None
    if f"{resolved.scheme}://{resolved.netloc}" != _BASE_ORIGIN:
        return None

    path = resolved.path or "/"
    ext = posixpath.splitext(path)[1]
    if ext not in ("", ".html"):
        return None

    out = f"/{target_lang}{path}"
    if resolved.query:
        out += f"?{resolved.query}"
    if resolved.fragment:
        out += f"#{resolved.fragment}"
    return out


def localize_links(root: Tag, target_lang: str, page_path: str) -> int:
    """Rewrite relative page links in place; returns how many hrefs changed."""
    changed = 0
    for tag in root.find_all(ANCHOR_TAGS, href=True):
        new_href = localize_href(str(tag["href"]), target_lang, page_path)
        if new_href is not None:
            tag["href"] = new_href
            changed += 1
    return changed
