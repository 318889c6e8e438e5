"""
HTML Filters

Sanitizing, repairing and text conversion for HTML message bodies.
"""

import html
import re

import bleach
import html2text
from bs4 import BeautifulSoup

ALLOWED_TAGS = [
    "a", "abbr", "b", "blockquote", "br", "caption", "center", "code", "col",
    "colgroup", "dd", "del", "div", "dl", "dt", "em", "font", "h1", "h2", "h3",
    "h4", "h5", "h6", "hr", "i", "img", "ins", "li", "ol", "p", "pre", "q", "s",
    "small", "span", "strike", "strong", "sub", "sup", "table", "tbody", "td",
    "tfoot", "th", "thead", "tr", "tt", "u", "ul",
]

ALLOWED_ATTRIBUTES = {
    "*": ["align", "class", "dir", "lang", "title", "width", "height"],
    "a": ["href", "name", "target"],
    "font": ["color", "face", "size"],
    "img": ["src", "alt", "border"],
    "table": ["border", "cellpadding", "cellspacing", "bgcolor"],
    "td": ["colspan", "rowspan", "bgcolor", "valign"],
    "th": ["colspan", "rowspan", "bgcolor", "valign"],
}

ALLOWED_PROTOCOLS = ["http", "https", "mailto", "cid", "data"]

_SCRIPT_RE = re.compile(r"<(script|style)\b[^>]*>.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_URL_RE = re.compile(r"(https?://[^\s<>\"']+)")


def sanitize_html(body: str) -> str:
    """
    Strip scripts, styles and unsafe markup from an HTML body.

    Script and style elements are removed together with their content;
    other disallowed tags are unwrapped.
    """
    body = _SCRIPT_RE.sub("", body or "")
    return bleach.clean(
        body,
        tags=ALLOWED_TAGS,
        attributes=ALLOWED_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
        strip_comments=True,
    )


def tidy_html(body: str) -> str:
    """Repair unbalanced markup."""
    soup = BeautifulSoup(body or "", "html.parser")
    return str(soup)


def html_to_text(body: str, wrap: int = 0) -> str:
    """Render an HTML body as plain text."""
    converter = html2text.HTML2Text()
    converter.body_width = wrap
    converter.ignore_images = True
    converter.ignore_emphasis = True
    converter.unicode_snob = True
    return converter.handle(body or "").strip("\n")


def text_to_html(text: str) -> str:
    """Escape plain text for inclusion in an HTML body, linking URLs."""
    escaped = html.escape(text or "", quote=False)
    escaped = _URL_RE.sub(r'<a href="\1">\1</a>', escaped)
    return escaped.replace("\n", "<br />\n")
