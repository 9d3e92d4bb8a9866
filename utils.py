import re
from typing import Iterable
from urllib.parse import urljoin, urlparse

from slugify import slugify


URL_RE = re.compile(r"^https?://", re.I)
_WS_RE = re.compile(r"\s+")


def normalize_url(u: str) -> str:
    u = (u or "").strip()
    if not u: return u
    if not URL_RE.search(u): u = "https://" + u
    return u


def normalize_text(text: str) -> str:
    """Lower-case and collapse whitespace, for phrase matching."""
    return _WS_RE.sub(" ", text or "").strip().lower()


def contains_phrase(text: str, phrases: Iterable[str]) -> bool:
    hay = normalize_text(text)
    return any(p.lower() in hay for p in phrases)


def extract_filename(url: str) -> str:
    """Last path segment of a (possibly relative) URL; '' when there is none."""
    try:
        path = urlparse((url or "").strip()).path
    except ValueError:
        return ""
    return path.rsplit("/", 1)[-1]


def strip_query(href: str) -> str:
    return (href or "").split("?", 1)[0].split("#", 1)[0]


def resolve_url(href: str, base_url: str) -> str:
    try:
        return urljoin(base_url, href)
    except ValueError:
        return href


def safe_filename(name: str) -> str:
    return slugify(name or "report")
