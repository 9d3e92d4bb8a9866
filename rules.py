"""
Accessibility rules run against one parsed page.

Every rule has the same shape, ``evaluate(url, soup, signal=None) -> List[Finding]``,
and reads nothing but the document it is given. When ``signal`` (an
``asyncio.Event`` shared with the run) is set, a rule stops and returns ``[]``.
Rules do not catch their own errors; the orchestrator isolates them.
"""

import asyncio
import re
from typing import Callable, List, NamedTuple, Optional

from bs4 import BeautifulSoup, Comment, Doctype, Tag

from config import (
    EXCLUDED_PHRASES,
    ICON_CLASS_HINTS,
    OFFICE_EXTENSIONS,
    PDF_EXTENSION,
    TRIGGER_PHRASES,
    VALID_TLDS,
)
from models import Finding, FindingCategory
from utils import contains_phrase, extract_filename, resolve_url, strip_query

Signal = Optional[asyncio.Event]

RAW_URL_RE = re.compile(r"(?<!@)\b(?:https?://|www\.)[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}(?:/[^\s<>\"']*)?")
HEADING_RE = re.compile(r"^h[1-6]$")
HIDDEN_TEXT_TAGS = ["script", "style", "noscript", "template"]


def _cancelled(signal: Signal) -> bool:
    return signal is not None and signal.is_set()


def _text(tag: Tag) -> str:
    return tag.get_text().strip() if isinstance(tag, Tag) else ""


# -----------------------------
# Images
# -----------------------------
def check_images(url: str, soup: BeautifulSoup, signal: Signal = None) -> List[Finding]:
    findings: List[Finding] = []
    for img in soup.find_all("img"):
        if _cancelled(signal): return []
        alt = img.get("alt")
        src = img.get("src") or ""
        filename = extract_filename(src)
        if alt is None or alt.strip() == "":
            findings.append(Finding(url, FindingCategory.IMAGE_MISSING_ALT,
                                    target_url=src, image_filename=filename))
        else:
            findings.append(Finding(url, FindingCategory.IMAGE_WITH_ALT, details=f'alt="{alt}"',
                                    target_url=src, image_filename=filename))
    return findings


# -----------------------------
# Links
# -----------------------------
def _is_reportable_raw_url(candidate: str) -> bool:
    if "mailto:" in candidate or "@" in candidate:
        return False
    return any(candidate.lower().endswith(tld) for tld in VALID_TLDS)


def _visible_text(soup: BeautifulSoup) -> str:
    root = soup.body or soup
    parts = []
    for s in root.find_all(string=True):
        if isinstance(s, (Comment, Doctype)) or s.find_parent(HIDDEN_TEXT_TAGS) is not None:
            continue
        parts.append(str(s))
    return " ".join(parts)


def check_links(url: str, soup: BeautifulSoup, signal: Signal = None) -> List[Finding]:
    findings: List[Finding] = []
    for a in soup.find_all("a", href=True):
        if _cancelled(signal): return []
        text = _text(a)
        if contains_phrase(text, TRIGGER_PHRASES) and not contains_phrase(text, EXCLUDED_PHRASES):
            findings.append(Finding(url, FindingCategory.INACCESSIBLE_LINK,
                                    link_text=text, target_url=a["href"]))

    if _cancelled(signal): return []
    for raw in RAW_URL_RE.findall(_visible_text(soup)):
        if _cancelled(signal): return []
        full = raw if raw.startswith(("http://", "https://")) else "https://" + raw
        if _is_reportable_raw_url(full):
            findings.append(Finding(url, FindingCategory.INACCESSIBLE_LINK,
                                    details="Raw URL in page text", link_text=raw, target_url=full))
    return findings


# -----------------------------
# Buttons
# -----------------------------
def _button_label(el: Tag, soup: BeautifulSoup) -> str:
    for attr in ("aria-label", "title", "value"):
        value = (el.get(attr) or "").strip()
        if value:
            return value
    text = _text(el)
    if text:
        return text
    labelled_by = (el.get("aria-labelledby") or "").split()
    texts = [_text(soup.find(id=ref)) for ref in labelled_by]
    return " ".join(t for t in texts if t)


def _is_icon_only(el: Tag) -> bool:
    classes = el.get("class") or []
    class_name = " ".join(classes) if isinstance(classes, list) else str(classes)
    return (
        el.find("svg") is not None
        or el.find("img") is not None
        or any(hint in class_name for hint in ICON_CLASS_HINTS)
    )


def check_buttons(url: str, soup: BeautifulSoup, signal: Signal = None) -> List[Finding]:
    findings: List[Finding] = []
    elements = soup.find_all("button") + [
        el for el in soup.find_all("input")
        if (el.get("type") or "").strip().lower() in ("submit", "button")
    ]
    for el in elements:
        if _cancelled(signal): return []
        label = _button_label(el, soup)
        has_label = bool(label)
        if contains_phrase(label, EXCLUDED_PHRASES):
            continue
        if not has_label and _is_icon_only(el):
            details = "Missing accessible label (icon-only)"
        elif not has_label:
            details = "Missing accessible label"
        elif contains_phrase(label, TRIGGER_PHRASES):
            details = "Vague button label"
        else:
            continue
        findings.append(Finding(url, FindingCategory.INACCESSIBLE_BUTTON, details=details, link_text=label))
    return findings


# -----------------------------
# Headings
# -----------------------------
def heading_sequence_valid(levels: List[int]) -> bool:
    """Only upward skips of more than one level break the hierarchy."""
    return all(curr <= prev + 1 for prev, curr in zip(levels, levels[1:]))


def check_headings(url: str, soup: BeautifulSoup, signal: Signal = None) -> List[Finding]:
    levels = [int(h.name[1]) for h in soup.find_all(HEADING_RE)]
    if not levels or _cancelled(signal):
        return []
    if heading_sequence_valid(levels):
        return []
    sequence = ", ".join(str(level) for level in levels)
    return [Finding(url, FindingCategory.HEADING_HIERARCHY, details=f"Improper heading sequence: {sequence}")]


# -----------------------------
# Tables
# -----------------------------
def table_structure(table: Tag) -> dict:
    caption = table.find("caption")
    thead = table.find("thead")
    if thead is not None and thead.find("th") is not None:
        has_column_headers = True
    else:
        first_row = table.find("tr")
        has_column_headers = first_row is not None and all(
            cell.name == "th" for cell in first_row.find_all(["th", "td"])
        )
    has_row_headers = any(
        tr.find("th") is not None and tr.find("td") is not None for tr in table.find_all("tr")
    )
    return {
        "caption": _text(caption),
        "has_column_headers": has_column_headers,
        "has_row_headers": has_row_headers,
    }


def check_tables(url: str, soup: BeautifulSoup, signal: Signal = None) -> List[Finding]:
    findings: List[Finding] = []
    for table in soup.find_all("table"):
        if _cancelled(signal): return []
        info = table_structure(table)
        details = ", ".join([
            f"Caption: {info['caption'] or 'none'}",
            f"Row headers: {'yes' if info['has_row_headers'] else 'no'}",
            f"Column headers: {'yes' if info['has_column_headers'] else 'no'}",
        ])
        findings.append(Finding(url, FindingCategory.TABLE_INFO, details=details))
    return findings


# -----------------------------
# Document links
# -----------------------------
def check_document_links(url: str, soup: BeautifulSoup, signal: Signal = None) -> List[Finding]:
    findings: List[Finding] = []
    for a in soup.find_all("a", href=True):
        if _cancelled(signal): return []
        href = a["href"].strip()
        clean = strip_query(href).lower()
        if clean.endswith(PDF_EXTENSION):
            category = FindingCategory.PDF_LINK
        elif any(clean.endswith(ext) for ext in OFFICE_EXTENSIONS):
            category = FindingCategory.OFFICE_LINK
        else:
            continue
        findings.append(Finding(url, category, link_text=_text(a), target_url=resolve_url(href, url)))
    return findings


class Rule(NamedTuple):
    name: str
    evaluate: Callable[[str, BeautifulSoup, Signal], List[Finding]]


RULES: List[Rule] = [
    Rule("image", check_images),
    Rule("link", check_links),
    Rule("button", check_buttons),
    Rule("heading", check_headings),
    Rule("table", check_tables),
    Rule("document", check_document_links),
]
