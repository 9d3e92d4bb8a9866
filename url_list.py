"""
Turn an uploaded CSV or a pasted block of text into the URL list for a run.

The URL is read from the first column. A first row whose first field looks
like a column name (url, link, website, ...) is treated as a header.
"""

import io
from dataclasses import dataclass, field
from typing import Iterable, List, Optional, Tuple, Union
from urllib.parse import urlparse

import pandas as pd

from config import HEADER_KEYWORDS, VALID_TLDS
from utils import URL_RE, normalize_url


@dataclass
class UrlListResult:
    urls: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    total_rows: int = 0
    valid_urls: int = 0


def validate_url(raw: str) -> Tuple[Optional[str], Optional[str]]:
    """Returns (normalized_url, None) or (None, error_message)."""
    u = (raw or "").strip()
    if not u:
        return None, "URL is empty"
    if "mailto:" in u.lower() or ("@" in u and "://" not in u):
        return None, "Email addresses are not supported"
    if not URL_RE.search(u):
        if "://" in u:
            return None, "URL must use HTTP or HTTPS protocol"
        if "." not in u:
            return None, "Invalid URL format"
        u = normalize_url(u)
    try:
        p = urlparse(u)
    except ValueError:
        return None, "Invalid URL format"
    if p.scheme.lower() not in ("http", "https"):
        return None, "URL must use HTTP or HTTPS protocol"
    host = (p.hostname or "").lower()
    if not host:
        return None, "Invalid URL format"
    if not any(host.endswith(tld) for tld in VALID_TLDS):
        return None, "URL does not have a recognized top-level domain"
    return u, None


def _looks_like_header(first_field: str) -> bool:
    f = (first_field or "").strip().lower()
    if validate_url(f)[0] is not None:
        # https://mywebsite.com is data, not a column name
        return False
    return any(k in f for k in HEADER_KEYWORDS)


def parse_url_lines(values: Iterable[str]) -> UrlListResult:
    """
    Validate first-column values in order. Blank rows are expected to be
    dropped already; line numbers in errors count the remaining rows from 1.
    """
    rows = [v.strip() if isinstance(v, str) else "" for v in values]
    result = UrlListResult()
    if not rows:
        result.errors.append("No URLs found")
        return result

    start = 1 if _looks_like_header(rows[0]) else 0
    result.total_rows = len(rows) - start

    seen = set()
    for idx in range(start, len(rows)):
        line_no, value = idx + 1, rows[idx]
        if not value:
            result.errors.append(f"Line {line_no}: Empty URL field")
            continue
        url, err = validate_url(value)
        if err:
            result.errors.append(f"Line {line_no}: {err}")
            continue
        result.valid_urls += 1
        if url not in seen:
            seen.add(url)
            result.urls.append(url)
    return result


def parse_url_text(text: str) -> UrlListResult:
    """One URL per line, as pasted into the batch box."""
    return parse_url_lines([line for line in (text or "").splitlines() if line.strip()])


def read_url_csv(data: Union[bytes, str]) -> UrlListResult:
    """Parse CSV content (bytes from an upload, or text) and validate its first column."""
    text = data.decode("utf-8-sig", errors="replace") if isinstance(data, bytes) else data
    if not text.strip():
        return UrlListResult(errors=["CSV file is empty"])
    try:
        df = pd.read_csv(io.StringIO(text), header=None, usecols=[0], dtype=str,
                         keep_default_na=False, skip_blank_lines=True)
    except (pd.errors.ParserError, pd.errors.EmptyDataError) as e:
        return UrlListResult(errors=[f"Failed to parse CSV: {e}"])
    return parse_url_lines(df.iloc[:, 0].tolist())
