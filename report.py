import datetime as dt
from typing import Dict, Iterable, List, Optional

import pandas as pd

from models import ERROR_CATEGORIES, Finding
from utils import safe_filename


FIELD_COLUMNS = {
    "source_url": "Full url",
    "category": "Type",
    "details": "Details",
    "link_text": "Link text",
    "target_url": "Target url",
    "image_filename": "Image filename",
}
COLUMNS = list(FIELD_COLUMNS.values())
TEXT_COLUMNS = [c for c in COLUMNS if c != "Type"]


def findings_to_df(findings: Iterable[Finding]) -> pd.DataFrame:
    rows = [f.to_dict() for f in findings]
    return pd.DataFrame(rows, columns=list(FIELD_COLUMNS)).rename(columns=FIELD_COLUMNS)


def filter_findings(df: pd.DataFrame, categories: Optional[List[str]] = None,
                    search: str = "", only_errors: bool = False) -> pd.DataFrame:
    """Filter by category label, case-insensitive text search and error-only view."""
    out = df
    if categories:
        out = out[out["Type"].isin(categories)]
    if only_errors:
        out = out[out["Type"].isin([c.value for c in ERROR_CATEGORIES])]
    needle = (search or "").strip().lower()
    if needle:
        mask = pd.Series(False, index=out.index)
        for col in TEXT_COLUMNS:
            mask |= out[col].str.lower().str.contains(needle, regex=False)
        out = out[mask]
    return out


def summarize(df: pd.DataFrame) -> Dict[str, object]:
    if df.empty:
        return {"TOTAL": 0, "URLS": 0, "BY_TYPE": {}}
    return {
        "TOTAL": int(df.shape[0]),
        "URLS": int(df["Full url"].nunique()),
        "BY_TYPE": {k: int(v) for k, v in df["Type"].value_counts().items()},
    }


def df_to_csv_bytes(df: pd.DataFrame) -> bytes:
    # BOM so spreadsheet tools pick up UTF-8
    return df.to_csv(index=False).encode("utf-8-sig")


def export_filename(prefix: str = "accessibility-audit", now: Optional[dt.datetime] = None) -> str:
    stamp = (now or dt.datetime.now()).strftime("%Y-%m-%d_%H-%M-%S")
    return f"{safe_filename(prefix)}_{stamp}.csv"
