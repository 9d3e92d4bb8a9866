# app.py: Accessibility Auditor (concurrent batch audit over a URL list)
# Run: python3 -m streamlit run app.py
from __future__ import annotations

import datetime as dt
import time

import pandas as pd
import streamlit as st

from config import (
    MAX_UPLOAD_BYTES,
    PAUSE_POLL_SECONDS,
    PROXY_ENDPOINT,
    configure_logging,
    default_run_config,
)
from models import AuditRunConfig, FindingCategory, RunStatus
from report import df_to_csv_bytes, export_filename, filter_findings, findings_to_df, summarize
from runner import BackgroundAudit
from url_list import UrlListResult, parse_url_text, read_url_csv

configure_logging()

APP_NAME = "Accessibility Auditor"
DEFAULTS = default_run_config()
REFRESH_SECONDS = max(PAUSE_POLL_SECONDS, 0.5)

st.set_page_config(page_title=APP_NAME, page_icon="✅", layout="wide", initial_sidebar_state="collapsed")
st.markdown("<style>#MainMenu{visibility:hidden} footer{visibility:hidden}</style>", unsafe_allow_html=True)

st.markdown(f"### {APP_NAME}")
st.caption(f"Fetching via {'proxy ' + PROXY_ENDPOINT if PROXY_ENDPOINT else 'direct requests'}.")

scan_tab, results_tab = st.tabs(["🔍 Scan", "📊 Results"])

# -----------------------------
# Session storage
# -----------------------------
if "job" not in st.session_state: st.session_state["job"] = None
if "last_run_meta" not in st.session_state: st.session_state["last_run_meta"] = {}

job: BackgroundAudit | None = st.session_state["job"]
snap = job.snapshot() if job is not None else None

# -----------------------------
# SCAN TAB
# -----------------------------
with scan_tab:
    with st.expander("Scanner settings", expanded=False):
        concurrency = st.slider("Concurrent requests", min_value=1, max_value=10, value=DEFAULTS.concurrency)
        delay_ms = st.number_input("Delay between batches (ms)", min_value=0, max_value=5000,
                                   value=DEFAULTS.inter_batch_delay_ms, step=100)
        timeout_ms = st.number_input("Request timeout (ms)", min_value=5000, max_value=30000,
                                     value=DEFAULTS.per_fetch_timeout_ms, step=1000)

    running = bool(snap and snap["running"])

    st.subheader("URLs")
    upload = st.file_uploader("Upload a CSV (URLs in the first column)", type=["csv"], disabled=running)
    batch_text = st.text_area("…or paste URLs (one per line)", height=180, disabled=running,
                              placeholder="https://example.org/page-1\nhttps://example.org/page-2", key="batch_urls")
    run_btn = st.button("Run Audit", use_container_width=True, key="btn_run", disabled=running)

    if run_btn:
        parsed = UrlListResult()
        if upload is not None:
            data = upload.getvalue()
            if len(data) > MAX_UPLOAD_BYTES:
                st.error(f"File is larger than {MAX_UPLOAD_BYTES // (1024 * 1024)} MB.")
            else:
                parsed = read_url_csv(data)
        elif batch_text.strip():
            parsed = parse_url_text(batch_text)

        for msg in parsed.errors[:20]:
            st.warning(msg)
        if not parsed.urls:
            st.warning("No valid URLs provided.")
        else:
            config = AuditRunConfig(concurrency=int(concurrency), inter_batch_delay_ms=int(delay_ms),
                                    per_fetch_timeout_ms=int(timeout_ms))
            job = BackgroundAudit(parsed.urls, config)
            job.start()
            st.session_state["job"] = job
            st.session_state["last_run_meta"] = {
                "urls": parsed.urls,
                "ts": dt.datetime.now(dt.timezone.utc).isoformat(),
            }
            st.rerun()

    if snap is not None:
        status = snap["status"]
        pct = int(snap["completed"] / max(snap["total"], 1) * 100)
        st.progress(pct)
        if snap["running"]:
            label = "Paused" if status == RunStatus.PAUSED else "Scanning"
            st.write(f"{label} {snap['completed']}/{snap['total']}: {snap['current_url']}")
            st.caption(f"{len(snap['findings'])} finding(s) so far")

            c1, c2 = st.columns(2)
            if status == RunStatus.PAUSED:
                if c1.button("▶️ Resume", use_container_width=True, key="btn_resume"):
                    job.resume(); st.rerun()
            elif c1.button("⏸️ Pause", use_container_width=True, key="btn_pause"):
                job.pause(); st.rerun()
            if c2.button("⏹️ Cancel", use_container_width=True, key="btn_cancel"):
                job.cancel(); st.rerun()
        elif snap["failure"]:
            st.error(f"Audit could not run: {snap['failure']}")
        else:
            st.success(f"Audit {status.value}: {snap['completed']}/{snap['total']} page(s), "
                       f"{len(snap['findings'])} finding(s), {len(snap['errors'])} error(s). "
                       f"See the Results tab.")

# -----------------------------
# RESULTS TAB
# -----------------------------
with results_tab:
    findings = snap["findings"] if snap else []
    errors = snap["errors"] if snap else []
    df = findings_to_df(findings)
    cts = summarize(df)
    c1, c2, c3 = st.columns(3)
    c1.metric("Findings", cts["TOTAL"]); c2.metric("Pages", cts["URLS"])
    c3.metric("Errors", len(errors))

    st.subheader("Findings")
    if df.empty:
        st.info("No results yet. Run an audit on the **Scan** tab.")
    else:
        f1, f2, f3 = st.columns([3, 3, 1])
        with f1: types = st.multiselect("Type", [c.value for c in FindingCategory], default=[])
        with f2: search = st.text_input("Search")
        with f3: only_errors = st.checkbox("Errors only")
        view = filter_findings(df, categories=types, search=search, only_errors=only_errors)
        st.caption(f"Showing {len(view)} of {len(df)}")
        st.dataframe(view, use_container_width=True, hide_index=True)
        st.download_button("⬇️ CSV", data=df_to_csv_bytes(view), file_name=export_filename(),
                           mime="text/csv", use_container_width=True)

    if errors:
        st.subheader("Errors")
        st.dataframe(pd.DataFrame([e.to_dict() for e in errors]), use_container_width=True, hide_index=True)

# keep polling the background run until it settles
if snap is not None and snap["running"]:
    time.sleep(REFRESH_SECONDS)
    st.rerun()
