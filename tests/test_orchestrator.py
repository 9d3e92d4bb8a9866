"""
Tests for the audit orchestrator: lifecycle, isolation and event stream.
"""

import asyncio
import time
from typing import Dict, List, Optional

import pytest
from bs4 import BeautifulSoup

from errors import AuditAlreadyRunning, AuditCancelled, FetchFailed, FetchTimeout
from models import AuditRunConfig, FindingCategory, RunStatus
from orchestrator import AuditCallbacks, AuditOrchestrator
from rules import RULES, Rule

POLL = 0.01
FAST = AuditRunConfig(concurrency=2, inter_batch_delay_ms=0, per_fetch_timeout_ms=5000)


class FakeFetcher:
    """Serves canned HTML; a URL mapped to an exception raises it instead."""

    def __init__(self, pages: Dict[str, object], gates: Optional[Dict[str, asyncio.Event]] = None):
        self.pages = pages
        self.gates = gates or {}
        self.calls: List[str] = []
        self.started: Dict[str, asyncio.Event] = {}

    def started_event(self, url: str) -> asyncio.Event:
        return self.started.setdefault(url, asyncio.Event())

    async def fetch(self, url: str, signal: Optional[asyncio.Event] = None) -> BeautifulSoup:
        self.calls.append(url)
        self.started_event(url).set()
        gate = self.gates.get(url)
        if gate is not None:
            waiters = [asyncio.ensure_future(gate.wait())]
            if signal is not None:
                waiters.append(asyncio.ensure_future(signal.wait()))
            done, pending = await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
            for t in pending:
                t.cancel()
            if signal is not None and signal.is_set():
                raise AuditCancelled("Request was cancelled")
        page = self.pages.get(url, "<p>empty</p>")
        if isinstance(page, Exception):
            raise page
        await asyncio.sleep(0)
        return BeautifulSoup(page, "html.parser")


class EventLog:
    def __init__(self):
        self.progress = []
        self.results = []
        self.errors = []
        self.completed = 0

    def callbacks(self) -> AuditCallbacks:
        return AuditCallbacks(
            on_progress=self.progress.append,
            on_results=self.results.append,
            on_error=self.errors.append,
            on_complete=self._complete,
        )

    def _complete(self):
        self.completed += 1

    @property
    def findings(self):
        return [f for batch in self.results for f in batch]


def make(pages, gates=None, rules=None):
    log = EventLog()
    fetcher = FakeFetcher(pages, gates)
    orch = AuditOrchestrator(log.callbacks(), fetcher=fetcher, rules=rules, poll_interval=POLL)
    return orch, fetcher, log


# ═══════════════════════════════════════════════════════
# END TO END
# ═══════════════════════════════════════════════════════

class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_single_page_scenario(self):
        html = '<img src="/x.jpg"><a href="https://a.test">click here</a>'
        orch, _, log = make({"https://a.test": html})

        await orch.start(["https://a.test"], FAST)

        state = orch.state
        assert state.status == RunStatus.COMPLETED
        assert state.completed == 1 and state.total == 1
        assert state.errors == []
        assert log.completed == 1

        by_cat = {f.category: f for f in log.findings}
        assert len(log.findings) == 2
        img = by_cat[FindingCategory.IMAGE_MISSING_ALT]
        assert img.target_url == "/x.jpg" and img.image_filename == "x.jpg"
        link = by_cat[FindingCategory.INACCESSIBLE_LINK]
        assert link.link_text == "click here" and link.target_url == "https://a.test"
        assert orch.results == log.findings

    @pytest.mark.asyncio
    async def test_progress_start_and_end_per_url(self):
        urls = [f"https://s{i}.test" for i in range(6)]
        orch, _, log = make({})

        await orch.start(urls, FAST)

        assert len(log.progress) == 2 * len(urls)
        starts = [p.current_url for p in log.progress if p.current_url in urls]
        assert sorted(set(starts)) == sorted(urls)
        assert [p.completed for p in log.progress][-1] == len(urls)
        assert all(p.total == len(urls) for p in log.progress)
        assert orch.state.completed == orch.state.total

    @pytest.mark.asyncio
    async def test_empty_pages_emit_no_result_batches(self):
        orch, _, log = make({"https://a.test": "<p>nothing to see</p>"})
        await orch.start(["https://a.test"], FAST)
        assert log.results == []
        assert orch.state.status == RunStatus.COMPLETED


# ═══════════════════════════════════════════════════════
# FAILURE ISOLATION
# ═══════════════════════════════════════════════════════

class TestIsolation:

    @pytest.mark.asyncio
    async def test_rule_failure_on_one_url(self):
        bad_url = "https://bad.test"

        def exploding_images(url, soup, signal=None):
            if url == bad_url:
                raise RuntimeError("rule blew up")
            return RULES[0].evaluate(url, soup, signal)

        rules = [Rule("image", exploding_images)] + RULES[1:]
        page = '<img src="/a.png"><h1>t</h1><h3>skip</h3>'
        orch, _, log = make({bad_url: page, "https://good.test": page}, rules=rules)

        await orch.start([bad_url, "https://good.test"], FAST)

        assert orch.state.status == RunStatus.COMPLETED
        assert orch.state.completed == 2
        cats = {(f.source_url, f.category) for f in log.findings}
        assert (bad_url, FindingCategory.HEADING_HIERARCHY) in cats
        assert (bad_url, FindingCategory.IMAGE_MISSING_ALT) not in cats
        assert ("https://good.test", FindingCategory.IMAGE_MISSING_ALT) in cats
        assert ("https://good.test", FindingCategory.HEADING_HIERARCHY) in cats
        assert orch.state.errors == []

    @pytest.mark.asyncio
    async def test_fetch_failures_are_recorded_per_url(self):
        pages = {
            "https://404.test": FetchFailed("HTTP 404: Not Found", status_code=404),
            "https://slow.test": FetchTimeout("Request timeout"),
            "https://ok.test": '<img src="/a.png">',
        }
        orch, _, log = make(pages)

        await orch.start(list(pages), FAST)

        state = orch.state
        assert state.status == RunStatus.COMPLETED
        assert state.completed == 3
        assert {e.url for e in state.errors} == {"https://404.test", "https://slow.test"}
        assert [e.url for e in log.errors] == [e.url for e in state.errors]
        assert [f.source_url for f in log.findings] == ["https://ok.test"]

    @pytest.mark.asyncio
    async def test_system_failure_reported_and_run_completes(self, monkeypatch):
        orch, _, log = make({})

        async def broken_run(self, items, worker, signal=None):
            raise RuntimeError("scheduler exploded")

        monkeypatch.setattr("scheduler.RateLimitedScheduler.run", broken_run)
        await orch.start(["https://a.test"], FAST)

        assert [e.url for e in orch.state.errors] == ["system"]
        assert "scheduler exploded" in orch.state.errors[0].message
        assert orch.state.status == RunStatus.COMPLETED
        assert log.completed == 1


# ═══════════════════════════════════════════════════════
# LIFECYCLE
# ═══════════════════════════════════════════════════════

class TestLifecycle:

    @pytest.mark.asyncio
    async def test_empty_url_list_rejected(self):
        orch, _, _ = make({})
        with pytest.raises(ValueError):
            await orch.start([], FAST)
        assert orch.state.status == RunStatus.IDLE

    @pytest.mark.asyncio
    async def test_start_while_running_rejected(self):
        gate = asyncio.Event()
        orch, fetcher, _ = make({}, gates={"https://a.test": gate})
        task = asyncio.ensure_future(orch.start(["https://a.test"], FAST))
        await asyncio.wait_for(fetcher.started_event("https://a.test").wait(), timeout=1)

        assert orch.is_running()
        with pytest.raises(AuditAlreadyRunning):
            await orch.start(["https://b.test"], FAST)

        gate.set()
        await asyncio.wait_for(task, timeout=1)
        assert orch.state.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_pause_and_resume(self):
        urls = ["https://a.test", "https://b.test", "https://c.test"]
        gate = asyncio.Event()
        orch, fetcher, log = make({}, gates={urls[0]: gate})
        config = AuditRunConfig(concurrency=1, inter_batch_delay_ms=0, per_fetch_timeout_ms=5000)

        task = asyncio.ensure_future(orch.start(urls, config))
        await asyncio.wait_for(fetcher.started_event(urls[0]).wait(), timeout=1)

        orch.pause()
        assert orch.is_paused() and not orch.is_running()
        gate.set()  # in-flight item still finishes
        await asyncio.sleep(0.1)
        assert orch.state.completed == 1
        assert fetcher.calls == [urls[0]]

        orch.resume()
        await asyncio.wait_for(task, timeout=1)
        assert fetcher.calls == urls
        assert orch.state.completed == 3
        assert orch.state.status == RunStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_cancel_mid_run(self):
        urls = [f"https://s{i}.test" for i in range(5)]
        gate = asyncio.Event()
        orch, fetcher, log = make({}, gates={urls[1]: gate})
        config = AuditRunConfig(concurrency=1, inter_batch_delay_ms=0, per_fetch_timeout_ms=5000)

        task = asyncio.ensure_future(orch.start(urls, config))
        await asyncio.wait_for(fetcher.started_event(urls[1]).wait(), timeout=1)
        events_at_cancel = (len(log.progress), len(log.results), len(log.errors))

        orch.cancel()
        await asyncio.wait_for(task, timeout=1)

        state = orch.state
        assert state.status == RunStatus.CANCELLED
        assert state.completed == 1 <= state.total
        assert (len(log.progress), len(log.results), len(log.errors)) == events_at_cancel
        assert log.completed == 0
        assert urls[2] not in fetcher.calls

    @pytest.mark.asyncio
    async def test_cancel_while_paused(self):
        urls = ["https://a.test", "https://b.test"]
        gate = asyncio.Event()
        orch, fetcher, log = make({}, gates={urls[0]: gate})
        config = AuditRunConfig(concurrency=1, inter_batch_delay_ms=0, per_fetch_timeout_ms=5000)

        task = asyncio.ensure_future(orch.start(urls, config))
        await asyncio.wait_for(fetcher.started_event(urls[0]).wait(), timeout=1)
        orch.pause()
        orch.cancel()
        await asyncio.wait_for(task, timeout=1)

        assert orch.state.status == RunStatus.CANCELLED
        assert fetcher.calls == [urls[0]]

    @pytest.mark.asyncio
    async def test_batch_delay_paces_the_run(self):
        urls = ["https://a.test", "https://b.test", "https://c.test"]
        orch, fetcher, log = make({})
        config = AuditRunConfig(concurrency=1, inter_batch_delay_ms=100, per_fetch_timeout_ms=5000)

        start = time.monotonic()
        await orch.start(urls, config)

        # one drain between each pair of pages, none after the last
        assert time.monotonic() - start >= 0.2 - POLL
        assert fetcher.calls == urls
        assert orch.state.status == RunStatus.COMPLETED
        assert len(log.progress) == 2 * len(urls)

    @pytest.mark.asyncio
    async def test_cancel_during_batch_delay(self):
        urls = ["https://a.test", "https://b.test"]
        orch, fetcher, log = make({})
        config = AuditRunConfig(concurrency=1, inter_batch_delay_ms=5000, per_fetch_timeout_ms=5000)

        task = asyncio.ensure_future(orch.start(urls, config))
        for _ in range(100):
            if orch.state.completed == 1:
                break
            await asyncio.sleep(POLL)
        assert orch.state.completed == 1

        cancelled_at = time.monotonic()
        orch.cancel()
        await asyncio.wait_for(task, timeout=1)

        assert time.monotonic() - cancelled_at < 0.5
        assert orch.state.status == RunStatus.CANCELLED
        assert fetcher.calls == [urls[0]]
        assert log.completed == 0

    @pytest.mark.asyncio
    async def test_controls_ignored_when_idle(self):
        orch, _, _ = make({})
        orch.pause()
        orch.resume()
        orch.cancel()
        assert orch.state.status == RunStatus.IDLE

    @pytest.mark.asyncio
    async def test_state_is_a_snapshot(self):
        orch, _, _ = make({"https://a.test": FetchFailed("HTTP 500: boom", 500)})
        await orch.start(["https://a.test"], FAST)
        snap = orch.state
        snap.errors.clear()
        assert len(orch.state.errors) == 1

    @pytest.mark.asyncio
    async def test_can_run_again_after_completion(self):
        orch, _, log = make({"https://a.test": "<img src='/a.png'>"})
        await orch.start(["https://a.test"], FAST)
        await orch.start(["https://a.test"], FAST)
        assert log.completed == 2
        assert len(orch.results) == 1
