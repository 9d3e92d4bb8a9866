"""
Audit orchestrator: drives the scheduler over a URL list, runs every rule on
each fetched page and reports progress, findings and errors to the caller.

Failure isolation:
- a rule raising is logged and the remaining rules still run;
- a fetch failing is recorded as an error for that URL and its rules are skipped;
- anything escaping the scheduler is reported with url="system" and the run
  still completes.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from bs4 import BeautifulSoup

from config import PAUSE_POLL_SECONDS, PROXY_ENDPOINT
from errors import AuditAlreadyRunning, AuditCancelled, FetchFailed, FetchTimeout
from models import ACTIVE_STATUSES, AuditError, AuditRunConfig, Finding, Progress, RunState, RunStatus
from rules import RULES, Rule
from scanner_web import DocumentFetcher, make_page_client
from scheduler import RateLimitedScheduler

logger = logging.getLogger(__name__)

SYSTEM_URL = "system"


def _noop(*args, **kwargs) -> None:
    return None


@dataclass
class AuditCallbacks:
    on_progress: Callable[[Progress], None] = _noop
    on_results: Callable[[List[Finding]], None] = _noop
    on_error: Callable[[AuditError], None] = _noop
    on_complete: Callable[[], None] = _noop


class AuditOrchestrator:
    """
    Owns one run at a time.

    ``fetcher`` is anything with ``await fetch(url, signal) -> BeautifulSoup``;
    when omitted, each run builds a ``DocumentFetcher`` over the proxy (or a
    direct client when no proxy endpoint is configured) and closes it at the end.
    """

    def __init__(self, callbacks: Optional[AuditCallbacks] = None, fetcher=None,
                 rules: Optional[Sequence[Rule]] = None, proxy_endpoint: str = PROXY_ENDPOINT,
                 poll_interval: float = PAUSE_POLL_SECONDS):
        self.callbacks = callbacks or AuditCallbacks()
        self.rules = list(rules) if rules is not None else list(RULES)
        self.proxy_endpoint = proxy_endpoint
        self.poll_interval = poll_interval

        self._fetcher = fetcher
        self._state = RunState()
        self._results: List[Finding] = []
        self._urls: List[str] = []
        self._cancel: Optional[asyncio.Event] = None
        self._scheduler: Optional[RateLimitedScheduler] = None

    # -----------------------------
    # Read side
    # -----------------------------
    @property
    def state(self) -> RunState:
        return self._state.snapshot()

    @property
    def results(self) -> List[Finding]:
        return list(self._results)

    def is_running(self) -> bool:
        return self._state.status == RunStatus.RUNNING

    def is_paused(self) -> bool:
        return self._state.status == RunStatus.PAUSED

    def _cancelled(self) -> bool:
        return self._cancel is not None and self._cancel.is_set()

    # -----------------------------
    # Lifecycle
    # -----------------------------
    async def start(self, urls: Sequence[str], config: AuditRunConfig) -> None:
        if self._state.status in ACTIVE_STATUSES:
            raise AuditAlreadyRunning("An audit is already in progress")
        urls = list(urls)
        if not urls:
            raise ValueError("At least one URL is required to start an audit")

        self._urls = urls
        self._results = []
        self._cancel = asyncio.Event()
        self._state = RunState(status=RunStatus.RUNNING, total=len(urls),
                               current_url=urls[0])
        self._scheduler = RateLimitedScheduler(config.concurrency, config.inter_batch_delay,
                                               poll_interval=self.poll_interval)
        logger.info("Audit started: %d urls, concurrency=%d, delay=%dms",
                    len(urls), config.concurrency, config.inter_batch_delay_ms)

        fetcher, page_client = self._fetcher, None
        if fetcher is None:
            page_client = make_page_client(self.proxy_endpoint)
            fetcher = DocumentFetcher(page_client, request_timeout=config.per_fetch_timeout)

        try:
            await self._scheduler.run(urls, lambda url: self._process(url, fetcher), self._cancel)
        except AuditCancelled:
            logger.info("Audit cancelled after %d/%d urls", self._state.completed, self._state.total)
        except Exception as e:
            logger.exception("Audit run failed")
            self._record_error(SYSTEM_URL, str(e) or type(e).__name__)
        finally:
            if page_client is not None:
                await page_client.aclose()

        if self._state.status == RunStatus.CANCELLED:
            return
        self._state.status = RunStatus.COMPLETED
        self._state.current_url = ""
        logger.info("Audit completed: %d/%d urls, %d findings, %d errors",
                    self._state.completed, self._state.total,
                    len(self._results), len(self._state.errors))
        self.callbacks.on_complete()

    def pause(self) -> None:
        if self._state.status != RunStatus.RUNNING:
            return
        self._state.status = RunStatus.PAUSED
        if self._scheduler is not None:
            self._scheduler.pause()
        logger.info("Audit paused")

    def resume(self) -> None:
        if self._state.status != RunStatus.PAUSED:
            return
        self._state.status = RunStatus.RUNNING
        if self._scheduler is not None:
            self._scheduler.resume()
        logger.info("Audit resumed")

    def cancel(self) -> None:
        if self._state.status not in ACTIVE_STATUSES:
            return
        self._state.status = RunStatus.CANCELLED
        self._cancel.set()
        if self._scheduler is not None:
            self._scheduler.cancel()
        logger.info("Audit cancel requested")

    # -----------------------------
    # Per-URL worker
    # -----------------------------
    async def _process(self, url: str, fetcher) -> None:
        while self._state.status == RunStatus.PAUSED and not self._cancelled():
            await asyncio.sleep(self.poll_interval)
        if self._cancelled():
            return

        try:
            self._emit_progress(url)
            findings = await self._audit_url(url, fetcher)
            # a cancel that lands mid-page drops that page's partial findings
            if self._cancelled():
                return
            if findings:
                self._results.extend(findings)
                self.callbacks.on_results(findings)
        except AuditCancelled:
            return
        except (FetchFailed, FetchTimeout) as e:
            logger.warning("Fetch failed for %s: %s", url, e)
            self._record_error(url, str(e))
        except Exception as e:
            logger.exception("Unexpected failure while auditing %s", url)
            self._record_error(url, str(e) or type(e).__name__)

        if self._cancelled():
            return
        self._state.completed += 1
        done = self._state.completed
        self._emit_progress(self._urls[done] if done < len(self._urls) else "")

    async def _audit_url(self, url: str, fetcher) -> List[Finding]:
        document: BeautifulSoup = await fetcher.fetch(url, self._cancel)
        findings: List[Finding] = []
        for rule in self.rules:
            if self._cancelled():
                raise AuditCancelled("Audit was cancelled")
            try:
                findings.extend(rule.evaluate(url, document, self._cancel))
            except Exception:
                logger.warning("Rule %s failed for %s", rule.name, url, exc_info=True)
        return findings

    # -----------------------------
    # Events
    # -----------------------------
    def _emit_progress(self, current_url: str) -> None:
        if self._cancelled():
            return
        self._state.current_url = current_url
        self.callbacks.on_progress(Progress(current_url=current_url,
                                            completed=self._state.completed,
                                            total=self._state.total))

    def _record_error(self, url: str, message: str) -> None:
        if self._cancelled():
            return
        error = AuditError(url=url, message=message)
        self._state.errors.append(error)
        self.callbacks.on_error(error)
