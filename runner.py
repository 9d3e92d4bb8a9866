"""
Run an audit on a daemon thread with its own event loop, so a synchronous
caller (the Streamlit app) can poll progress and pause, resume or cancel the
run between reruns.

Controls are handed to the audit's loop with ``call_soon_threadsafe``; the
orchestrator itself is only ever touched from that loop.
"""

import asyncio
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence

from models import AuditError, AuditRunConfig, Finding, Progress
from orchestrator import AuditCallbacks, AuditOrchestrator

logger = logging.getLogger(__name__)


class BackgroundAudit:
    def __init__(self, urls: Sequence[str], config: AuditRunConfig, **orchestrator_kwargs):
        self.urls = list(urls)
        self.config = config

        self._lock = threading.Lock()
        self._progress = Progress(current_url=self.urls[0] if self.urls else "",
                                  completed=0, total=len(self.urls))
        self._findings: List[Finding] = []
        self._errors: List[AuditError] = []
        self._failure: Optional[str] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None

        self.orchestrator = AuditOrchestrator(AuditCallbacks(
            on_progress=self._on_progress,
            on_results=self._on_results,
            on_error=self._on_error,
        ), **orchestrator_kwargs)

    # -----------------------------
    # Callbacks (audit thread)
    # -----------------------------
    def _on_progress(self, progress: Progress) -> None:
        with self._lock:
            self._progress = progress

    def _on_results(self, batch: List[Finding]) -> None:
        with self._lock:
            self._findings.extend(batch)

    def _on_error(self, error: AuditError) -> None:
        with self._lock:
            self._errors.append(error)

    # -----------------------------
    # Lifecycle (caller thread)
    # -----------------------------
    def start(self) -> None:
        if self._thread is not None:
            raise RuntimeError("This audit has already been started")
        ready = threading.Event()

        def _runner():
            loop = asyncio.new_event_loop()
            asyncio.set_event_loop(loop)
            # queued first, so controls sent after ready run once the audit is under way
            task = loop.create_task(self.orchestrator.start(self.urls, self.config))
            with self._lock:
                self._loop = loop
            ready.set()
            try:
                loop.run_until_complete(task)
            except Exception as exc:
                logger.exception("Background audit failed to run")
                with self._lock:
                    self._failure = str(exc) or type(exc).__name__
            finally:
                with self._lock:
                    self._loop = None
                loop.close()

        self._thread = threading.Thread(target=_runner, name="audit-runner", daemon=True)
        self._thread.start()
        ready.wait()

    def _control(self, action) -> bool:
        with self._lock:
            if self._loop is None:
                return False
            self._loop.call_soon_threadsafe(action)
            return True

    def pause(self) -> bool:
        return self._control(self.orchestrator.pause)

    def resume(self) -> bool:
        return self._control(self.orchestrator.resume)

    def cancel(self) -> bool:
        return self._control(self.orchestrator.cancel)

    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def join(self, timeout: Optional[float] = None) -> bool:
        if self._thread is not None:
            self._thread.join(timeout)
        return not self.is_alive()

    def snapshot(self) -> Dict[str, Any]:
        status = self.orchestrator.state.status
        with self._lock:
            return {
                "status": status,
                "running": self.is_alive(),
                "current_url": self._progress.current_url,
                "completed": self._progress.completed,
                "total": self._progress.total,
                "findings": list(self._findings),
                "errors": list(self._errors),
                "failure": self._failure,
            }
