"""
Page fetching for the audit: a page client gets raw HTML for a URL, and
``DocumentFetcher`` bounds it in time, races it against the run's cancel
signal and parses the result leniently.

Two page clients share one contract, ``await get_page(url, timeout) -> PageResponse``:

- ``ProxyPageClient`` calls a fetch proxy, ``GET <endpoint>?url=<encoded>``,
  which answers ``{html, status, statusText, url}`` or ``{error}`` with a
  non-2xx status.
- ``DirectPageClient`` fetches the page itself with the same browser-like
  headers the proxy sends.
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from bs4 import BeautifulSoup

from config import FETCH_TIMEOUT_SECONDS, GENERIC_HEADERS, PROXY_ENDPOINT
from errors import AuditCancelled, FetchFailed, FetchTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PageResponse:
    html: str
    status: int
    final_url: str


def parse_document(html: str) -> BeautifulSoup:
    """html.parser never rejects markup; broken pages come back best-effort."""
    return BeautifulSoup(html or "", "html.parser")


def _error_message(r: httpx.Response) -> str:
    try:
        body = r.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"HTTP {r.status_code}: {r.reason_phrase}"


class _HttpxPageClient:
    def __init__(self, client: Optional[httpx.AsyncClient] = None):
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(headers=GENERIC_HEADERS, follow_redirects=True)
        return self._client

    async def aclose(self) -> None:
        if self._owns_client and self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        await self.aclose()

    async def _get(self, url: str, timeout: float, **kwargs) -> httpx.Response:
        try:
            return await self.client.get(url, timeout=timeout, **kwargs)
        except httpx.TimeoutException as e:
            raise FetchTimeout(f"Request timeout after {timeout:.0f}s") from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FetchFailed(f"Failed to fetch: {e}") from e


class DirectPageClient(_HttpxPageClient):
    async def get_page(self, url: str, timeout: float) -> PageResponse:
        r = await self._get(url, timeout)
        if not r.is_success:
            raise FetchFailed(f"HTTP {r.status_code}: {r.reason_phrase}", status_code=r.status_code)
        return PageResponse(html=r.text, status=r.status_code, final_url=str(r.url))


class ProxyPageClient(_HttpxPageClient):
    def __init__(self, endpoint: str, client: Optional[httpx.AsyncClient] = None):
        super().__init__(client)
        self.endpoint = endpoint

    async def get_page(self, url: str, timeout: float) -> PageResponse:
        r = await self._get(self.endpoint, timeout, params={"url": url})
        if not r.is_success:
            raise FetchFailed(_error_message(r), status_code=r.status_code)
        try:
            data = r.json()
        except ValueError as e:
            raise FetchFailed(f"Proxy returned invalid JSON for {url}") from e
        if not isinstance(data, dict):
            raise FetchFailed(f"Proxy returned unexpected payload for {url}: {type(data).__name__}")
        html = data.get("html") or ""
        if not isinstance(html, str):
            raise FetchFailed(f"Proxy returned non-text html for {url}")
        try:
            status = int(data.get("status") or r.status_code)
        except (TypeError, ValueError) as e:
            raise FetchFailed(f"Proxy returned invalid status for {url}: {data.get('status')!r}") from e
        return PageResponse(html=html, status=status, final_url=str(data.get("url") or url))


def make_page_client(endpoint: str = PROXY_ENDPOINT):
    return ProxyPageClient(endpoint) if endpoint else DirectPageClient()


class DocumentFetcher:
    """
    Resolve a URL to a parsed document.

    ``request_timeout`` is handed to the page client; ``max_seconds`` is an
    independent hard cap on the whole fetch. Either one expiring, or the
    cancel signal firing, aborts the request.
    """

    def __init__(self, client, request_timeout: float = FETCH_TIMEOUT_SECONDS,
                 max_seconds: float = FETCH_TIMEOUT_SECONDS):
        self.client = client
        self.request_timeout = request_timeout
        self.max_seconds = max_seconds

    async def fetch(self, url: str, signal: Optional[asyncio.Event] = None) -> BeautifulSoup:
        if signal is not None and signal.is_set():
            raise AuditCancelled("Request was cancelled")

        page_task = asyncio.ensure_future(self.client.get_page(url, self.request_timeout))
        waiters = {page_task}
        cancel_task = None
        if signal is not None:
            cancel_task = asyncio.ensure_future(signal.wait())
            waiters.add(cancel_task)

        try:
            done, _ = await asyncio.wait(waiters, timeout=self.max_seconds,
                                         return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in waiters:
                if not t.done():
                    t.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        if page_task in done:
            page = page_task.result()  # re-raises FetchFailed / FetchTimeout
            logger.debug("Fetched %s (%d chars, final url %s)", url, len(page.html), page.final_url)
            return parse_document(page.html)
        if cancel_task is not None and cancel_task in done:
            raise AuditCancelled("Request was cancelled")
        raise FetchTimeout(f"Request timeout - {url} took longer than {self.max_seconds:.0f}s")
