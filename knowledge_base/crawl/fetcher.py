"""
HTTP page fetching with retry/backoff and HTML to text extraction
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple

import html2text
import httpx
from bs4 import BeautifulSoup

from knowledge_base.exceptions import PageFetchError
from .config import CrawlerSettings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
HTML_CONTENT_TYPES = ('text/html', 'application/xhtml+xml', 'text/plain')


@dataclass
class FetchedPage:
    url: str
    title: Optional[str]
    content: str
    links: List[str] = field(default_factory=list)


class PageFetcher:
    """Fetches pages over a shared async HTTP client"""

    def __init__(self, settings: Optional[CrawlerSettings] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or CrawlerSettings()
        self._client = client
        self._owns_client = client is None

    async def __aenter__(self) -> "PageFetcher":
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self.settings.request_timeout,
                follow_redirects=True,
                headers={'User-Agent': self.settings.user_agent},
            )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def fetch(self, url: str) -> FetchedPage:
        """Fetch and parse a page, raising PageFetchError on failure"""
        html = await self.fetch_with_retry(url)
        try:
            title, content, links = self.parse(html)
        except Exception as e:
            raise PageFetchError(url, f"parse error: {e}") from e

        if not content:
            raise PageFetchError(url, "no extractable content")

        return FetchedPage(url=url, title=title, content=content, links=links)

    async def fetch_with_retry(self, url: str) -> str:
        """Fetch raw HTML with exponential backoff on transient errors"""
        max_retries = self.settings.max_retries
        last_error: Optional[PageFetchError] = None

        for attempt in range(max_retries + 1):
            try:
                html = await self._fetch_once(url)
                if html.strip():
                    return html
                last_error = PageFetchError(url, "empty response body", retryable=True)
                logger.warning(f"Empty HTML response from {url}, attempt {attempt + 1}")
            except PageFetchError as e:
                last_error = e
                logger.warning(f"Attempt {attempt + 1} failed for {url}: {e.reason}")
                if not e.retryable:
                    break

            if attempt < max_retries:
                backoff = self.settings.retry_backoff * (2 ** attempt)
                logger.debug(f"Retrying {url} in {backoff:.1f}s")
                await asyncio.sleep(backoff)

        raise last_error or PageFetchError(url, "failed to fetch content")

    async def _fetch_once(self, url: str) -> str:
        if self._client is None:
            raise RuntimeError("PageFetcher used outside of its async context")

        try:
            response = await self._client.get(url)
        except httpx.TimeoutException as e:
            raise PageFetchError(url, f"timeout: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise PageFetchError(url, f"network error: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise PageFetchError(
                url,
                f"HTTP {response.status_code}: {response.reason_phrase}",
                status_code=response.status_code,
                retryable=response.status_code in RETRYABLE_STATUS or response.status_code >= 500,
            )

        content_type = response.headers.get('content-type', '').split(';')[0].strip().lower()
        if content_type and content_type not in HTML_CONTENT_TYPES:
            raise PageFetchError(url, f"unsupported content type: {content_type}")

        try:
            return response.text
        except (UnicodeDecodeError, LookupError) as e:
            raise PageFetchError(url, f"decode error: {e}") from e

    @staticmethod
    def parse(html: str) -> Tuple[Optional[str], str, List[str]]:
        """Extract title, markdown text and raw hrefs from HTML"""
        soup = BeautifulSoup(html, 'html.parser')

        title_tag = soup.find('title')
        title = title_tag.get_text().strip() if title_tag else None

        links = [a['href'] for a in soup.find_all('a', href=True)]

        # Remove unwanted elements
        for element in soup(['head', 'script', 'style', 'noscript']):
            element.decompose()
        for anchor in soup.find_all('a'):
            del anchor['href']

        converter = html2text.HTML2Text()
        converter.ignore_links = True
        converter.ignore_images = True
        converter.body_width = 0
        content = converter.handle(str(soup)).strip()

        return title or None, content, links
