"""
Bounded-concurrency crawl orchestration under a single/limited/deep policy
"""

import asyncio
import heapq
import itertools
import logging
import time
from typing import Awaitable, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

import httpx

from knowledge_base.exceptions import ConfigurationError, PageFetchError, ValidationError
from .config import CrawlConfig, CrawlerSettings
from .fetcher import PageFetcher
from .models import CrawlResult, CrawlStats, Page
from .url_filter import UrlFilter, normalize_url

logger = logging.getLogger(__name__)

# Receives each successfully fetched page and returns the token count it produced
PageHandler = Callable[[Page], Awaitable[int]]


class CrawlOrchestrator:
    """Traverses a site from a seed URL and hands every fetched page to a handler.

    At most ``settings.concurrency`` fetches are in flight; the next queued
    URL starts as soon as any of them finishes. The frontier is ordered by
    hop count, and a URL later reached by a shorter path has its depth
    lowered, so hop limits always apply to the shortest path from the seed.
    A failed page is recorded in the stats and never aborts the crawl. The
    crawl stops early only on the overall timeout, after which the pages
    gathered so far are returned, or on a ConfigurationError from the page
    handler, which no further page could avoid.
    """

    def __init__(self, settings: Optional[CrawlerSettings] = None,
                 page_handler: Optional[PageHandler] = None,
                 client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or CrawlerSettings()
        self.page_handler = page_handler
        self.client = client
        self._reset()

    def _reset(self) -> None:
        self._depths: Dict[str, int] = {}
        self._frontier: List[Tuple[int, int, str]] = []
        self._sequence = itertools.count()
        self._started: Set[str] = set()
        self._links: Dict[str, List[str]] = {}
        self._fetched: Dict[str, Page] = {}
        self._pages: List[Page] = []
        self._failed_pages: List[str] = []
        self._errors: List[str] = []
        self._total_tokens = 0
        self._current_url: Optional[str] = None
        self._page_limit: Optional[int] = None

    async def crawl(self, url: str, config: CrawlConfig,
                    timeout: Optional[float] = None) -> CrawlResult:
        """Crawl ``url`` under ``config`` within ``timeout`` seconds"""
        parsed = urlparse(url or '')
        if parsed.scheme not in ('http', 'https') or not parsed.netloc:
            raise ValidationError(f"Invalid URL: {url!r} must be an absolute http(s) URL")

        budget = timeout if timeout is not None else self.settings.timeout_for(config.mode)
        self._reset()
        self._page_limit = config.page_limit
        url_filter = UrlFilter(url, self.settings)

        seed = normalize_url(url)
        self._push(seed, 0)

        logger.info(
            f"Starting {config.mode.value} crawl of {seed} "
            f"(max_pages={config.page_limit}, max_depth={config.depth_limit}, timeout={budget:.0f}s)"
        )

        start_time = time.monotonic()
        timed_out = False
        async with PageFetcher(self.settings, client=self.client) as fetcher:
            try:
                async with asyncio.timeout(budget):
                    await self._traverse(fetcher, url_filter, config)
            except TimeoutError:
                timed_out = True
                message = (
                    f"Crawl timed out after {budget:.0f}s; "
                    f"{len(self._pages)} pages completed before expiry"
                )
                logger.warning(message)
                self._errors.append(message)

        return self._build_result(time.monotonic() - start_time, timed_out)

    def _push(self, url: str, depth: int) -> None:
        self._depths[url] = depth
        heapq.heappush(self._frontier, (depth, next(self._sequence), url))

    def _has_capacity(self, in_flight: int) -> bool:
        # Only successes count toward the cap, so a failed fetch frees its slot
        if self._page_limit is None:
            return True
        return len(self._pages) + in_flight < self._page_limit

    async def _traverse(self, fetcher: PageFetcher, url_filter: UrlFilter,
                        config: CrawlConfig) -> None:
        in_flight: Dict[asyncio.Task, str] = {}
        try:
            while True:
                while (self._frontier and len(in_flight) < self.settings.concurrency
                       and self._has_capacity(len(in_flight))):
                    depth, _, page_url = heapq.heappop(self._frontier)
                    if page_url in self._started:
                        continue
                    self._started.add(page_url)
                    task = asyncio.create_task(self._visit(fetcher, page_url, depth))
                    in_flight[task] = page_url

                if not in_flight:
                    break

                done, _ = await asyncio.wait(in_flight, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    page_url = in_flight.pop(task)
                    links = task.result()
                    if links:
                        self._links[page_url] = links
                        self._expand(url_filter, page_url, config.depth_limit)
        finally:
            for task in in_flight:
                task.cancel()
            if in_flight:
                await asyncio.gather(*in_flight, return_exceptions=True)

    async def _visit(self, fetcher: PageFetcher, url: str, depth: int) -> Optional[List[str]]:
        """Fetch one page and hand it to the pipeline; returns its links.

        Page failures are recorded, not raised. Only cancellation and
        ConfigurationError escape.
        """
        self._current_url = url
        try:
            fetched = await fetcher.fetch(url)
        except PageFetchError as e:
            self._record_failure(url, e.message)
            return None
        except Exception as e:
            self._record_failure(url, f"Error crawling {url}: {e}")
            return None

        page = Page(url=url, content=fetched.content, title=fetched.title, depth=depth)

        tokens = len(page.content)
        if self.page_handler is not None:
            try:
                tokens = await self.page_handler(page)
            except ConfigurationError:
                raise
            except Exception as e:
                self._record_failure(url, f"Error processing {url}: {e}")
                return None

        self._pages.append(page)
        self._fetched[url] = page
        self._total_tokens += tokens
        logger.debug(f"Processed {url} (depth {depth}, {tokens} tokens)")
        return fetched.links

    def _expand(self, url_filter: UrlFilter, page_url: str, depth_limit: Optional[int]) -> None:
        """Queue the links of a fetched page one hop further from the seed"""
        depth = self._depths[page_url]
        if depth_limit is not None and depth >= depth_limit:
            return
        for href in self._links.get(page_url, ()):
            normalized = self._accept(url_filter, href, page_url)
            if normalized is None:
                continue
            known = self._depths.get(normalized)
            if known is not None and known <= depth + 1:
                continue
            if normalized not in self._started:
                self._push(normalized, depth + 1)
                continue
            # Shorter path to a page already fetched or in flight
            self._depths[normalized] = depth + 1
            page = self._fetched.get(normalized)
            if page is not None:
                page.depth = depth + 1
                self._expand(url_filter, normalized, depth_limit)

    def _accept(self, url_filter: UrlFilter, href: str, base_url: str) -> Optional[str]:
        absolute = url_filter.resolve(href, base_url)
        if absolute is None:
            return None
        should_follow, reason = url_filter.should_follow(absolute)
        if not should_follow:
            logger.debug(f"Skipping {absolute}: {reason}")
            return None
        try:
            return normalize_url(absolute)
        except ValueError:
            return None

    def _record_failure(self, url: str, message: str) -> None:
        logger.warning(f"Failed to crawl {url}: {message}")
        self._failed_pages.append(url)
        self._errors.append(message)

    def _build_result(self, duration: float, timed_out: bool) -> CrawlResult:
        stats = CrawlStats(
            pages_found=len(self._depths),
            pages_processed=len(self._pages),
            failed_pages=list(self._failed_pages),
            errors=list(self._errors),
            total_tokens=self._total_tokens,
            crawl_duration=duration,
            timed_out=timed_out,
        )
        logger.info(
            f"Crawl finished: {stats.pages_processed} processed, "
            f"{len(stats.failed_pages)} failed, {stats.pages_found} found in {duration:.2f}s"
        )
        return CrawlResult(pages=list(self._pages), stats=stats)

    def progress(self) -> Dict[str, Optional[object]]:
        """Get current crawling progress"""
        total = len(self._depths)
        if self._page_limit is not None:
            total = min(total, self._page_limit)
        return {
            'processed': len(self._pages),
            'total': total,
            'current_url': self._current_url,
        }
