"""Crawler: BFS link/form discovery and the smart scan that feeds candidates to the engine."""

import asyncio
import time
from typing import Dict, List, Optional, Sequence
from urllib.parse import urldefrag, urlsplit

import httpx

from sqlscanner.core.auth import merge_session, perform_auth
from sqlscanner.core.browser import capture_network
from sqlscanner.core.client import build_client, clean_headers, cookie_header
from sqlscanner.core.engine import Engine, InvalidTargetError, validate_target
from sqlscanner.core.models import (
    AuthSession, Candidate, CrawlState, EnableFlags, FormTarget, JsonEndpoint,
    ScanOptions, ScanResult, SmartScanOptions, SmartScanProgress, SmartScanResult,
    UrlWithQuery, candidate_key,
)
from sqlscanner.parsers.html import extract_links_and_forms

_JSON_METHODS = {"POST", "PUT", "PATCH"}


# ── Helper functions ───────────────────────────────────────────

def is_same_origin(base_url: str, target_url: str) -> bool:
    """Check if target_url is same-origin as base_url."""
    base = urlsplit(base_url)
    target = urlsplit(target_url)
    return base.scheme == target.scheme and base.netloc == target.netloc


def normalize_url(url: str) -> str:
    """Drop the fragment; the query is part of the page identity."""
    return urldefrag(url)[0]


def should_skip_url(url: str) -> bool:
    """Skip non-HTTP URLs and static assets."""
    lower = url.lower()
    if any(lower.startswith(s) for s in ("javascript:", "mailto:", "tel:", "data:", "#")):
        return True
    skip_ext = (".css", ".js", ".png", ".jpg", ".jpeg", ".gif", ".svg",
                ".ico", ".woff", ".woff2", ".ttf", ".eot", ".pdf",
                ".zip", ".rar", ".7z", ".tar", ".gz", ".mp4", ".mp3", ".webp")
    path = urlsplit(url).path.lower()
    return any(path.endswith(ext) for ext in skip_ext)


def dedupe_candidates(candidates: Sequence[Candidate]) -> List[Candidate]:
    seen = set()
    out = []
    for c in candidates:
        key = candidate_key(c)
        if key in seen:
            continue
        seen.add(key)
        out.append(c)
    return out


def candidate_to_scan_options(
    candidate: Candidate,
    opts: SmartScanOptions,
    headers: Dict[str, str],
    cookies: Dict[str, str],
) -> ScanOptions:
    """Map a discovered candidate onto a Detection Engine run."""
    tech = opts.techniques
    common = dict(
        cookies=dict(cookies),
        time_threshold_ms=opts.time_threshold_ms,
        request_timeout_ms=opts.request_timeout_ms,
        parallel=opts.parallel,
        max_requests=opts.max_requests,
        proxy=opts.proxy,
        verify_tls=opts.verify_tls,
        jitter_ms=opts.jitter_ms,
        refresh_csrf=opts.refresh_csrf,
    )

    def flags(**points) -> EnableFlags:
        base = dict(query=False, path=False, form=False, json=False, header=False, cookie=False)
        base.update(points)
        return EnableFlags(error=tech.error, boolean=tech.boolean, time=tech.time,
                           union=tech.union, **base)

    if isinstance(candidate, UrlWithQuery):
        return ScanOptions(target=candidate.url, method="GET", headers=dict(headers),
                           enable=flags(query=True, path=True), **common)
    if isinstance(candidate, FormTarget):
        return ScanOptions(target=candidate.action, method=candidate.method,
                           headers=dict(headers), form=candidate,
                           enable=flags(form=True), **common)
    if isinstance(candidate, JsonEndpoint):
        method = candidate.method.upper()
        json_on = method in _JSON_METHODS and isinstance(candidate.body, (dict, list))
        merged = dict(headers)
        merged.update({k: v for k, v in clean_headers(candidate.headers).items()
                       if k.lower() != "content-type"})
        return ScanOptions(
            target=candidate.url,
            method=method if method in ("GET", "POST") else "POST",
            headers=merged,
            json_body=candidate.body if json_on else None,
            enable=flags(query=True, path=True, json=json_on),
            **common,
        )
    raise TypeError(f"unknown candidate type: {type(candidate).__name__}")


# ── Crawler class ──────────────────────────────────────────────

class Crawler:
    """
    BFS crawler that discovers links and forms on a target website.

    Pages are fetched concurrently in batches of `concurrency`, taken from the
    front of the queue.

    Usage:
        crawler = Crawler(client, logger, max_depth=2)
        state = await crawler.crawl("http://example.com/")
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        logger=None,
        max_depth: int = 2,
        max_pages: int = 50,
        same_origin_only: bool = True,
        concurrency: int = 4,
        headers: Optional[Dict[str, str]] = None,
        on_progress=None,
    ):
        self.client = client
        self.logger = logger
        self.max_depth = max_depth
        self.max_pages = max_pages
        self.same_origin_only = same_origin_only
        self.concurrency = max(1, min(16, concurrency))
        self.headers = headers
        self.on_progress = on_progress

    async def crawl(self, start_url: str) -> CrawlState:
        state = CrawlState(queue=[(start_url, 0)])

        if self.logger:
            self.logger.info(f"Crawling {start_url} (max depth: {self.max_depth}, "
                             f"max pages: {self.max_pages})")

        while state.queue and state.crawled < self.max_pages:
            batch = state.queue[:self.concurrency]
            del state.queue[:self.concurrency]
            await asyncio.gather(*(self._crawl_one(state, start_url, url, depth)
                                   for url, depth in batch))

        if self.logger:
            self.logger.ok(
                f"Crawl complete: {len(state.visited)} pages visited, "
                f"{len(state.candidates)} candidates found"
            )
        return state

    # ── Internal helpers ───────────────────────────────────────

    async def _crawl_one(self, state: CrawlState, origin: str, url: str, depth: int):
        norm = normalize_url(url)
        if norm in state.visited or state.crawled >= self.max_pages:
            return
        state.visited.add(norm)
        state.pages.append(norm)
        state.crawled += 1

        if self.logger:
            self.logger.debug(f"Visiting [{depth}] {norm}")

        html = await self._fetch(norm)
        if self.on_progress is not None:
            self.on_progress(SmartScanProgress(phase="crawl", crawled_pages=state.crawled,
                                               max_pages=self.max_pages,
                                               candidates_found=len(state.candidates)))
        if html is None:
            return

        links, forms = extract_links_and_forms(norm, html)
        for form in forms:
            state.candidates.append(form)
            if self.logger:
                self.logger.info(f"  Found form: {form.method} {form.action} "
                                 f"({len(form.fields)} fields)")

        if urlsplit(norm).query:
            state.candidates.append(UrlWithQuery(norm))

        for link in links:
            if should_skip_url(link):
                continue
            if self.same_origin_only and not is_same_origin(origin, link):
                continue
            child = normalize_url(link)
            if urlsplit(child).query:
                state.candidates.append(UrlWithQuery(child))
            if depth + 1 <= self.max_depth and child not in state.visited:
                state.queue.append((child, depth + 1))

    async def _fetch(self, url: str) -> Optional[str]:
        """GET a URL and return its HTML body, or None on error."""
        try:
            resp = await self.client.get(url, headers=self.headers)
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            if self.logger:
                self.logger.warn(f"Crawl fetch failed: {url} ({exc})")
            return None
        if resp.status_code >= 400:
            return None
        ctype = resp.headers.get("content-type", "").lower()
        if "text/html" not in ctype and "application/xhtml" not in ctype:
            return None
        return resp.text


# ── Smart scan ─────────────────────────────────────────────────

class SmartScanner:
    """Crawl, optionally capture JS traffic, then scan every unique candidate."""

    def __init__(
        self,
        options: SmartScanOptions,
        logger=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.options = options
        self.logger = logger
        self.transport = transport

    def _emit(self, event: SmartScanProgress):
        if self.options.on_progress is not None:
            self.options.on_progress(event)

    async def _js_candidates(self, state: CrawlState,
                             session: Optional[AuthSession]) -> List[JsonEndpoint]:
        opts = self.options
        pages = state.pages[:min(20, len(state.pages))]
        found = await capture_network(
            pages, opts.base_url,
            same_origin_only=opts.same_origin_only,
            headless=opts.playwright_headless,
            concurrency=opts.playwright_concurrency,
            wait_ms=opts.playwright_wait_ms,
            max_pages=opts.playwright_max_pages,
            session=session,
            logger=self.logger,
        )
        return [c for c in found if not should_skip_url(c.url)]

    async def _scan_candidates(
        self,
        client: httpx.AsyncClient,
        candidates: List[Candidate],
        headers: Dict[str, str],
        cookies: Dict[str, str],
    ) -> List[ScanResult]:
        opts = self.options
        total = len(candidates)
        started = time.perf_counter()
        processed = 0
        sem = asyncio.Semaphore(max(1, min(8, opts.scan_parallel)))

        self._emit(SmartScanProgress(phase="scan", candidates_found=total,
                                     scan_processed=0, scan_total=total))

        async def scan_one(candidate: Candidate) -> ScanResult:
            nonlocal processed
            async with sem:
                scan_opts = candidate_to_scan_options(candidate, opts, headers, cookies)
                try:
                    result = await Engine(scan_opts, logger=self.logger, client=client).run()
                except InvalidTargetError as exc:
                    if self.logger:
                        self.logger.warn(f"Skipping candidate: {exc}")
                    result = ScanResult()
            processed += 1
            per_candidate = (time.perf_counter() - started) * 1000 / processed
            self._emit(SmartScanProgress(
                phase="scan", candidates_found=total, scan_processed=processed,
                scan_total=total, eta_ms=int(per_candidate * (total - processed)),
            ))
            return result

        return list(await asyncio.gather(*(scan_one(c) for c in candidates)))

    async def run(self) -> SmartScanResult:
        opts = self.options
        validate_target(opts.base_url)

        client = build_client(opts.request_timeout_ms, proxy=opts.proxy,
                              verify=opts.verify_tls, transport=self.transport)
        try:
            session = await perform_auth(opts.auth, client=client, logger=self.logger)
            headers, cookies = merge_session(opts.headers, opts.cookies, session)
            crawl_headers = clean_headers(headers)
            if cookies:
                crawl_headers["Cookie"] = cookie_header(cookies)

            crawler = Crawler(
                client, self.logger,
                max_depth=opts.max_depth,
                max_pages=opts.max_pages,
                same_origin_only=opts.same_origin_only,
                concurrency=opts.crawl_concurrency,
                headers=crawl_headers,
                on_progress=opts.on_progress,
            )
            state = await crawler.crawl(opts.base_url)

            candidates: List[Candidate] = list(state.candidates)
            if opts.use_playwright:
                browser_session = AuthSession(headers=clean_headers(headers), cookies=cookies)
                candidates += await self._js_candidates(state, browser_session)

            unique = dedupe_candidates(candidates)
            if self.logger:
                self.logger.info(f"{len(unique)} unique candidates to scan "
                                 f"({len(candidates) - len(unique)} duplicates dropped)")

            results = await self._scan_candidates(client, unique, headers, cookies)
        finally:
            await client.aclose()

        result = SmartScanResult(crawled_pages=len(state.visited), candidates=unique, sqli=results)
        self._emit(SmartScanProgress(phase="done", crawled_pages=result.crawled_pages,
                                     candidates_found=len(unique), scan_processed=len(unique),
                                     scan_total=len(unique), eta_ms=0))
        if self.logger:
            vulns = sum(len(r.findings()) for r in results)
            if vulns:
                self.logger.ok(f"Smart scan complete: {vulns} vulnerable finding(s) "
                               f"across {len(unique)} candidates")
            else:
                self.logger.fail(f"Smart scan complete: no SQL injection found "
                                 f"across {len(unique)} candidates")
        return result


async def smart_scan(
    options: SmartScanOptions,
    logger=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> SmartScanResult:
    return await SmartScanner(options, logger=logger, transport=transport).run()
