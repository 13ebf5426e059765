"""JS network capture: render pages in Chromium and record the API calls they make.

Playwright is an optional extra. Without it, or when the browser fails to
launch, capture returns no candidates and the static crawl results stand alone.
"""

import asyncio
import json
from typing import Dict, List, Optional, Sequence
from urllib.parse import urlsplit

from sqlscanner.core.models import AuthSession, JsonEndpoint

try:
    from playwright.async_api import Error as PlaywrightError
    from playwright.async_api import async_playwright
    PLAYWRIGHT_AVAILABLE = True
except ImportError:
    PLAYWRIGHT_AVAILABLE = False

GOTO_TIMEOUT_MS = 20000
# client-side API calls only
API_RESOURCE_TYPES = ("xhr", "fetch")


def _same_origin(base_url: str, url: str) -> bool:
    a, b = urlsplit(base_url), urlsplit(url)
    return a.scheme == b.scheme and a.netloc == b.netloc


def _parse_body(post_data: Optional[str], content_type: str):
    if not post_data:
        return None
    if "application/json" in content_type.lower():
        try:
            return json.loads(post_data)
        except ValueError:
            return post_data
    return post_data


def _browser_cookies(base_url: str, cookies: Dict[str, str]) -> List[Dict[str, str]]:
    return [{"name": k, "value": v, "url": base_url} for k, v in cookies.items()]


async def capture_network(
    pages: Sequence[str],
    base_url: str,
    same_origin_only: bool = True,
    headless: bool = True,
    concurrency: int = 2,
    wait_ms: int = 1000,
    max_pages: Optional[int] = None,
    session: Optional[AuthSession] = None,
    logger=None,
) -> List[JsonEndpoint]:
    """
    Visit up to max_pages of `pages` and return one JsonEndpoint per distinct
    (method, url) request issued while they load.
    """
    if not PLAYWRIGHT_AVAILABLE:
        if logger:
            logger.warn("Playwright not installed; skipping JS network capture")
        return []

    targets = [u for u in pages if u.lower().startswith(("http://", "https://"))]
    limit = max_pages if max_pages is not None else min(10, len(targets))
    targets = targets[:limit]
    concurrency = max(1, min(8, concurrency))
    wait_ms = max(0, wait_ms)
    if not targets:
        return []

    found: List[JsonEndpoint] = []
    seen = set()

    def on_request(request):
        if request.resource_type not in API_RESOURCE_TYPES:
            return
        url = request.url
        if not url.lower().startswith(("http://", "https://")):
            return
        if same_origin_only and not _same_origin(base_url, url):
            return
        method = request.method.upper()
        key = f"{method} {url}"
        if key in seen:
            return
        seen.add(key)
        headers = dict(request.headers)
        found.append(JsonEndpoint(
            url=url,
            method=method,
            body=_parse_body(request.post_data, headers.get("content-type", "")),
            headers=headers,
        ))

    try:
        async with async_playwright() as pw:
            browser = await pw.chromium.launch(headless=headless)
            try:
                context = await browser.new_context(
                    ignore_https_errors=True,
                    extra_http_headers=dict(session.headers) if session else None,
                )
                if session and session.cookies:
                    await context.add_cookies(_browser_cookies(base_url, session.cookies))

                pool = []
                for _ in range(concurrency):
                    page = await context.new_page()
                    page.on("request", on_request)
                    pool.append(page)

                async def visit(page, url):
                    try:
                        await page.goto(url, wait_until="domcontentloaded", timeout=GOTO_TIMEOUT_MS)
                        await page.wait_for_timeout(wait_ms)
                    except (PlaywrightError, asyncio.TimeoutError) as exc:
                        if logger:
                            logger.debug(f"JS capture failed on {url}: {exc}")

                for i in range(0, len(targets), concurrency):
                    batch = targets[i:i + concurrency]
                    await asyncio.gather(*(visit(pool[j], u) for j, u in enumerate(batch)))

                for page in pool:
                    page.remove_listener("request", on_request)
                    await page.close()
            finally:
                await browser.close()
    except PlaywrightError as exc:
        if logger:
            logger.warn(f"JS network capture unavailable: {exc}")

    if logger:
        logger.info(f"JS capture: {len(found)} request(s) observed on {len(targets)} page(s)")
    return found
