"""Detection Engine: per-target injection point discovery and technique scheduling."""

import asyncio
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlsplit

import httpx

from sqlscanner.checkers.base import BaseTechnique
from sqlscanner.checkers.boolean_based import BooleanBased
from sqlscanner.checkers.error_based import ErrorBased
from sqlscanner.checkers.time_based import TimeBased
from sqlscanner.checkers.union_based import UnionBased
from sqlscanner.core.auth import merge_session, perform_auth
from sqlscanner.core.client import (
    ProbeClient, ProbeResponse, build_client, clean_headers, cookie_header,
)
from sqlscanner.core.context import PointState, ScanContext
from sqlscanner.core.discovery import (
    apply_budget, dedupe_points, discover_cookie_points, discover_form_points,
    discover_header_points, discover_json_points, discover_path_points,
    discover_query_points, fetch_and_discover_forms,
)
from sqlscanner.core.models import (
    FormTarget, InjectionPoint, ScanOptions, ScanProgress, ScanResult, ScanTarget,
)


class InvalidTargetError(ValueError):
    """The target URL cannot be scanned at all (no http/https scheme or no host)."""


def validate_target(url: str) -> str:
    try:
        parts = urlsplit(url or "")
    except ValueError as exc:
        raise InvalidTargetError(f"invalid target URL {url!r}: {exc}") from exc
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise InvalidTargetError(f"invalid target URL {url!r}: expected http(s)://host/...")
    return url


class Engine:
    """
    Runs every enabled technique against every discovered point of one target.

    Usage:
        engine = Engine(ScanOptions(target="http://example.com/item?id=1"), logger=Log())
        result = await engine.run()
    """

    def __init__(
        self,
        options: ScanOptions,
        logger=None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.options = options
        self.logger = logger
        self.transport = transport
        self.client = client

    # ── Planning ───────────────────────────────────────────────

    def techniques(self) -> List[BaseTechnique]:
        """Enabled techniques in their fixed per-point order."""
        en, pl = self.options.enable, self.options.payloads
        out: List[BaseTechnique] = []
        if en.error:
            out.append(ErrorBased(pl.error))
        if en.boolean:
            out.append(BooleanBased(pl.boolean))
        if en.union:
            out.append(UnionBased(pl.union, pl.order_by))
        if en.time:
            out.append(TimeBased(pl.time))
        return out

    def _json_enabled(self) -> bool:
        flag = self.options.enable.json
        if flag is None:
            return self.options.json_body is not None
        return flag

    async def discover(
        self, client: httpx.AsyncClient, target: ScanTarget,
    ) -> Tuple[List[FormTarget], List[InjectionPoint]]:
        en = self.options.enable
        points: List[InjectionPoint] = []
        forms: List[FormTarget] = []

        if en.query:
            points += discover_query_points(target.url)
        if en.path:
            points += discover_path_points(target.url)
        if self._json_enabled():
            points += discover_json_points(target.json_body)
        if en.header:
            points += discover_header_points(clean_headers(target.headers))
        if en.cookie:
            points += discover_cookie_points(target.cookies)
        if en.form:
            if self.options.form is not None:
                forms = [self.options.form]
                points += discover_form_points(forms)
            else:
                headers: Dict[str, str] = clean_headers(target.headers)
                if target.cookies:
                    headers["Cookie"] = cookie_header(target.cookies)
                forms, form_points = await fetch_and_discover_forms(client, target.url, headers)
                points += form_points

        return forms, dedupe_points(points)

    # ── Execution ──────────────────────────────────────────────

    async def _scan_point(self, ctx: ScanContext, techniques: List[BaseTechnique],
                          point: InjectionPoint):
        state = PointState(point)
        # one retry; techniques that diff against the baseline skip the point without it
        for _ in range(2):
            baseline = await ctx.probe.send(point, "")
            await ctx.pause()
            if isinstance(baseline, ProbeResponse):
                state.baseline = baseline
                break
            if self.logger:
                self.logger.debug(f"Baseline failed for {point}: {baseline.error}")

        for tech in techniques:
            if self.logger:
                self.logger.debug(f"{tech.name} -> {point}")
            await tech.run(ctx, state)

    def _emit(self, event: ScanProgress):
        if self.options.on_progress is not None:
            self.options.on_progress(event)

    async def run(self) -> ScanResult:
        opts = self.options
        validate_target(opts.target)

        client = self.client or build_client(
            opts.request_timeout_ms, proxy=opts.proxy, verify=opts.verify_tls,
            transport=self.transport,
        )
        try:
            session = await perform_auth(opts.auth, client=client, logger=self.logger)
            headers, cookies = merge_session(opts.headers, opts.cookies, session)
            target = ScanTarget(url=opts.target, method=(opts.method or "GET").upper(),
                                headers=headers, cookies=cookies, json_body=opts.json_body)

            forms, points = await self.discover(client, target)
            budgeted = apply_budget(points, opts.max_requests)
            if len(budgeted) < len(points) and self.logger:
                self.logger.warn(f"Request budget {opts.max_requests} allows "
                                 f"{len(budgeted)} of {len(points)} points")
            points = budgeted

            techniques = self.techniques()
            planned = sum(t.planned_checks() for t in techniques) * len(points)
            self._emit(ScanProgress(phase="discover", points=len(points), planned_checks=planned))
            if self.logger:
                self.logger.info(f"Scanning {target.method} {target.url} "
                                 f"({len(points)} points, {planned} checks)")

            ctx = ScanContext(
                probe=ProbeClient(client, target, forms, refresh_csrf=opts.refresh_csrf),
                planned_checks=planned,
                time_threshold_ms=opts.time_threshold_ms,
                time_trials=opts.time_trials,
                jitter_ms=opts.jitter_ms,
                on_progress=opts.on_progress,
                logger=self.logger,
            )

            sem = asyncio.Semaphore(max(1, opts.parallel))

            async def worker(point: InjectionPoint):
                async with sem:
                    await self._scan_point(ctx, techniques, point)

            await asyncio.gather(*(worker(p) for p in points))
        finally:
            if self.client is None:
                await client.aclose()

        result = ScanResult(details=ctx.findings)
        self._emit(ScanProgress(phase="done", points=len(points), planned_checks=planned,
                                processed_checks=ctx.processed_checks, eta_ms=0))
        if self.logger:
            found = len(result.findings())
            if found:
                self.logger.ok(f"Scan complete: {found} vulnerable finding(s) on {target.url}")
            else:
                self.logger.fail(f"Scan complete: no SQL injection found on {target.url}")
        return result


async def run_scan(
    options: ScanOptions,
    logger=None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ScanResult:
    return await Engine(options, logger=logger, transport=transport).run()
