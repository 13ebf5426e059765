import argparse
import asyncio
import sys

from sqlscanner.core.crawler import smart_scan
from sqlscanner.core.engine import InvalidTargetError, run_scan
from sqlscanner.core.models import SmartScanOptions, TechniqueFlags
from sqlscanner.parsers.request import RawRequest
from sqlscanner.reporters.console import Log
from sqlscanner.reporters.export import REPORT_FORMATS, render_report

EXIT_CLEAN = 0
EXIT_VULNERABLE = 1
EXIT_ERROR = 2
EXIT_INTERRUPTED = 130


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="sqlscanner",
        description="SQL injection discovery and detection scanner. Use only with permission.")
    p.add_argument("url", nargs="?", help="Base URL to crawl and scan")
    p.add_argument("--no-js", action="store_true",
                   help="Skip JS network capture with Playwright")
    p.add_argument("--report", default="json", choices=REPORT_FORMATS,
                   help="Report format (default: json)")
    p.add_argument("--out", help="Write the report to this file instead of stdout")
    p.add_argument("--proxy", help="Proxy (e.g. http://127.0.0.1:8080)")
    p.add_argument("--request", help="Raw HTTP request file to scan directly")
    p.add_argument("--request-proto", default="https", choices=["http", "https"])
    p.add_argument("--max-depth", type=int, default=2)
    p.add_argument("--max-pages", type=int, default=50)
    p.add_argument("--threshold-ms", type=int, default=2500,
                   help="Time-based delay threshold in ms")
    p.add_argument("--timeout-ms", type=int, default=10000, help="Per-request timeout in ms")
    p.add_argument("--parallel", type=int, default=4, help="Concurrent points per target")
    p.add_argument("--scan-parallel", type=int, default=2, help="Concurrent candidates")
    p.add_argument("--max-requests", type=int, default=500,
                   help="Request budget per target (points are truncated to fit)")
    p.add_argument("--jitter-ms", type=int, nargs=2, default=[100, 400], metavar=("LO", "HI"),
                   help="Random delay between requests to one point (default: 100 400)")
    p.add_argument("--union", action="store_true", help="Enable the union technique")
    p.add_argument("--no-time", action="store_true", help="Disable the time technique")
    p.add_argument("--headers", action="store_true",
                   help="Inject into request headers (--request only)")
    p.add_argument("--cookies", action="store_true",
                   help="Inject into cookies (--request only)")
    p.add_argument("-v", "--verbose", action="count", default=1,
                   help="-v, -vv")
    args = p.parse_args(argv)
    if not args.url and not args.request:
        p.error("a URL or --request FILE is required")
    return args


async def _run(args, log: Log):
    if args.request:
        req = RawRequest(args.request, protocol=args.request_proto)
        req.parse()
        options = req.to_scan_options(
            header_points=args.headers,
            cookie_points=args.cookies,
            time_threshold_ms=args.threshold_ms,
            request_timeout_ms=args.timeout_ms,
            parallel=args.parallel,
            max_requests=args.max_requests,
            proxy=args.proxy,
            jitter_ms=tuple(args.jitter_ms),
            on_progress=log.progress,
        )
        options.enable.union = args.union
        options.enable.time = not args.no_time
        return await run_scan(options, logger=log)

    options = SmartScanOptions(
        base_url=args.url,
        max_depth=args.max_depth,
        max_pages=args.max_pages,
        use_playwright=not args.no_js,
        request_timeout_ms=args.timeout_ms,
        time_threshold_ms=args.threshold_ms,
        parallel=args.parallel,
        scan_parallel=args.scan_parallel,
        max_requests=args.max_requests,
        proxy=args.proxy,
        jitter_ms=tuple(args.jitter_ms),
        techniques=TechniqueFlags(time=not args.no_time, union=args.union),
        on_progress=log.progress,
    )
    return await smart_scan(options, logger=log)


def main(argv=None) -> int:
    args = parse_args(argv)
    # keep stdout clean for the report
    log = Log(verbose=args.verbose, stream=sys.stderr if not args.out else sys.stdout)

    try:
        result = asyncio.run(_run(args, log))
    except KeyboardInterrupt:
        log.fail("Interrupted")
        return EXIT_INTERRUPTED
    except InvalidTargetError as exc:
        log.fail(str(exc))
        return EXIT_ERROR
    except Exception as exc:
        log.fail(f"Fatal: {type(exc).__name__}: {exc}")
        return EXIT_ERROR

    report = render_report(result, args.report)
    if args.out:
        with open(args.out, "w", encoding="utf-8") as f:
            f.write(report)
        log.ok(f"Report written to {args.out}")
    else:
        sys.stdout.write(report + "\n")

    return EXIT_VULNERABLE if result.vulnerable else EXIT_CLEAN


if __name__ == "__main__":
    sys.exit(main())
