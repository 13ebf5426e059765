import asyncio
import io
import re

import httpx
import pytest

from sqlscanner.core.engine import Engine, InvalidTargetError, run_scan, validate_target
from sqlscanner.core.models import (
    AuthOptions, EnableFlags, FormField, FormTarget, PayloadSet, PointKind, ScanOptions,
    Technique,
)
from sqlscanner.reporters.console import Log

MYSQL_ERROR = ("<html><body>You have an error in your SQL syntax; check the manual "
               "that corresponds to your MySQL server version</body></html>")
PG_ERROR = "<html>ERROR:  unterminated quoted string at or near \"'\" LINE 1</html>"


def only(**techniques) -> EnableFlags:
    flags = dict(error=False, boolean=False, time=False, union=False, path=False, form=False)
    flags.update(techniques)
    return EnableFlags(**flags)


def scan(options, handler, logger=None):
    options.jitter_ms = (0, 0)
    return asyncio.run(run_scan(options, logger=logger, transport=httpx.MockTransport(handler)))


def test_validate_target():
    assert validate_target("https://x.test/a") == "https://x.test/a"
    for bad in ("ftp://x.test/", "x.test/a", "http:///nohost", ""):
        with pytest.raises(InvalidTargetError):
            validate_target(bad)


def test_invalid_target_raises_before_any_request():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(InvalidTargetError):
        scan(ScanOptions(target="ftp://x.test/item?id=1"), handler)


def test_techniques_run_in_fixed_order():
    engine = Engine(ScanOptions(target="http://x.test/", enable=EnableFlags(union=True)))
    assert [t.technique for t in engine.techniques()] == [
        Technique.ERROR, Technique.BOOLEAN, Technique.UNION, Technique.TIME]


def test_error_based_detection():
    def handler(request):
        if "'" in request.url.params.get("id", ""):
            return httpx.Response(500, html=MYSQL_ERROR)
        return httpx.Response(200, html="<html><body>item 1</body></html>")

    stream = io.StringIO()
    result = scan(ScanOptions(target="http://x.test/item?id=1", enable=only(error=True)),
                  handler, logger=Log(stream=stream))

    vulns = result.findings()
    assert len(vulns) == 1
    finding = vulns[0]
    assert finding.technique is Technique.ERROR
    assert finding.point.kind is PointKind.QUERY and finding.point.name == "id"
    assert finding.payload == "'"
    assert finding.confirmations == ("error_signature", "mysql")
    assert finding.response_meta.status == 500
    assert finding.reproduce and finding.reproduce[0].startswith("curl ")
    assert finding.remediation
    assert result.vulnerable
    assert "CRITICAL" in stream.getvalue()


def test_error_already_on_baseline_is_not_reported():
    def handler(request):
        return httpx.Response(200, html=MYSQL_ERROR)

    result = scan(ScanOptions(target="http://x.test/item?id=1", enable=only(error=True)), handler)
    assert not result.vulnerable
    assert len(result.details) == 15


def test_boolean_differential_detection():
    def handler(request):
        q = request.url.params.get("q", "")
        if "1=1" in q:
            rows = "".join(f"<li>product {i}</li>" for i in range(30))
            return httpx.Response(200, html=f"<html><ul>{rows}</ul></html>")
        return httpx.Response(200, html="<html><p>no results</p></html>")

    result = scan(ScanOptions(target="http://x.test/search?q=abc", enable=only(boolean=True)),
                  handler)

    vulns = result.findings()
    assert len(vulns) == 1
    assert vulns[0].technique is Technique.BOOLEAN
    assert vulns[0].payload == "1' AND 1=1-- | 1' AND 1=2--"
    assert vulns[0].confirmations == ("boolean_differential", "classic_boolean")
    assert "sim(true,false)=" in vulns[0].evidence
    assert len(vulns[0].reproduce) == 2


def test_boolean_ignores_stable_pages():
    def handler(request):
        return httpx.Response(200, html="<html><p>same page</p></html>")

    result = scan(ScanOptions(target="http://x.test/search?q=abc", enable=only(boolean=True)),
                  handler)
    assert not result.vulnerable
    assert len(result.details) == 5


def test_boolean_json_length_signal():
    def handler(request):
        user_id = request.url.params.get("id", "")
        if "1=1" in user_id:
            return httpx.Response(200, json={"users": [{"name": f"user{i}"} for i in range(10)]})
        return httpx.Response(200, json={"users": []})

    result = scan(ScanOptions(target="http://x.test/api/users?id=1", enable=only(boolean=True)),
                  handler)
    assert result.vulnerable
    assert result.findings()[0].technique is Technique.BOOLEAN


def test_time_based_detection():
    async def handler(request):
        value = request.url.params.get("id", "").upper()
        if "SLEEP" in value or "WAITFOR" in value:
            await asyncio.sleep(0.31)
        return httpx.Response(200, html="<html>item</html>")

    options = ScanOptions(target="http://x.test/item?id=1", enable=only(time=True),
                          time_threshold_ms=250)
    result = scan(options, handler)

    vulns = result.findings()
    assert len(vulns) == 1
    assert vulns[0].technique is Technique.TIME
    assert vulns[0].payload == "'; WAITFOR DELAY '00:00:03'--"
    assert vulns[0].confirmations == ("time_pvalue", "mssql_waitfor")
    assert "trials=3" in vulns[0].evidence


def test_time_based_requires_consistent_delay():
    def handler(request):
        return httpx.Response(200, html="<html>item</html>")

    options = ScanOptions(target="http://x.test/item?id=1", enable=only(time=True),
                          time_threshold_ms=250)
    result = scan(options, handler)
    assert not result.vulnerable
    assert len(result.details) == 5


def test_time_based_tries_fingerprinted_engine_first():
    async def handler(request):
        value = request.url.params.get("id", "")
        if "pg_sleep" in value:
            await asyncio.sleep(0.31)
            return httpx.Response(200, html="<html>item</html>")
        if "'" in value:
            return httpx.Response(500, html=PG_ERROR)
        return httpx.Response(200, html="<html>item</html>")

    options = ScanOptions(target="http://x.test/item?id=1", enable=only(error=True, time=True),
                          time_threshold_ms=250)
    result = scan(options, handler)

    error = [d for d in result.findings() if d.technique is Technique.ERROR]
    assert error[0].confirmations == ("error_signature", "postgres")
    timed = [d for d in result.details if d.technique is Technique.TIME]
    assert len(timed) == 1
    assert timed[0].vulnerable
    assert timed[0].payload == "'; SELECT pg_sleep(3)--"
    assert timed[0].confirmations == ("time_pvalue", "postgresql_sleep")


def test_union_detection_infers_column_count():
    rows = "<li>keyboard</li><li>mouse</li>"

    def handler(request):
        cat = request.url.params.get("cat", "")
        order = re.search(r"ORDER BY (\d+)", cat)
        if order:
            if int(order.group(1)) <= 3:
                return httpx.Response(200, html=f"<html><ul>{rows}</ul></html>")
            return httpx.Response(200, html="<html><p>bad request</p></html>")
        if "UNION SELECT" in cat:
            if cat.count("NULL") == 3:
                return httpx.Response(200, html=f"<html><ul>{rows}<li>None</li></ul></html>")
            return httpx.Response(200, html="<html><p>bad request</p></html>")
        return httpx.Response(200, html=f"<html><ul>{rows}</ul></html>")

    result = scan(ScanOptions(target="http://x.test/list?cat=1", enable=only(union=True)), handler)

    vulns = result.findings()
    assert len(vulns) == 1
    assert vulns[0].technique is Technique.UNION
    assert vulns[0].payload == "' UNION SELECT NULL,NULL,NULL--"
    assert vulns[0].confirmations == ("union", "columns=3")
    order_by = [d for d in result.details if not d.vulnerable]
    assert "columns=3" in order_by[0].evidence


def test_union_stops_after_first_column_count():
    rows = "<li>keyboard</li><li>mouse</li>"
    sent = []

    def handler(request):
        cat = request.url.params.get("cat", "")
        sent.append(cat)
        order = re.search(r"ORDER BY (\d+)", cat)
        if order and int(order.group(1)) > 2:
            return httpx.Response(200, html="<html><p>bad request</p></html>")
        return httpx.Response(200, html=f"<html><ul>{rows}</ul></html>")

    result = scan(ScanOptions(target="http://x.test/list?cat=1", enable=only(union=True)), handler)

    assert not result.vulnerable
    assert not any(c.startswith("1 ORDER BY") for c in sent)
    unions = [c for c in sent if "UNION SELECT" in c]
    assert unions == ["' UNION SELECT NULL,NULL--", "1 UNION SELECT NULL,NULL--"]
    assert len(result.details) == 3


def test_baseline_failure_makes_comparisons_inconclusive():
    sent = []

    def handler(request):
        value = request.url.params.get("id", "")
        sent.append(value)
        if value == "":
            raise httpx.ReadTimeout("timed out", request=request)
        return httpx.Response(200, html=f"<html><p>{len(value)} results</p></html>")

    result = scan(ScanOptions(target="http://x.test/item?id=1",
                              enable=only(boolean=True, union=True)), handler)

    assert not result.vulnerable
    assert sent == ["", ""]
    assert len(result.details) == 5 + 1
    assert all(d.evidence == "inconclusive: baseline request failed" for d in result.details)
    assert all(d.response_meta.status == 0 for d in result.details)


def test_baseline_is_retried_after_timeout():
    rows = "<li>keyboard</li><li>mouse</li>"
    attempts = []

    def handler(request):
        cat = request.url.params.get("cat", "")
        attempts.append(cat)
        if len(attempts) == 1:
            raise httpx.ReadTimeout("timed out", request=request)
        order = re.search(r"ORDER BY (\d+)", cat)
        if order and int(order.group(1)) > 3:
            return httpx.Response(200, html="<html><p>bad request</p></html>")
        return httpx.Response(200, html=f"<html><ul>{rows}</ul></html>")

    result = scan(ScanOptions(target="http://x.test/list?cat=1", enable=only(union=True)), handler)

    assert attempts[:2] == ["", ""]
    # the UNION page equals the real baseline, so nothing is reported
    assert not result.vulnerable
    assert "columns=3" in result.details[0].evidence
    assert any("UNION SELECT NULL,NULL,NULL" in d.payload for d in result.details)


def test_parallel_bounds_points_in_flight():
    in_flight = 0
    peak = 0

    async def handler(request):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.02)
        in_flight -= 1
        return httpx.Response(200, html="<html>ok</html>")

    options = ScanOptions(target="http://x.test/list?a=1&b=1&c=1&d=1&e=1", parallel=2,
                          enable=only(error=True), payloads=PayloadSet(error=["'"]))
    result = scan(options, handler)

    assert len(result.details) == 5
    assert peak == 2


def test_budget_limits_points():
    def handler(request):
        return httpx.Response(200, html="<html>ok</html>")

    options = ScanOptions(target="http://x.test/list?a=1&b=1&c=1&d=1&e=1",
                          enable=only(error=True), max_requests=6)
    result = scan(options, handler)
    assert {d.point.name for d in result.details} == {"a"}


def test_progress_events():
    events = []

    def handler(request):
        return httpx.Response(200, html="<html>ok</html>")

    options = ScanOptions(target="http://x.test/item?id=1&x=2", enable=only(error=True),
                          on_progress=events.append)
    result = scan(options, handler)

    assert events[0].phase == "discover"
    assert events[0].points == 2
    assert events[0].planned_checks == 30
    assert events[-1].phase == "done"
    assert events[-1].processed_checks == 30
    scans = [e for e in events if e.phase == "scan"]
    assert len(scans) == len(result.details)
    assert [e.processed_checks for e in scans] == sorted(e.processed_checks for e in scans)


def test_transport_errors_are_inconclusive():
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    options = ScanOptions(target="http://x.test/item?id=1",
                          enable=EnableFlags(path=False, time=False))
    result = scan(options, handler)

    assert not result.vulnerable
    assert len(result.details) == 15 + 5
    assert all(d.response_meta.status == 0 for d in result.details)
    assert all(d.evidence.startswith("inconclusive") for d in result.details)


def test_json_body_points():
    def handler(request):
        body = request.content.decode()
        if "'" in body:
            return httpx.Response(500, text="sqlite3.OperationalError: unrecognized token: \"'\"")
        return httpx.Response(200, json={"ok": True})

    options = ScanOptions(target="http://x.test/api/orders", method="POST",
                          json_body={"order": {"id": 7}, "note": "x"},
                          enable=only(error=True))
    result = scan(options, handler)

    vulns = result.findings()
    assert {(d.point.kind, d.point.name) for d in vulns} == {
        (PointKind.JSON, "order.id"), (PointKind.JSON, "note")}
    assert all(d.confirmations == ("error_signature", "sqlite") for d in vulns)


def test_forms_discovered_on_target_page():
    page = """<html><form action="/submit" method="post">
      <input type="hidden" name="csrf_token" value="abc">
      <textarea name="comment"></textarea>
    </form></html>"""

    def handler(request):
        if request.method == "GET":
            return httpx.Response(200, html=page)
        form = dict(p.split("=", 1) for p in request.content.decode().split("&"))
        if "%27" in form.get("comment", ""):
            return httpx.Response(500, text="SQLite error: unrecognized token")
        return httpx.Response(200, html="<html>thanks</html>")

    result = scan(ScanOptions(target="http://x.test/contact", enable=EnableFlags(
        path=False, boolean=False, time=False)), handler)

    assert {d.point.name for d in result.details} == {"comment"}
    vulns = result.findings()
    assert len(vulns) == 1
    assert vulns[0].point.kind is PointKind.FORM
    assert vulns[0].point.meta == {"action": "http://x.test/submit", "method": "POST"}


def test_explicit_form_skips_page_fetch():
    form = FormTarget(action="http://x.test/login", method="POST",
                      fields=(FormField("user", "a"), FormField("pass", "b")))
    seen = []

    def handler(request):
        seen.append(request.method)
        return httpx.Response(200, html="<html>denied</html>")

    scan(ScanOptions(target=form.action, method="POST", form=form,
                     enable=only(error=True, form=True)), handler)
    assert set(seen) == {"POST"}


def test_auth_session_cookies_reach_probes():
    def handler(request):
        if request.url.path == "/login":
            return httpx.Response(302, headers={"location": "/", "set-cookie": "sid=abc; Path=/"})
        if "sid=abc" not in request.headers.get("cookie", ""):
            return httpx.Response(200, html="<html>please log in</html>")
        if "'" in request.url.params.get("id", ""):
            return httpx.Response(500, html=MYSQL_ERROR)
        return httpx.Response(200, html="<html>order 1</html>")

    auth = AuthOptions(url="http://x.test/login", username_field="u", password_field="p",
                       username="alice", password="wonderland")
    options = ScanOptions(target="http://x.test/orders?id=1", auth=auth,
                          cookies={"theme": "dark"}, enable=only(error=True))
    result = scan(options, handler)

    vulns = result.findings()
    assert len(vulns) == 1
    assert "sid=abc" in vulns[0].reproduce[0]
    assert "theme=dark" in vulns[0].reproduce[0]


def test_vulnerable_flag_matches_findings():
    def handler(request):
        if "'" in request.url.params.get("id", ""):
            return httpx.Response(500, html=MYSQL_ERROR)
        return httpx.Response(200, html="<html>x</html>")

    result = scan(ScanOptions(target="http://x.test/a/b?id=1&q=2",
                              enable=only(error=True, path=True)), handler)
    assert result.vulnerable == any(d.vulnerable for d in result.details)
    assert result.to_dict()["vulnerable"] is True
