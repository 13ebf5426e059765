import asyncio

import httpx

from sqlscanner.core.client import build_client
from sqlscanner.core.discovery import (
    apply_budget, dedupe_points, discover_cookie_points, discover_form_points,
    discover_header_points, discover_json_points, discover_path_points,
    discover_query_points, fetch_and_discover_forms,
)
from sqlscanner.core.models import FormField, FormTarget, InjectionPoint, PointKind


def test_query_points_one_per_key():
    points = discover_query_points("http://x.test/s?q=1&page=2&q=3&empty=")
    assert [p.name for p in points] == ["q", "page", "empty"]
    assert all(p.kind is PointKind.QUERY for p in points)


def test_path_points_carry_position():
    points = discover_path_points("http://x.test/api//items/42/")
    assert [(p.name, p.meta["position"], p.meta["segment"]) for p in points] == [
        ("segment_0", 0, "api"), ("segment_1", 1, "items"), ("segment_2", 2, "42"),
    ]


def test_json_points_walk_nested_objects_and_arrays():
    body = {"user": {"name": "a", "age": 3, "admin": False},
            "ids": [1, "two"], "note": None}
    points = discover_json_points(body)
    names = {p.name: p.meta for p in points}
    assert set(names) == {"user.name", "user.age", "ids.0", "ids.1"}
    assert names["user.name"] == {"path": ["user", "name"], "type": "string"}
    assert names["ids.0"] == {"path": ["ids", 0], "type": "number"}


def test_json_points_ignore_non_structured_bodies():
    assert discover_json_points("raw text") == []
    assert discover_json_points(None) == []


def test_header_and_cookie_points():
    headers = discover_header_points({"X-Api": "1", "User-Agent": "ua"})
    cookies = discover_cookie_points({"sid": "abc"})
    assert [(p.kind, p.name) for p in headers] == [
        (PointKind.HEADER, "X-Api"), (PointKind.HEADER, "User-Agent")]
    assert [(p.kind, p.name) for p in cookies] == [(PointKind.COOKIE, "sid")]


def test_form_points_skip_csrf_fields_and_record_owner():
    form = FormTarget(action="http://x.test/submit", method="POST", fields=(
        FormField("csrf_token", "t"), FormField("comment", "hi"), FormField("id", "1")))
    points = discover_form_points([form])
    assert [p.name for p in points] == ["comment", "id"]
    assert points[0].meta == {"action": "http://x.test/submit", "method": "POST"}


def test_dedupe_points_uses_kind_name_and_meta():
    a = InjectionPoint(PointKind.QUERY, "id")
    points = [
        a,
        InjectionPoint(PointKind.QUERY, "id"),
        InjectionPoint(PointKind.FORM, "id", {"action": "/a", "method": "POST"}),
        InjectionPoint(PointKind.FORM, "id", {"action": "/b", "method": "POST"}),
        InjectionPoint(PointKind.FORM, "id", {"method": "POST", "action": "/b"}),
    ]
    unique = dedupe_points(points)
    assert len(unique) == 3
    assert len({p.key for p in unique}) == 3
    assert unique[0] is a


def test_apply_budget_truncates_to_floor_of_budget():
    points = [InjectionPoint(PointKind.QUERY, n) for n in "abcde"]
    assert [p.name for p in apply_budget(points, 6)] == ["a"]
    assert [p.name for p in apply_budget(points, 13)] == ["a", "b"]
    assert len(apply_budget(points, 30)) == 5
    assert len(apply_budget(points, 500)) == 5
    # never below one point
    assert len(apply_budget(points, 0)) == 1


def test_fetch_and_discover_forms_parses_page():
    html = """<html><body>
    <form action="/login" method="post">
      <input name="user" value="guest"><input type="password" name="pass">
      <input type="hidden" name="authenticity_token" value="zzz">
    </form>
    <form><input type="submit"></form>
    </body></html>"""

    def handler(request):
        return httpx.Response(200, html=html)

    async def go():
        async with build_client(1000, transport=httpx.MockTransport(handler)) as client:
            return await fetch_and_discover_forms(client, "http://x.test/page")

    forms, points = asyncio.run(go())
    assert len(forms) == 1
    assert forms[0].action == "http://x.test/login"
    assert forms[0].method == "POST"
    assert forms[0].page == "http://x.test/page"
    assert [p.name for p in points] == ["user", "pass"]


def test_fetch_and_discover_forms_degrades_to_empty():
    def refused(request):
        raise httpx.ConnectError("refused", request=request)

    def not_found(request):
        return httpx.Response(404, html="<form><input name='q'></form>")

    async def go(handler):
        async with build_client(1000, transport=httpx.MockTransport(handler)) as client:
            return await fetch_and_discover_forms(client, "http://x.test/")

    assert asyncio.run(go(refused)) == ([], [])
    assert asyncio.run(go(not_found)) == ([], [])
