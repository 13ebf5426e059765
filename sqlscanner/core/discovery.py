"""Injection point discovery for a single scan target."""

import math
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple
from urllib.parse import parse_qsl, urlsplit

import httpx

from sqlscanner.core.csrf import is_csrf_field
from sqlscanner.core.models import FormTarget, InjectionPoint, PointKind
from sqlscanner.parsers.html import extract_forms

# baseline + one probe per technique family, the unit of the request budget
REQUESTS_PER_POINT = 6


def discover_query_points(url: str) -> List[InjectionPoint]:
    try:
        query = urlsplit(url).query
    except ValueError:
        return []
    seen = []
    for key, _ in parse_qsl(query, keep_blank_values=True):
        if key not in seen:
            seen.append(key)
    return [InjectionPoint(PointKind.QUERY, key) for key in seen]


def discover_path_points(url: str) -> List[InjectionPoint]:
    try:
        path = urlsplit(url).path
    except ValueError:
        return []
    segments = [s for s in path.split("/") if s]
    return [
        InjectionPoint(PointKind.PATH, f"segment_{i}", {"segment": seg, "position": i})
        for i, seg in enumerate(segments)
    ]


def discover_json_points(body: Any) -> List[InjectionPoint]:
    """One point per string or number leaf, named by its dot-joined key path."""
    points: List[InjectionPoint] = []

    def walk(node: Any, path: List[Any]):
        if isinstance(node, dict):
            for key, value in node.items():
                walk(value, path + [key])
        elif isinstance(node, list):
            for i, value in enumerate(node):
                walk(value, path + [i])
        elif isinstance(node, bool) or node is None:
            return
        elif isinstance(node, (str, int, float)) and path:
            kind = "string" if isinstance(node, str) else "number"
            name = ".".join(str(p) for p in path)
            points.append(InjectionPoint(PointKind.JSON, name, {"path": path, "type": kind}))

    if isinstance(body, (dict, list)):
        walk(body, [])
    return points


def discover_header_points(headers: Dict[str, str]) -> List[InjectionPoint]:
    return [InjectionPoint(PointKind.HEADER, name) for name in headers]


def discover_cookie_points(cookies: Dict[str, str]) -> List[InjectionPoint]:
    return [InjectionPoint(PointKind.COOKIE, name) for name in cookies]


def discover_form_points(forms: Iterable[FormTarget]) -> List[InjectionPoint]:
    """One point per named field; anti-CSRF token fields are left alone."""
    points = []
    for form in forms:
        owner = {"action": form.action, "method": form.method}
        for f in form.fields:
            if is_csrf_field(f.name):
                continue
            points.append(InjectionPoint(PointKind.FORM, f.name, dict(owner)))
    return points


async def fetch_and_discover_forms(
    client: httpx.AsyncClient,
    url: str,
    headers: Optional[Dict[str, str]] = None,
) -> Tuple[List[FormTarget], List[InjectionPoint]]:
    """Fetch the target page once and turn its forms into points.

    Unreachable pages and unparseable markup give ([], []).
    """
    try:
        resp = await client.get(url, headers=headers)
    except (httpx.HTTPError, httpx.InvalidURL):
        return [], []
    ctype = resp.headers.get("content-type", "").lower()
    if resp.status_code >= 400 or "html" not in ctype:
        return [], []
    forms = extract_forms(str(resp.url), resp.text or "")
    return forms, discover_form_points(forms)


def dedupe_points(points: Iterable[InjectionPoint]) -> List[InjectionPoint]:
    seen = set()
    out = []
    for p in points:
        if p.key in seen:
            continue
        seen.add(p.key)
        out.append(p)
    return out


def apply_budget(points: Sequence[InjectionPoint], max_requests: int) -> List[InjectionPoint]:
    """Truncate the point list when the planned request count exceeds max_requests."""
    if len(points) * REQUESTS_PER_POINT <= max_requests:
        return list(points)
    keep = max(1, math.floor(max_requests / REQUESTS_PER_POINT))
    return list(points[:keep])
