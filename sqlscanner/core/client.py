"""HTTP probe client.

Builds each outbound request from the scan target with exactly one injection
point replaced by the payload. HTTP error statuses are ordinary responses;
transport failures come back as a ``TransportError`` value instead of raising.
"""

import copy
import json
import shlex
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Union
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

import httpx

from sqlscanner.core.comparator import response_text
from sqlscanner.core.csrf import detect_csrf_fields, fetch_csrf_tokens
from sqlscanner.core.models import (
    FormTarget, InjectionPoint, PointKind, ResponseMeta, ScanTarget,
)

DEFAULT_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

_STOP_HDRS = {"host", "content-length", "transfer-encoding",
              "content-encoding", "connection", "cookie"}

_BODY_METHODS = {"POST", "PUT", "PATCH", "DELETE"}


def clean_headers(headers: Dict[str, str]) -> Dict[str, str]:
    """Drop hop-by-hop and framing headers; cookies travel separately."""
    return {k: v for k, v in headers.items() if k.lower() not in _STOP_HDRS}


def cookie_header(cookies: Dict[str, str]) -> str:
    return "; ".join(f"{k}={v}" for k, v in cookies.items())


def build_client(
    timeout_ms: int,
    headers: Optional[Dict[str, str]] = None,
    proxy: Optional[str] = None,
    verify: bool = False,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    default_headers = {"User-Agent": DEFAULT_USER_AGENT}
    default_headers.update(clean_headers(headers or {}))
    return httpx.AsyncClient(
        verify=verify,
        proxy=proxy,
        transport=transport,
        # an injected transport is authoritative; env proxies would bypass it
        trust_env=transport is None,
        follow_redirects=True,
        max_redirects=5,
        timeout=timeout_ms / 1000,
        headers=default_headers,
    )


# ── Probe results ──────────────────────────────────────────────

@dataclass
class RequestSpec:
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    data: Optional[Dict[str, str]] = None
    json: Optional[Any] = None

    def to_curl(self) -> str:
        parts = ["curl", "-i", "-s", "-X", self.method, shlex.quote(self.url)]
        for k, v in self.headers.items():
            parts += ["-H", shlex.quote(f"{k}: {v}")]
        if self.json is not None:
            parts += ["-H", shlex.quote("Content-Type: application/json"),
                      "--data-raw", shlex.quote(json.dumps(self.json))]
        elif self.data is not None:
            parts += ["--data-raw", shlex.quote(urlencode(self.data))]
        return " ".join(parts)


@dataclass
class ProbeResponse:
    status: int
    text: str
    headers: httpx.Headers
    elapsed_ms: float
    request: RequestSpec
    redirect_location: str = ""

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "").lower()

    @property
    def is_json(self) -> bool:
        return "application/json" in self.content_type

    @property
    def server_error(self) -> bool:
        return self.status >= 500

    def meta(self) -> ResponseMeta:
        return ResponseMeta(status=self.status, elapsed_ms=round(self.elapsed_ms, 1),
                            body_length=len(self.text),
                            redirect_location=self.redirect_location)


@dataclass
class TransportError:
    """Connect/timeout/protocol failure: the probe is inconclusive."""
    error: str
    elapsed_ms: float
    request: RequestSpec

    def meta(self) -> ResponseMeta:
        return ResponseMeta(status=0, elapsed_ms=round(self.elapsed_ms, 1))


ProbeResult = Union[ProbeResponse, TransportError]


# ── Injection ──────────────────────────────────────────────────

def _replace_query(url: str, name: str, payload: str) -> str:
    parts = urlsplit(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    if any(k == name for k, _ in pairs):
        pairs = [(k, payload if k == name else v) for k, v in pairs]
    else:
        pairs.append((name, payload))
    return urlunsplit((parts.scheme, parts.netloc, parts.path, urlencode(pairs), ""))


def _replace_segment(url: str, position: int, payload: str) -> str:
    parts = urlsplit(url)
    segments = [s for s in parts.path.split("/") if s]
    if not 0 <= position < len(segments):
        return url
    segments[position] = quote(payload, safe="")
    path = "/" + "/".join(segments)
    if parts.path.endswith("/") and len(parts.path) > 1:
        path += "/"
    return urlunsplit((parts.scheme, parts.netloc, path, parts.query, ""))


def _set_json_path(body: Any, path: Sequence[Any], payload: str) -> Any:
    mutated = copy.deepcopy(body)
    cur = mutated
    try:
        for key in path[:-1]:
            cur = cur[key]
        cur[path[-1]] = payload
    except (KeyError, IndexError, TypeError):
        return body
    return mutated


class ProbeClient:
    """Sends one request per (point, payload) against a fixed ScanTarget."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        target: ScanTarget,
        forms: Sequence[FormTarget] = (),
        refresh_csrf: bool = False,
    ):
        self.client = client
        self.target = target
        self.forms = list(forms)
        self.refresh_csrf = refresh_csrf

    def _form_for(self, point: InjectionPoint) -> Optional[FormTarget]:
        action = point.meta.get("action")
        method = point.meta.get("method")
        for form in self.forms:
            if form.action == action and form.method == method:
                return form
        return None

    def build_request(
        self,
        point: InjectionPoint,
        payload: str,
        field_overrides: Optional[Dict[str, str]] = None,
    ) -> RequestSpec:
        t = self.target
        method = (t.method or "GET").upper()
        url = t.url
        headers = clean_headers(t.headers)
        cookies = dict(t.cookies)
        data = None
        body = t.json_body if method in _BODY_METHODS else None

        if point.kind is PointKind.QUERY:
            url = _replace_query(url, point.name, payload)
        elif point.kind is PointKind.PATH:
            url = _replace_segment(url, int(point.meta.get("position", -1)), payload)
        elif point.kind is PointKind.FORM:
            form = self._form_for(point)
            if form is not None:
                fields = {f.name: f.value for f in form.fields}
                fields.update(field_overrides or {})
                fields[point.name] = payload
                method, url = form.method, form.action
            else:
                fields = {point.name: payload}
                method = "POST"
            body = None
            if method == "GET":
                for name, value in fields.items():
                    url = _replace_query(url, name, value)
            else:
                data = fields
        elif point.kind is PointKind.JSON:
            path = point.meta.get("path") or point.name.split(".")
            if body is None:
                body = {point.name: payload}
                method = method if method in _BODY_METHODS else "POST"
            else:
                body = _set_json_path(body, path, payload)
        elif point.kind is PointKind.HEADER:
            headers[point.name] = payload
        elif point.kind is PointKind.COOKIE:
            cookies[point.name] = payload
        else:
            raise ValueError(f"unsupported injection point kind: {point.kind}")

        if cookies:
            headers["Cookie"] = cookie_header(cookies)
        return RequestSpec(method=method, url=url, headers=headers, data=data, json=body)

    async def _csrf_overrides(self, point: InjectionPoint) -> Dict[str, str]:
        if not self.refresh_csrf or point.kind is not PointKind.FORM:
            return {}
        form = self._form_for(point)
        if form is None or not form.page:
            return {}
        csrf_fields = detect_csrf_fields(f.name for f in form.fields)
        headers = {"Cookie": cookie_header(self.target.cookies)} if self.target.cookies else None
        return await fetch_csrf_tokens(self.client, form, csrf_fields, headers=headers)

    async def send(self, point: InjectionPoint, payload: str) -> ProbeResult:
        spec = self.build_request(point, payload, await self._csrf_overrides(point))
        t0 = time.perf_counter()
        try:
            resp = await self.client.request(
                spec.method, spec.url, headers=spec.headers, data=spec.data, json=spec.json,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            return TransportError(f"{type(exc).__name__}: {exc}", elapsed, spec)
        elapsed = (time.perf_counter() - t0) * 1000

        location = resp.headers.get("location", "")
        if not location and resp.history:
            location = resp.history[0].headers.get("location", "")
        return ProbeResponse(
            status=resp.status_code,
            text=response_text(resp),
            headers=resp.headers,
            elapsed_ms=elapsed,
            request=spec,
            redirect_location=location,
        )
