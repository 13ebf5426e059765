from typing import Any, Dict, Optional
from urllib.parse import parse_qs, urlsplit
import json

from sqlscanner.core.models import EnableFlags, FormField, FormTarget, ScanOptions

_DROP_HDRS = {"host", "content-length", "cookie"}


def parse_cookie_header(value: str) -> Dict[str, str]:
    cookies = {}
    for part in value.split(";"):
        name, sep, val = part.strip().partition("=")
        if name and sep:
            cookies[name] = val
    return cookies


class RawRequest:
    def __init__(self, requestFilename: str, protocol: str = "https") -> None:
        """
        POST /login HTTP/1.1
        Host: example.com
        Content-Type: application/x-www-form-urlencoded
        Cookie: session=abc

        user=admin&pass=xxx
        """

        self.method = ""
        self.path = ""
        self.query = ""
        self.headers: Dict[str, str] = {}
        self.cookies: Dict[str, str] = {}
        self.body: Any = None
        self.content_type = ""
        self.host = ""
        self.protocol = protocol

        self.requestFilename = requestFilename

    def parse(self) -> Dict:

        with open(self.requestFilename, 'r', encoding='utf-8', errors='ignore') as f:
            raw = f.read().replace("\r\n", "\n")

        head, _, body_raw = raw.partition("\n\n")
        if not head.strip():
            raise ValueError("Request file is empty.")

        lines = [l for l in head.split("\n") if l.strip()]

        # Request line: METHOD SP PATH [SP HTTP/x.y]
        parts0 = lines[0].split()
        if len(parts0) < 2:
            raise ValueError(f"Invalid request line: {lines[0]!r}")
        self.method = parts0[0].upper()

        url_parts = urlsplit(parts0[1])
        self.path = url_parts.path or "/"
        self.query = url_parts.query

        for line in lines[1:]:
            if ':' in line:
                k, v = line.split(':', 1)
                self.headers[k.strip()] = v.strip()

        lower = {k.lower(): v for k, v in self.headers.items()}
        self.host = lower.get("host", "") or url_parts.netloc
        if not self.host:
            raise ValueError("Host header missing from request file.")
        self.cookies = parse_cookie_header(lower.get("cookie", ""))
        self.content_type = lower.get("content-type", "").lower()

        self.body = None
        body_raw = body_raw.strip()
        if body_raw:
            if "application/json" in self.content_type:
                try:
                    self.body = json.loads(body_raw)
                except ValueError:
                    self.body = body_raw
            elif "application/x-www-form-urlencoded" in self.content_type:
                self.body = dict(parse_qs(body_raw, keep_blank_values=True))
            else:
                self.body = body_raw

        self.headers = {k: v for k, v in self.headers.items() if k.lower() not in _DROP_HDRS}

        return {
            'host': self.host,
            'method': self.method,
            'url': self.url,
            'headers': self.headers,
            'cookies': self.cookies,
            'body': self.body
        }

    @property
    def url(self) -> str:
        url = f"{self.protocol}://{self.host}{self.path}"
        return f"{url}?{self.query}" if self.query else url

    def form_target(self) -> Optional[FormTarget]:
        """A urlencoded body as an explicit form, so each field becomes a form point."""
        if not isinstance(self.body, dict) or "application/json" in self.content_type:
            return None
        fields = tuple(FormField(k, v[0] if v else "") for k, v in self.body.items())
        return FormTarget(action=self.url, method=self.method, fields=fields,
                          enctype="application/x-www-form-urlencoded")

    def to_scan_options(self, header_points: bool = False, cookie_points: bool = False,
                        **kwargs) -> ScanOptions:
        json_body = None
        if "application/json" in self.content_type and isinstance(self.body, (dict, list)):
            json_body = self.body
        form = self.form_target()
        headers = dict(self.headers)
        if json_body is not None:
            # httpx sets the JSON content type itself
            headers = {k: v for k, v in headers.items() if k.lower() != "content-type"}
        enable = EnableFlags(form=form is not None, header=header_points, cookie=cookie_points)
        return ScanOptions(target=self.url, method=self.method, headers=headers,
                           cookies=dict(self.cookies), json_body=json_body, form=form,
                           enable=enable, **kwargs)

    def __str__(self) -> str:
        return f"Method: {self.method}\nURL: {self.url}\nHeaders: {self.headers}\nCookies: {self.cookies}\nBody: {self.body}"
