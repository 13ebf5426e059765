"""Shared data models for the SQL injection scanner."""

import json
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Callable, ClassVar, Dict, List, Optional, Set, Tuple, Union


# ── Injection points & targets ─────────────────────────────────

class PointKind(str, Enum):
    QUERY = "query"
    PATH = "path"
    FORM = "form"
    JSON = "json"
    HEADER = "header"
    COOKIE = "cookie"


@dataclass(frozen=True)
class InjectionPoint:
    """A single named location in a request where a payload replaces the baseline value."""
    kind: PointKind
    name: str
    meta: Dict[str, Any] = field(default_factory=dict)  # segment position, JSON path, owning form

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.kind.value, self.name,
                json.dumps(self.meta, sort_keys=True, default=str))

    def __hash__(self):
        return hash(self.key)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "name": self.name, "meta": dict(self.meta)}

    def __str__(self):
        return f"{self.kind.value}:{self.name}"


@dataclass
class ScanTarget:
    """Request template a point is probed against."""
    url: str
    method: str = "GET"
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    json_body: Optional[Any] = None


# ── Findings ───────────────────────────────────────────────────

class Technique(str, Enum):
    ERROR = "error"
    BOOLEAN = "boolean_differential"
    TIME = "time"
    UNION = "union"


@dataclass(frozen=True)
class ResponseMeta:
    status: int                 # 0 when the probe hit a transport error
    elapsed_ms: float = 0.0
    body_length: int = 0
    redirect_location: str = ""


@dataclass(frozen=True)
class Finding:
    """Outcome of probing one point with one payload under one technique."""
    point: InjectionPoint
    payload: str
    technique: Technique
    vulnerable: bool
    response_meta: ResponseMeta
    evidence: str = ""
    confirmations: Tuple[str, ...] = ()
    reproduce: Tuple[str, ...] = ()     # curl commands, vulnerable findings only
    remediation: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "point": self.point.to_dict(),
            "payload": self.payload,
            "technique": self.technique.value,
            "vulnerable": self.vulnerable,
            "response_meta": asdict(self.response_meta),
            "evidence": self.evidence,
            "confirmations": list(self.confirmations),
            "reproduce": list(self.reproduce),
            "remediation": list(self.remediation),
        }

    def __str__(self):
        state = "VULNERABLE" if self.vulnerable else "clean"
        return (f"[{state}] {self.technique.value} @ {self.point} "
                f"payload={self.payload!r} (HTTP {self.response_meta.status})")


@dataclass
class ScanResult:
    details: List[Finding] = field(default_factory=list)

    @property
    def vulnerable(self) -> bool:
        return any(d.vulnerable for d in self.details)

    def findings(self) -> List[Finding]:
        return [d for d in self.details if d.vulnerable]

    def to_dict(self) -> Dict[str, Any]:
        return {"vulnerable": self.vulnerable,
                "details": [d.to_dict() for d in self.details]}


# ── Discovered candidates ──────────────────────────────────────

@dataclass(frozen=True)
class FormField:
    name: str
    value: str = ""


@dataclass(frozen=True)
class UrlWithQuery:
    kind: ClassVar[str] = "url-with-query"
    url: str

    @property
    def method(self) -> str:
        return "GET"

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "url": self.url}


@dataclass(frozen=True)
class FormTarget:
    kind: ClassVar[str] = "form"
    action: str
    method: str = "GET"
    fields: Tuple[FormField, ...] = ()
    enctype: Optional[str] = None
    page: Optional[str] = None          # page the form was found on

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "action": self.action, "method": self.method,
                "enctype": self.enctype, "page": self.page,
                "fields": [{"name": f.name, "value": f.value} for f in self.fields]}


@dataclass(frozen=True)
class JsonEndpoint:
    kind: ClassVar[str] = "json-endpoint"
    url: str
    method: str = "GET"
    body: Any = None
    headers: Dict[str, str] = field(default_factory=dict, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "url": self.url, "method": self.method,
                "body": self.body, "headers": dict(self.headers)}


Candidate = Union[UrlWithQuery, FormTarget, JsonEndpoint]


def candidate_key(candidate: Candidate) -> str:
    """Structural dedup key: forms by method+action+field names, others by method+url."""
    if isinstance(candidate, FormTarget):
        names = ",".join(sorted(f.name for f in candidate.fields))
        return f"{candidate.kind}:{candidate.method}:{candidate.action}:{names}"
    if isinstance(candidate, UrlWithQuery):
        return f"{candidate.kind}:GET:{candidate.url}"
    if isinstance(candidate, JsonEndpoint):
        return f"{candidate.kind}:{candidate.method}:{candidate.url}"
    raise TypeError(f"unknown candidate type: {type(candidate).__name__}")


@dataclass
class CrawlState:
    visited: Set[str] = field(default_factory=set)
    queue: List[Tuple[str, int]] = field(default_factory=list)   # (url, depth)
    candidates: List[Candidate] = field(default_factory=list)
    crawled: int = 0
    pages: List[str] = field(default_factory=list)               # visited, in crawl order


# ── Authentication ─────────────────────────────────────────────

@dataclass
class SuccessCriteria:
    status: Optional[int] = None
    contains_text: Optional[str] = None
    not_contains_text: Optional[str] = None
    redirect_location_includes: Optional[str] = None


@dataclass
class AuthOptions:
    url: str
    username_field: str
    password_field: str
    username: str
    password: str
    method: str = "POST"
    type: str = "form-urlencoded"       # or "json"
    additional_fields: Dict[str, str] = field(default_factory=dict)
    headers: Dict[str, str] = field(default_factory=dict)
    verify_url: Optional[str] = None
    success: SuccessCriteria = field(default_factory=SuccessCriteria)


@dataclass(frozen=True)
class AuthSession:
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)


# ── Payload configuration ──────────────────────────────────────

@dataclass(frozen=True)
class BooleanPair:
    true: str
    false: str
    label: str = ""


@dataclass(frozen=True)
class TimePayload:
    payload: str
    label: str = ""
    db: str = "any"


@dataclass(frozen=True)
class OrderByPayload:
    template: str                       # contains "{n}"
    label: str = ""
    db: str = "any"

    def render(self, n: int) -> str:
        return self.template.replace("{n}", str(n))


@dataclass(frozen=True)
class UnionPayload:
    template: str                       # contains "{columns}"
    label: str = ""
    db: str = "any"

    def render(self, columns: int) -> str:
        return self.template.replace("{columns}", ",".join(["NULL"] * columns))


@dataclass
class PayloadSet:
    """Per-technique payload overrides; None keeps the technique defaults."""
    error: Optional[List[str]] = None
    boolean: Optional[List[BooleanPair]] = None
    time: Optional[List[TimePayload]] = None
    union: Optional[List[UnionPayload]] = None
    order_by: Optional[List[OrderByPayload]] = None


@dataclass
class EnableFlags:
    query: bool = True
    path: bool = True
    form: bool = True
    json: Optional[bool] = None         # None: enabled when a JSON body is supplied
    header: bool = False
    cookie: bool = False
    error: bool = True
    boolean: bool = True
    time: bool = True
    union: bool = False


@dataclass
class TechniqueFlags:
    error: bool = True
    boolean: bool = True
    time: bool = True
    union: bool = False


# ── Progress ───────────────────────────────────────────────────

@dataclass(frozen=True)
class ScanProgress:
    kind: ClassVar[str] = "scan"
    phase: str                          # discover | scan | done
    points: Optional[int] = None
    planned_checks: Optional[int] = None
    processed_checks: Optional[int] = None
    eta_ms: Optional[int] = None


@dataclass(frozen=True)
class SmartScanProgress:
    kind: ClassVar[str] = "smart"
    phase: str                          # crawl | scan | done
    crawled_pages: Optional[int] = None
    max_pages: Optional[int] = None
    candidates_found: Optional[int] = None
    scan_processed: Optional[int] = None
    scan_total: Optional[int] = None
    eta_ms: Optional[int] = None


# ── Options ────────────────────────────────────────────────────

@dataclass
class ScanOptions:
    """Detection Engine input."""
    target: str
    method: str = "GET"
    json_body: Optional[Any] = None
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    auth: Optional[AuthOptions] = None
    time_threshold_ms: int = 2500
    request_timeout_ms: int = 10000
    parallel: int = 4
    max_requests: int = 500
    enable: EnableFlags = field(default_factory=EnableFlags)
    payloads: PayloadSet = field(default_factory=PayloadSet)
    on_progress: Optional[Callable[[ScanProgress], None]] = None
    proxy: Optional[str] = None
    verify_tls: bool = False
    jitter_ms: Tuple[int, int] = (100, 400)
    time_trials: int = 3
    form: Optional[FormTarget] = None   # probe this form instead of fetching the target page
    refresh_csrf: bool = False


@dataclass
class SmartScanOptions:
    """Candidate Discovery Engine input."""
    base_url: str
    max_depth: int = 2
    max_pages: int = 50
    same_origin_only: bool = True
    request_timeout_ms: int = 10000
    use_playwright: bool = True
    playwright_max_pages: Optional[int] = None
    playwright_headless: bool = True
    playwright_concurrency: int = 2
    playwright_wait_ms: int = 1000
    crawl_concurrency: int = 4
    scan_parallel: int = 2
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)
    auth: Optional[AuthOptions] = None
    techniques: TechniqueFlags = field(default_factory=TechniqueFlags)
    on_progress: Optional[Callable[[Union[ScanProgress, SmartScanProgress]], None]] = None
    time_threshold_ms: int = 2500
    parallel: int = 4
    max_requests: int = 500
    proxy: Optional[str] = None
    verify_tls: bool = False
    jitter_ms: Tuple[int, int] = (100, 400)
    refresh_csrf: bool = False


@dataclass
class SmartScanResult:
    crawled_pages: int
    candidates: List[Candidate] = field(default_factory=list)
    sqli: List[ScanResult] = field(default_factory=list)

    @property
    def vulnerable(self) -> bool:
        return any(r.vulnerable for r in self.sqli)

    def merged(self) -> ScanResult:
        """Flatten per-candidate results into a single ScanResult for export."""
        return ScanResult(details=[d for r in self.sqli for d in r.details])

    def to_dict(self) -> Dict[str, Any]:
        return {
            "crawled_pages": self.crawled_pages,
            "candidates": [c.to_dict() for c in self.candidates],
            "sqli": [r.to_dict() for r in self.sqli],
        }
