"""Abstract base for the SQL injection technique evaluators."""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Sequence

from sqlscanner.core.client import ProbeResult, TransportError
from sqlscanner.core.context import PointState, ScanContext
from sqlscanner.core.models import Finding, ResponseMeta, Technique


class BaseTechnique(ABC):
    """Every technique supplies default payloads and run()."""

    name: str = "Unnamed Technique"
    technique: Technique
    remediation: Sequence[str] = ()

    def __init__(self, payloads: Optional[Iterable] = None):
        self.payloads: List = list(payloads) if payloads is not None else self.default_payloads()

    # ── public API ──────────────────────────────────────────────

    @abstractmethod
    def default_payloads(self) -> List:
        """Payloads used when the scan options carry no override."""
        ...

    def planned_checks(self) -> int:
        """Findings this technique contributes to the progress estimate for one point."""
        return len(self.payloads)

    @abstractmethod
    async def run(self, ctx: ScanContext, state: PointState) -> bool:
        """
        Probe state.point, record one Finding per attempt in ctx and
        return True once the technique is confirmed.
        """
        ...

    # ── shared helpers ──────────────────────────────────────────

    def finding(
        self,
        state: PointState,
        payload: str,
        meta: ResponseMeta,
        vulnerable: bool,
        evidence: str,
        confirmations: Sequence[str] = (),
        replay: Sequence[ProbeResult] = (),
    ) -> Finding:
        return Finding(
            point=state.point,
            payload=payload,
            technique=self.technique,
            vulnerable=vulnerable,
            response_meta=meta,
            evidence=evidence,
            confirmations=tuple(confirmations),
            reproduce=tuple(r.request.to_curl() for r in replay) if vulnerable else (),
            remediation=tuple(self.remediation) if vulnerable else (),
        )

    def inconclusive(self, state: PointState, payload: str, result: TransportError) -> Finding:
        return self.finding(state, payload, result.meta(), False,
                            f"inconclusive: {result.error}")

    def no_baseline(self, state: PointState, payload: str) -> Finding:
        """Placeholder for a comparison that was never made."""
        return self.finding(state, payload, ResponseMeta(status=0), False,
                            "inconclusive: baseline request failed")
