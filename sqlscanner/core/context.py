"""Per-invocation scan state shared by the point workers."""

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Tuple

from sqlscanner.core.client import ProbeClient, ProbeResponse
from sqlscanner.core.comparator import extract_title
from sqlscanner.core.models import Finding, InjectionPoint, ScanProgress


@dataclass
class PointState:
    """What earlier stages learned about one point, consulted by later ones."""
    point: InjectionPoint
    baseline: Optional[ProbeResponse] = None
    fingerprint: str = "unknown"

    @property
    def baseline_text(self) -> str:
        return self.baseline.text if self.baseline is not None else ""

    @property
    def baseline_title(self) -> str:
        return extract_title(self.baseline_text)


@dataclass
class ScanContext:
    """
    Findings and progress counters for one Detection Engine run.

    Workers run as asyncio tasks on one event loop and only touch this object
    between awaits, so appends and increments need no lock.
    """
    probe: ProbeClient
    planned_checks: int = 0
    time_threshold_ms: int = 2500
    time_trials: int = 3
    jitter_ms: Tuple[int, int] = (100, 400)
    on_progress: Optional[Callable[[ScanProgress], None]] = None
    logger: object = None
    findings: List[Finding] = field(default_factory=list)
    processed_checks: int = 0
    started: float = field(default_factory=time.perf_counter)

    def record(self, finding: Finding, counted: bool = True):
        self.findings.append(finding)
        if counted:
            self.processed_checks += 1
        if finding.vulnerable and self.logger:
            self.logger.finding(finding)
        elif self.logger:
            self.logger.debug(str(finding))
        self.report()

    def eta_ms(self) -> Optional[int]:
        if not self.processed_checks:
            return None
        elapsed = (time.perf_counter() - self.started) * 1000
        remaining = max(0, self.planned_checks - self.processed_checks)
        return int(elapsed / self.processed_checks * remaining)

    def report(self):
        if self.on_progress is None:
            return
        self.on_progress(ScanProgress(
            phase="scan",
            planned_checks=self.planned_checks,
            processed_checks=self.processed_checks,
            eta_ms=self.eta_ms(),
        ))

    async def pause(self):
        """Randomized gap between successive requests to the same point."""
        lo, hi = self.jitter_ms
        if hi <= 0:
            return
        await asyncio.sleep(random.uniform(lo, hi) / 1000)
