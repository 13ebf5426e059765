import asyncio
from typing import List

from sqlscanner.checkers.base import BaseTechnique
from sqlscanner.core.client import TransportError
from sqlscanner.core.context import PointState, ScanContext
from sqlscanner.core.models import ResponseMeta, Technique, TimePayload
from sqlscanner.core.stats import mean, paired_z_test_p_value

DEFAULT_TIME_PAYLOADS = [
    TimePayload("'; WAITFOR DELAY '00:00:03'--", "mssql_waitfor", db="mssql"),
    TimePayload("' OR SLEEP(3)--", "mysql_sleep", db="mysql"),
    TimePayload("'; SELECT pg_sleep(3)--", "postgresql_sleep", db="postgres"),
    TimePayload("1; WAITFOR DELAY '00:00:03'--", "mssql_waitfor_numeric", db="mssql"),
    TimePayload("' AND 1=DBMS_PIPE.RECEIVE_MESSAGE('a',3)--", "oracle_sleep", db="oracle"),
]

# gap between the baseline and injected probe of one trial
TRIAL_GAP_S = 0.01
# injected mean must exceed baseline mean by this share of the threshold
DELAY_SHARE = 0.8
ALPHA = 0.05


class TimeBased(BaseTechnique):
    """
    Repeats {baseline, injected} probe pairs and runs a one-sided paired
    z-test on the latency differences, so one slow response cannot flag a point.
    """

    name = "Time-based SQLi"
    technique = Technique.TIME
    remediation = (
        "Use parameterized queries; the injected value controls query execution time.",
        "Set statement timeouts on the database account used by the application.",
    )

    def default_payloads(self) -> List[TimePayload]:
        return list(DEFAULT_TIME_PAYLOADS)

    def ordered(self, fingerprint: str) -> List[TimePayload]:
        """Payloads for the detected engine first, original order otherwise."""
        if fingerprint == "unknown":
            return list(self.payloads)
        first = [p for p in self.payloads if p.db == fingerprint]
        return first + [p for p in self.payloads if p.db != fingerprint]

    async def run(self, ctx: ScanContext, state: PointState) -> bool:
        threshold = ctx.time_threshold_ms

        for tp in self.ordered(state.fingerprint):
            base_times: List[float] = []
            inj_times: List[float] = []
            statuses: List[int] = []
            last_inj = None
            error = ""

            for _ in range(ctx.time_trials):
                base = await ctx.probe.send(state.point, "")
                await asyncio.sleep(TRIAL_GAP_S)
                inj = await ctx.probe.send(state.point, tp.payload)
                await ctx.pause()
                if isinstance(base, TransportError) or isinstance(inj, TransportError):
                    error = (base if isinstance(base, TransportError) else inj).error
                    continue
                base_times.append(base.elapsed_ms)
                inj_times.append(inj.elapsed_ms)
                statuses += [base.status, inj.status]
                last_inj = inj

            if last_inj is None:
                ctx.record(self.finding(state, tp.payload, ResponseMeta(status=0), False,
                                        f"inconclusive: {error}"))
                continue

            diffs = [i - b for b, i in zip(base_times, inj_times)]
            test = paired_z_test_p_value(diffs)
            delta = mean(inj_times) - mean(base_times)
            near_base = all(s < 500 for s in statuses)
            vulnerable = near_base and delta > DELAY_SHARE * threshold and test.p <= ALPHA

            evidence = (f"mean_base={mean(base_times):.0f}ms mean_inj={mean(inj_times):.0f}ms "
                        f"delta={delta:.0f}ms z={test.z:.2f} p={test.p:.4f} "
                        f"trials={len(diffs)} threshold={threshold}ms")
            ctx.record(self.finding(
                state, tp.payload, last_inj.meta(), vulnerable, evidence,
                confirmations=("time_pvalue", tp.label or tp.db) if vulnerable else (),
                replay=(last_inj,),
            ))
            if vulnerable:
                return True
        return False
