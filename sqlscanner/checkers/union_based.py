from typing import List, Tuple

from sqlscanner.checkers.base import BaseTechnique
from sqlscanner.core.client import TransportError
from sqlscanner.core.comparator import has_sql_error, length_delta, similarity_signal
from sqlscanner.core.context import PointState, ScanContext
from sqlscanner.core.models import OrderByPayload, ResponseMeta, Technique, UnionPayload

DEFAULT_ORDER_BY = [
    OrderByPayload("' ORDER BY {n}--", "quoted_order_by"),
    OrderByPayload("1 ORDER BY {n}--", "numeric_order_by"),
]

DEFAULT_UNION = [
    UnionPayload("' UNION SELECT {columns}--", "quoted_union"),
    UnionPayload("1 UNION SELECT {columns}--", "numeric_union"),
    UnionPayload("' UNION SELECT {columns} FROM dual--", "oracle_union", db="oracle"),
]

MAX_COLUMNS = 8
ORDER_BY_OFFSET = 10
# responses closer than this are treated as the same page
SAME_PAGE = 0.995
LENGTH_DELTA = 0.15


def _differs(a: str, b: str, reference: str) -> Tuple[bool, float]:
    sim = similarity_signal(a, b)
    return sim < SAME_PAGE or length_delta(a, b, reference) > LENGTH_DELTA, sim


class UnionBased(BaseTechnique):
    """
    Estimates the column count with ORDER BY n against ORDER BY n+10, then
    sends one UNION SELECT NULL,... request of that width per union template
    matching the fingerprint. ORDER BY templates are tried in order and the
    search stops after the first one that yields a column count, so at most
    len(union templates) UNION requests go out per point.

    Column inference alone proves nothing (pages can vary at high n for
    unrelated reasons); only a UNION request may produce a vulnerable Finding.
    """

    name = "Union-based SQLi"
    technique = Technique.UNION
    remediation = (
        "Use parameterized queries; a UNION-injectable value can read arbitrary tables.",
        "Restrict the database account to the tables the page actually needs.",
    )

    def __init__(self, payloads=None, order_by=None):
        super().__init__(payloads)
        self.order_by: List[OrderByPayload] = (
            list(order_by) if order_by is not None else list(DEFAULT_ORDER_BY))

    def default_payloads(self) -> List[UnionPayload]:
        return list(DEFAULT_UNION)

    def planned_checks(self) -> int:
        # column search length is unknown until it stops
        return 0

    async def _column_count(self, ctx: ScanContext, state: PointState,
                            template: OrderByPayload) -> Tuple[int, str, ResponseMeta]:
        columns = 0
        sims = []
        meta = ResponseMeta(status=0)
        for n in range(1, MAX_COLUMNS + 1):
            low = await ctx.probe.send(state.point, template.render(n))
            await ctx.pause()
            high = await ctx.probe.send(state.point, template.render(n + ORDER_BY_OFFSET))
            await ctx.pause()
            if isinstance(low, TransportError) or isinstance(high, TransportError):
                break
            meta = low.meta()
            changed, sim = _differs(low.text, high.text, state.baseline_text)
            sims.append(f"{n}:{sim:.3f}")
            if not changed:
                break
            columns = n
        return columns, f"orderby-sim [{' '.join(sims)}] columns={columns}", meta

    def _union_candidates(self, fingerprint: str) -> List[UnionPayload]:
        return [u for u in self.payloads if u.db in ("any", fingerprint)]

    async def run(self, ctx: ScanContext, state: PointState) -> bool:
        if state.baseline is None:
            ctx.record(self.no_baseline(state, "UNION SELECT"), counted=False)
            return False
        base = state.baseline_text

        for template in self.order_by:
            columns, evidence, meta = await self._column_count(ctx, state, template)
            ctx.record(self.finding(state, template.template, meta, False, evidence),
                       counted=False)
            if not columns:
                continue

            for union in self._union_candidates(state.fingerprint):
                payload = union.render(columns)
                res = await ctx.probe.send(state.point, payload)
                if isinstance(res, TransportError):
                    ctx.record(self.inconclusive(state, payload, res), counted=False)
                    await ctx.pause()
                    continue

                changed, sim = _differs(base, res.text, base)
                vulnerable = not has_sql_error(res.text) and not res.server_error and changed
                ctx.record(self.finding(
                    state, payload, res.meta(), vulnerable,
                    f"sim(base,union)={sim:.3f} columns={columns}",
                    confirmations=("union", f"columns={columns}") if vulnerable else (),
                    replay=(res,),
                ), counted=False)
                if vulnerable:
                    return True
                await ctx.pause()
            return False
        return False
