from typing import List

from sqlscanner.checkers.base import BaseTechnique
from sqlscanner.core.client import TransportError
from sqlscanner.core.comparator import length_delta, similarity_signal
from sqlscanner.core.context import PointState, ScanContext
from sqlscanner.core.models import BooleanPair, Technique

DEFAULT_BOOLEAN_PAIRS = [
    BooleanPair("1' AND 1=1--", "1' AND 1=2--", "classic_boolean"),
    BooleanPair("' OR 'a'='a", "' OR 'a'='b", "or_boolean"),
    BooleanPair("1 AND 1=1", "1 AND 1=2", "numeric_boolean"),
    BooleanPair("' OR 1=1--", "' OR 1=2--", "sqlite_or_comment"),
    BooleanPair(") OR 1=1--", ") OR 1=2--", "paren_or_comment"),
]

# true/false pages must diverge below this similarity
PAIR_DIVERGENCE = 0.6
# and sit at clearly different distances from the baseline
BASELINE_SPREAD = 0.25
# relative body length delta for structured (JSON) responses
JSON_LENGTH_DELTA = 0.15


class BooleanBased(BaseTechnique):
    """Sends a logically true and a logically false condition and diffs the pages."""

    name = "Boolean-based SQLi"
    technique = Technique.BOOLEAN
    remediation = (
        "Use parameterized queries; do not concatenate request values into WHERE clauses.",
        "Validate numeric identifiers as integers before they reach the data layer.",
    )

    def default_payloads(self) -> List[BooleanPair]:
        return list(DEFAULT_BOOLEAN_PAIRS)

    async def run(self, ctx: ScanContext, state: PointState) -> bool:
        if state.baseline is None:
            for pair in self.payloads:
                ctx.record(self.no_baseline(state, f"{pair.true} | {pair.false}"))
            return False
        base = state.baseline_text

        for pair in self.payloads:
            true_res = await ctx.probe.send(state.point, pair.true)
            await ctx.pause()
            false_res = await ctx.probe.send(state.point, pair.false)
            payload = f"{pair.true} | {pair.false}"

            failed = next((r for r in (true_res, false_res) if isinstance(r, TransportError)), None)
            if failed is not None:
                ctx.record(self.inconclusive(state, payload, failed))
                await ctx.pause()
                continue

            sim_bt = similarity_signal(base, true_res.text)
            sim_bf = similarity_signal(base, false_res.text)
            sim_tf = similarity_signal(true_res.text, false_res.text)
            healthy = not true_res.server_error and not false_res.server_error

            differential = sim_tf < PAIR_DIVERGENCE and abs(sim_bt - sim_bf) > BASELINE_SPREAD
            json_signal = False
            if true_res.is_json or false_res.is_json:
                json_signal = length_delta(true_res.text, false_res.text, base) > JSON_LENGTH_DELTA
            vulnerable = healthy and (differential or json_signal)

            evidence = (f"sim(base,true)={sim_bt:.3f} sim(base,false)={sim_bf:.3f} "
                        f"sim(true,false)={sim_tf:.3f}")
            if json_signal:
                evidence += f" json_len_delta>{JSON_LENGTH_DELTA}"
            confirmations = ("boolean_differential", pair.label) if pair.label else ("boolean_differential",)

            ctx.record(self.finding(
                state, payload, true_res.meta(), vulnerable, evidence,
                confirmations=confirmations if vulnerable else (),
                replay=(true_res, false_res),
            ))
            if vulnerable:
                return True
            await ctx.pause()
        return False
