"""Policy cascade evaluator - first match wins, no match is BLOCKED."""

import logging
import time
from collections.abc import Sequence

from gate.engine.rules import POLICY_RULES, Rule
from gate.schemas.gate import (
    GateRequest,
    GateVerdict,
    PolicyEvaluation,
    RiskLevel,
    RuleTrace,
    TriggeredRule,
)
from gate.utils.clock import now_iso

logger = logging.getLogger(__name__)

DEFAULT_VERDICT = GateVerdict.BLOCKED
DEFAULT_RISK_LEVEL = RiskLevel.HIGH

DEFAULT_RULE = TriggeredRule(
    id="DEFAULT",
    name="Fail-Closed Default",
    reason="No policy rule matched — transaction blocked by fail-closed default",
)

SYSTEM_ERROR_RULE = TriggeredRule(
    id="SYSTEM-ERROR",
    name="System Error",
    reason="Policy evaluation failed — transaction blocked by fail-closed doctrine",
)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 2)


def _matches(rule: Rule, request: GateRequest) -> bool:
    """Run one predicate behind a fault barrier. A fault is a non-match."""
    try:
        return rule.condition(request) is True
    except Exception:
        logger.warning("Rule %s condition raised; treating as non-match", rule.id, exc_info=True)
        return False


def evaluate(request: GateRequest, rules: Sequence[Rule] = POLICY_RULES) -> PolicyEvaluation:
    """
    Evaluate a request against the rule cascade.

    Rules run in ascending priority (1 first); the first match wins. If no
    rule matches the verdict is BLOCKED. Never raises: any failure outside a
    rule predicate yields a BLOCKED SYSTEM-ERROR evaluation.
    """
    start = time.perf_counter()
    try:
        ordered = sorted(rules, key=lambda r: r.priority)
        trace: list[RuleTrace] = []

        for rule in ordered:
            matched = _matches(rule, request)
            trace.append(RuleTrace(id=rule.id, name=rule.name, matched=matched))
            if matched:
                logger.debug("Request %s matched %s -> %s", request.id, rule.id, rule.verdict.value)
                return PolicyEvaluation(
                    request_id=request.id,
                    verdict=rule.verdict,
                    risk_level=rule.risk_level,
                    triggered_rule=TriggeredRule(id=rule.id, name=rule.name, reason=rule.reason),
                    rules_evaluated=trace,
                    evaluation_time_ms=_elapsed_ms(start),
                    timestamp=now_iso(),
                )

        logger.info("Request %s matched no rule; fail-closed default applied", request.id)
        return PolicyEvaluation(
            request_id=request.id,
            verdict=DEFAULT_VERDICT,
            risk_level=DEFAULT_RISK_LEVEL,
            triggered_rule=DEFAULT_RULE,
            rules_evaluated=trace,
            evaluation_time_ms=_elapsed_ms(start),
            timestamp=now_iso(),
        )
    except Exception:
        logger.exception("Policy evaluation failed; returning SYSTEM-ERROR block")
        return PolicyEvaluation(
            request_id=_request_id(request),
            verdict=DEFAULT_VERDICT,
            risk_level=DEFAULT_RISK_LEVEL,
            triggered_rule=SYSTEM_ERROR_RULE,
            rules_evaluated=[],
            evaluation_time_ms=_elapsed_ms(start),
            timestamp=now_iso(),
        )


def _request_id(request: object) -> str:
    request_id = getattr(request, "id", None)
    return request_id if isinstance(request_id, str) and request_id else "unknown"
