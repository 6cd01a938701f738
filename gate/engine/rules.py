"""
Policy rule table.

Each rule is a plain record holding a pure predicate plus static metadata.
The table is an immutable tuple, built once at import and read-only after.

 Priority | Rule ID  | Condition                                | Verdict                 | Risk
 ---------+----------+------------------------------------------+-------------------------+---------
 1        | RULE-001 | Prompt injection heuristic               | BLOCKED                 | CRITICAL
 2        | RULE-002 | Unknown agent type                       | BLOCKED                 | HIGH
 3        | RULE-003 | Unverified recipient + amount > $100     | BLOCKED                 | HIGH
 4        | RULE-004 | Amount > agent limit ($200 PURCHASING)   | REQUIRES_HUMAN_APPROVAL | MEDIUM
 5        | RULE-005 | Recipient not in known vendor list       | REQUIRES_HUMAN_APPROVAL | MEDIUM
 6        | RULE-006 | Within limits, verified recipient        | AUTHORIZED              | LOW
 7        | RULE-007 | Zero-amount (no-op)                      | AUTHORIZED              | LOW
 -        | DEFAULT  | No rule matched                          | BLOCKED                 | HIGH

Rule ids are referenced by sealed evidence packs and must never be renumbered.
"""

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from types import MappingProxyType

from gate.schemas.gate import (
    AgentType,
    GateRequest,
    GateVerdict,
    RiskLevel,
    RuleDisplay,
)

# Per-agent-type spending ceilings in USD
AGENT_LIMITS: Mapping[str, float] = MappingProxyType(
    {
        AgentType.PURCHASING.value: 200,
        AgentType.TREASURY.value: 10_000,
        AgentType.OPERATIONS.value: 500,
    }
)

KNOWN_RECIPIENTS: tuple[str, ...] = (
    "Office Supplies Co",
    "TechVendor Inc",
    "Cloud Services Ltd",
    "Marketing Agency Co",
)

# Illustrative phrase list; substring matching over self-reported reasoning
# is a heuristic, not a security boundary.
SUSPICIOUS_PATTERNS: tuple[str, ...] = (
    "ignore previous",
    "override",
    "bypass",
    "new instructions",
    "wallet",
    "urgent transfer",
)

INJECTION_AMOUNT_THRESHOLD = 1000
UNVERIFIED_AMOUNT_THRESHOLD = 100


@dataclass(frozen=True)
class Rule:
    """One entry in the cascade."""

    id: str
    name: str
    description: str
    priority: int
    condition: Callable[[GateRequest], bool]
    verdict: GateVerdict
    risk_level: RiskLevel
    reason: str

    def display(self) -> RuleDisplay:
        """Rule metadata with the predicate stripped."""
        return RuleDisplay(
            id=self.id,
            name=self.name,
            description=self.description,
            priority=self.priority,
            verdict=self.verdict,
            risk_level=self.risk_level,
            reason=self.reason,
        )


def has_suspicious_reasoning(reasoning: str | None, patterns: Iterable[str] = SUSPICIOUS_PATTERNS) -> bool:
    if not reasoning:
        return False
    lower = reasoning.lower()
    return any(p in lower for p in patterns)


def _agent_limit(limits: Mapping[str, float], agent_type: AgentType) -> float:
    return limits.get(AgentType(agent_type).value, 0)


def build_rules(
    agent_limits: Mapping[str, float] = AGENT_LIMITS,
    known_recipients: Iterable[str] = KNOWN_RECIPIENTS,
    suspicious_patterns: Iterable[str] = SUSPICIOUS_PATTERNS,
) -> tuple[Rule, ...]:
    """Build the priority-ordered rule table."""
    limits = MappingProxyType(dict(agent_limits))
    recipients = frozenset(known_recipients)
    patterns = tuple(p.lower() for p in suspicious_patterns)

    rules = (
        Rule(
            id="RULE-001",
            name="Prompt Injection Detection",
            description=(
                "Blocks transactions with unverified recipients, high amounts, "
                "and suspicious agent reasoning patterns"
            ),
            priority=1,
            condition=lambda req: (
                not req.transaction.recipient.verified
                and req.transaction.amount > INJECTION_AMOUNT_THRESHOLD
                and has_suspicious_reasoning(req.context.agent_reasoning, patterns)
            ),
            verdict=GateVerdict.BLOCKED,
            risk_level=RiskLevel.CRITICAL,
            reason=(
                "Potential prompt injection detected: unverified recipient, "
                "high amount, and suspicious reasoning pattern"
            ),
        ),
        Rule(
            id="RULE-002",
            name="Unknown Agent Type",
            description="Blocks transactions from unrecognized agent types",
            priority=2,
            condition=lambda req: req.agent.type == AgentType.UNKNOWN,
            verdict=GateVerdict.BLOCKED,
            risk_level=RiskLevel.HIGH,
            reason="Transaction from unknown agent type — not authorized to transact",
        ),
        Rule(
            id="RULE-003",
            name="Unverified High-Value Recipient",
            description=(
                "Blocks transactions over $100 to recipients not on the "
                "verified vendor list"
            ),
            priority=3,
            condition=lambda req: (
                not req.transaction.recipient.verified
                and req.transaction.amount > UNVERIFIED_AMOUNT_THRESHOLD
            ),
            verdict=GateVerdict.BLOCKED,
            risk_level=RiskLevel.HIGH,
            reason="Unverified recipient with transaction amount exceeding $100 threshold",
        ),
        Rule(
            id="RULE-004",
            name="Agent Spending Limit",
            description=(
                "Escalates transactions that exceed the agent type's "
                "per-transaction spending ceiling"
            ),
            priority=4,
            condition=lambda req: req.transaction.amount > _agent_limit(limits, req.agent.type),
            verdict=GateVerdict.REQUIRES_HUMAN_APPROVAL,
            risk_level=RiskLevel.MEDIUM,
            reason=(
                "Transaction amount exceeds agent's authorized spending limit — "
                "human approval required"
            ),
        ),
        Rule(
            id="RULE-005",
            name="New Recipient Review",
            description="Escalates transactions to recipients not yet in the approved vendor list",
            priority=5,
            condition=lambda req: req.transaction.recipient.name not in recipients,
            verdict=GateVerdict.REQUIRES_HUMAN_APPROVAL,
            risk_level=RiskLevel.MEDIUM,
            reason="Recipient not found in approved vendor list — human review required",
        ),
        Rule(
            id="RULE-006",
            name="Standard Authorization",
            description=(
                "Authorizes transactions within the agent's spending limit "
                "to verified recipients"
            ),
            priority=6,
            # amount > 0 is strict: negative amounts fall through to DEFAULT
            condition=lambda req: (
                req.transaction.amount > 0
                and req.transaction.amount <= _agent_limit(limits, req.agent.type)
                and req.transaction.recipient.verified
            ),
            verdict=GateVerdict.AUTHORIZED,
            risk_level=RiskLevel.LOW,
            reason="Transaction within agent limits to verified recipient — authorized",
        ),
        Rule(
            id="RULE-007",
            name="No-Op Transaction",
            description="Authorizes zero-amount transactions (no financial risk)",
            priority=7,
            condition=lambda req: req.transaction.amount == 0,
            verdict=GateVerdict.AUTHORIZED,
            risk_level=RiskLevel.LOW,
            reason="Zero-amount transaction — no financial risk",
        ),
    )
    check_rule_table(rules)
    return rules


def check_rule_table(rules: Iterable[Rule]) -> None:
    """Priorities must be strictly increasing and ids unique."""
    seen: set[str] = set()
    last = None
    for rule in rules:
        if rule.id in seen:
            raise ValueError(f"Duplicate rule id: {rule.id}")
        seen.add(rule.id)
        if last is not None and rule.priority <= last:
            raise ValueError(
                f"Rule {rule.id} priority {rule.priority} is not greater than {last}"
            )
        last = rule.priority


def rules_display(rules: Iterable[Rule]) -> list[RuleDisplay]:
    return [r.display() for r in rules]


POLICY_RULES: tuple[Rule, ...] = build_rules()
