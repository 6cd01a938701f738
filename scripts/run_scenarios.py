#!/usr/bin/env python3
"""
Generate examples/sample_evidence.json from the built-in scenarios.
Runs the orchestrator in-memory (no DB/API needed). The over-limit scenario
is sealed once per reviewer decision.
Usage: python scripts/run_scenarios.py
"""

import asyncio
import json
import sys
from pathlib import Path

# Add project root
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from gate.engine.orchestrator import DecisionOrchestrator, DecisionState, HumanDecision
from gate.engine.scenarios import SCENARIO_FIXTURES, get_scenario
from gate.schemas.approval import ApprovalDecision


def reviewer(decision: ApprovalDecision):
    async def provide(request, evaluation, approval):
        return HumanDecision(status=decision, decided_by="demo-reviewer")

    return provide


async def run() -> list[dict]:
    orchestrator = DecisionOrchestrator()
    results = []
    for scenario_id in SCENARIO_FIXTURES:
        providers = [None]
        if scenario_id == "over-limit":
            providers = [reviewer(ApprovalDecision.APPROVED), reviewer(ApprovalDecision.REJECTED)]
        for provider in providers:
            outcome = await orchestrator.run(get_scenario(scenario_id), decision_provider=provider)
            entry = {
                "scenario_id": scenario_id,
                "state": outcome.state.value,
                "effective_verdict": outcome.effective_verdict.value,
            }
            if outcome.state == DecisionState.SEALED:
                entry["evidence_pack"] = outcome.evidence_pack.model_dump(mode="json", exclude_none=True)
            else:
                entry["error"] = outcome.error
            results.append(entry)
    return results


def main():
    examples_dir = Path(__file__).resolve().parent.parent / "examples"
    examples_dir.mkdir(exist_ok=True)
    out_path = examples_dir / "sample_evidence.json"

    results = asyncio.run(run())
    with open(out_path, "w") as f:
        json.dump(results, f, indent=2, ensure_ascii=False)

    print(f"Generated {len(results)} evidence packs -> {out_path}")


if __name__ == "__main__":
    main()
