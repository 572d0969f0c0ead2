from __future__ import annotations
import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Iterable, List
from app.agent.architect import design
from app.agent.architect.schemas import DesignOutput
from app.eval.judge import LLMJudge
from app.eval.scenarios import Scenario, ScenarioResult, load_scenarios


def structural_issues(output: DesignOutput) -> List[str]:
    issues: List[str] = []
    ids = [node.id for node in output.nodes]
    if len(ids) != len(set(ids)):
        issues.append("duplicate node ids")
    known = set(ids)
    for edge in output.edges:
        if edge.source not in known or edge.target not in known:
            issues.append(f"edge {edge.id} references a missing node")
    if any(node.position is None for node in output.nodes):
        issues.append("node without a position")
    return issues


def run_scenario(scenario: Scenario, judge: LLMJudge) -> ScenarioResult:
    output = asyncio.run(design.generate_design(scenario.requirements))
    rendered = json.dumps(output.to_wire(), ensure_ascii=False, indent=2)
    issues = structural_issues(output)
    if issues:
        return ScenarioResult(
            scenario=scenario,
            output=rendered,
            score=0.0,
            passed=False,
            feedback="Invalid graph: " + "; ".join(issues),
        )
    judgement = judge.judge(
        json.dumps(scenario.requirements.to_wire(), ensure_ascii=False),
        rendered,
        scenario.success_criteria,
    )
    return ScenarioResult(
        scenario=scenario,
        output=rendered,
        score=judgement.score,
        passed=judgement.passed,
        feedback=judgement.feedback,
    )


def run_batch(scenarios: Iterable[Scenario], judge: LLMJudge) -> List[ScenarioResult]:
    results: List[ScenarioResult] = []
    for scenario in scenarios:
        try:
            result = run_scenario(scenario, judge)
        except Exception as exc:
            results.append(
                ScenarioResult(
                    scenario=scenario,
                    output="",
                    score=0.0,
                    passed=False,
                    feedback=f"Execution failed: {exc}",
                )
            )
            continue
        results.append(result)
    return results


def summarise_and_log(results: List[ScenarioResult], output_path: Path | None = None) -> int:
    passed = sum(1 for r in results if r.passed)
    total = len(results)
    avg_score = sum(r.score for r in results) / total if total else 0.0

    print(f"Passed {passed}/{total} scenarios | avg score {avg_score:.2f}", file=sys.stderr)
    for result in results:
        status = "PASS" if result.passed else "FAIL"
        print(f"[{status}] {result.scenario.name}: {result.score:.2f} - {result.feedback}", file=sys.stderr)

    if output_path:
        payload = [
            {
                "scenario": result.scenario.name,
                "requirements": result.scenario.requirements.to_wire(),
                "output": result.output,
                "score": result.score,
                "passed": result.passed,
                "feedback": result.feedback,
            }
            for result in results
        ]
        output_path.write_text(json.dumps(payload, ensure_ascii=False, indent=2), encoding="utf-8")

    return 0 if passed == total else 1


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Run design scenarios through the generator and grade them.")
    parser.add_argument("--extra-scenarios", type=str, help="Optional JSON file with more scenarios", default=None)
    parser.add_argument("--model", type=str, help="LLM judge model id", default=None)
    parser.add_argument("--threshold", type=float, help="Passing threshold", default=0.6)
    parser.add_argument("--output", type=str, help="Write JSON results to this path", default=None)
    args = parser.parse_args(argv)

    judge = LLMJudge(model=args.model, threshold=args.threshold)
    results = run_batch(load_scenarios(args.extra_scenarios), judge)
    output_path = Path(args.output) if args.output else None
    return summarise_and_log(results, output_path)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
