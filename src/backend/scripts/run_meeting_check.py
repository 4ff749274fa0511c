from __future__ import annotations

import argparse
import json
import sys
from datetime import date, datetime
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, Field


def _ensure_backend_on_path() -> None:
    backend_dir = Path(__file__).resolve().parents[1]
    if str(backend_dir) not in sys.path:
        sys.path.insert(0, str(backend_dir))


_ensure_backend_on_path()

from common.log import configure_logging  # noqa: E402
from common.rules_engine.due_dates import calculate_due_dates  # noqa: E402
from common.rules_engine.models import EnforcementReport, GateResult, PlanMeeting, RulePack  # noqa: E402
from common.rules_engine.resolver import ResolutionTrace  # noqa: E402
from pipelines.config import get_engine_settings  # noqa: E402
from pipelines.fixtures import FixtureBundle, load_fixture_repository  # noqa: E402


class MeetingCheckReport(BaseModel):
    generated_at: datetime
    meeting: PlanMeeting
    # Pack the gates evaluated (the meeting's snapshot); `resolution` is what would resolve today.
    rule_pack: Optional[RulePack] = None
    resolution: ResolutionTrace
    due_dates: Dict[str, date] = Field(default_factory=dict)
    enforcement: EnforcementReport
    close_gate: GateResult
    implement_gate: GateResult


def run_meeting_check_from_bundle(bundle: FixtureBundle) -> MeetingCheckReport:
    service = bundle.service
    meeting = service.get_meeting(bundle.meeting_id)
    scope = bundle.scope
    rule_pack = service.meeting_rule_pack(meeting.id, scope)
    trace = service.resolver.resolve_with_trace(
        scope.school_id, scope.district_id, scope.state_code, meeting.plan_type, as_of=bundle.as_of
    )
    return MeetingCheckReport(
        generated_at=datetime.now().astimezone(),
        meeting=meeting,
        rule_pack=rule_pack,
        resolution=trace,
        due_dates=calculate_due_dates(meeting.scheduled_at, rule_pack),
        enforcement=service.evaluate_meeting(meeting.id, scope),
        close_gate=service.can_close_meeting(meeting.id, scope),
        implement_gate=service.can_implement_plan(meeting.id, scope),
    )


def run_meeting_check(fixtures_dir: Path, *, seed_defaults: bool = True) -> MeetingCheckReport:
    bundle = load_fixture_repository(fixtures_dir, seed_defaults=seed_defaults)
    return run_meeting_check_from_bundle(bundle)


def _gate_lines(title: str, gate: GateResult) -> list[str]:
    lines = [f"## {title}: {'ALLOWED' if gate.allowed else 'BLOCKED'}"]
    for err in gate.errors:
        suffix = f" ({err.rule_key})" if err.rule_key else ""
        lines.append(f"- [{err.kind.value}] {err.code}{suffix}: {err.message}")
    for warning in gate.warnings:
        lines.append(f"- Warning: {warning}")
    lines.append("")
    return lines


def _pack_label(pack: RulePack) -> str:
    return f"{pack.name} v{pack.version} ({pack.scope_type.value}:{pack.scope_id}, {pack.plan_type.value})"


def _write_markdown(report: MeetingCheckReport, out_path: Path) -> None:
    meeting = report.meeting
    lines = [
        f"# Meeting Check {meeting.id}",
        "",
        f"Generated at: {report.generated_at.isoformat()}",
        f"Status: {meeting.status.value} | Plan: {meeting.plan_type.value} | Type: {meeting.meeting_type_code.value}",
        "",
        "## Rule Pack",
    ]
    pack = report.rule_pack
    if pack is None:
        lines.append("- Evaluated: none (no enforcement applies)")
    else:
        lines.append(f"- Evaluated: {_pack_label(pack)}")
    searched = ", ".join(f"{s.scope_type.value}:{s.scope_id}" for s in report.resolution.searched)
    lines.append(f"- Searched: {searched or 'none'}")
    current = report.resolution.rule_pack
    if (current.id if current else None) != (pack.id if pack else None):
        lines.append(f"- Currently resolves to: {_pack_label(current) if current else 'none'} (re-resolve to apply)")
    lines.append("")

    lines.append("## Due Dates")
    if not report.due_dates:
        lines.append("- none")
    for key, due in sorted(report.due_dates.items(), key=lambda item: item[1]):
        lines.append(f"- {key}: {due.isoformat()}")
    lines.append("")

    lines.append("## Rules")
    for res in report.enforcement.rule_results:
        if res.advisory:
            state = "ADVISORY"
        else:
            state = "PASS" if res.satisfied else "FAIL"
        line = f"- {res.rule_key}: {state}"
        if res.missing_evidence_keys:
            line += f" (missing: {', '.join(res.missing_evidence_keys)})"
        lines.append(line)
    lines.append("")

    lines.extend(_gate_lines("Close Meeting", report.close_gate))
    lines.extend(_gate_lines("Implement Plan", report.implement_gate))
    out_path.write_text("\n".join(lines))


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        description="Resolve the rule pack for a fixture meeting, evaluate enforcement and write JSON/MD outputs."
    )
    parser.add_argument(
        "--fixtures-dir",
        default=None,
        help="Path to a fixtures directory (e.g. src/backend/tests/rules_engine/fixtures/initial_iep_school_override).",
    )
    parser.add_argument(
        "--output-dir",
        default=None,
        help="Output directory for report files (defaults to fixtures dir).",
    )
    parser.add_argument(
        "--no-seed-defaults",
        action="store_false",
        dest="seed_defaults",
        default=None,
        help="Do not install the built-in rule catalog before loading fixtures.",
    )
    args = parser.parse_args(argv)

    settings = get_engine_settings()
    configure_logging(settings.log_level, settings.log_format)

    fixtures_dir = Path(args.fixtures_dir).resolve() if args.fixtures_dir else None
    if fixtures_dir is None and settings.data_source == "fixtures":
        fixtures_dir = settings.fixtures_dir
    if fixtures_dir is None:
        raise SystemExit(
            "A fixtures directory is required (--fixtures-dir, or COMPLIANCE_DATA_SOURCE=fixtures with COMPLIANCE_FIXTURES_DIR)."
        )
    output_dir = Path(args.output_dir).resolve() if args.output_dir else fixtures_dir
    output_dir.mkdir(parents=True, exist_ok=True)

    seed_defaults = settings.seed_defaults if args.seed_defaults is None else args.seed_defaults
    report = run_meeting_check(fixtures_dir, seed_defaults=seed_defaults)

    base_name = f"meeting_check_{report.meeting.id}"
    out_json = output_dir / f"{base_name}.json"
    out_md = output_dir / f"{base_name}.md"
    out_json.write_text(json.dumps(report.model_dump(mode="json"), indent=2))
    _write_markdown(report, out_md)

    print(f"Wrote {out_json}")
    print(f"Wrote {out_md}")
    return 0 if report.close_gate.allowed and report.implement_gate.allowed else 2


if __name__ == "__main__":
    raise SystemExit(main())
