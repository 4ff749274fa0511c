from datetime import datetime, timezone

from common.rules_engine.models import PlanType, ScopeType
from common.rules_engine.resolver import candidate_scopes, select_pack


def _resolve(service, as_of, plan_type=PlanType.IEP, school="SCH-001", district="HCPSS", state="MD"):
    return service.resolver.resolve_active_pack(school, district, state, plan_type, as_of=as_of)


def test_school_pack_beats_district_pack(service, make_pack, as_of):
    make_pack(scope_type=ScopeType.DISTRICT, scope_id="HCPSS")
    school = make_pack(scope_type=ScopeType.SCHOOL, scope_id="SCH-001")
    assert _resolve(service, as_of).id == school.id


def test_falls_through_to_state(service, make_pack, as_of):
    state = make_pack(scope_type=ScopeType.STATE, scope_id="MD", plan_type=PlanType.ALL)
    assert _resolve(service, as_of).id == state.id


def test_narrower_scope_wins_even_with_no_rules(service, make_pack, as_of):
    make_pack(scope_type=ScopeType.DISTRICT, scope_id="HCPSS", rules=[("CONFERENCE_NOTES_REQUIRED", None, ["CONFERENCE_NOTES"])])
    empty_school = make_pack(scope_type=ScopeType.SCHOOL, scope_id="SCH-001")
    resolved = _resolve(service, as_of)
    assert resolved.id == empty_school.id
    assert resolved.rules == []


def test_plan_specific_pack_beats_all_at_same_scope(service, make_pack, as_of):
    make_pack(plan_type=PlanType.ALL)
    iep = make_pack(plan_type=PlanType.IEP)
    make_pack(plan_type=PlanType.ALL)
    assert _resolve(service, as_of).id == iep.id


def test_all_pack_applies_to_any_plan(service, make_pack, as_of):
    all_pack = make_pack(plan_type=PlanType.ALL)
    for plan_type in (PlanType.IEP, PlanType.PLAN504, PlanType.BIP):
        assert _resolve(service, as_of, plan_type=plan_type).id == all_pack.id


def test_other_plan_packs_are_ignored(service, make_pack, as_of):
    make_pack(plan_type=PlanType.BIP)
    assert _resolve(service, as_of, plan_type=PlanType.IEP) is None


def test_inactive_packs_are_ignored(service, make_pack, as_of):
    district = make_pack(scope_type=ScopeType.DISTRICT, scope_id="HCPSS")
    make_pack(is_active=False)
    assert _resolve(service, as_of).id == district.id


def test_effective_window_is_half_open(service, make_pack):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    end = datetime(2024, 7, 1, tzinfo=timezone.utc)
    pack = make_pack(effective_from=start, effective_to=end)

    assert _resolve(service, datetime(2023, 12, 31, 23, 59, tzinfo=timezone.utc)) is None
    assert _resolve(service, start).id == pack.id
    assert _resolve(service, datetime(2024, 6, 30, 23, 59, tzinfo=timezone.utc)).id == pack.id
    assert _resolve(service, end) is None


def test_future_pack_falls_back_to_broader_scope(service, make_pack, as_of):
    district = make_pack(scope_type=ScopeType.DISTRICT, scope_id="HCPSS")
    make_pack(effective_from=datetime(2030, 1, 1, tzinfo=timezone.utc))
    assert _resolve(service, as_of).id == district.id


def test_missing_ids_skip_levels(service, make_pack, as_of):
    state = make_pack(scope_type=ScopeType.STATE, scope_id="MD")
    make_pack(scope_type=ScopeType.SCHOOL, scope_id="SCH-001")
    assert _resolve(service, as_of, school=None, district=None).id == state.id


def test_no_pack_anywhere_returns_none(service, as_of):
    assert _resolve(service, as_of) is None


def test_trace_records_searched_levels(service, make_pack, as_of):
    make_pack(scope_type=ScopeType.DISTRICT, scope_id="HCPSS")
    trace = service.resolver.resolve_with_trace("SCH-001", "HCPSS", "MD", PlanType.IEP, as_of=as_of)
    assert [s.scope_type for s in trace.searched] == [ScopeType.SCHOOL, ScopeType.DISTRICT]
    assert trace.matched.scope_id == "HCPSS"


def test_candidate_scopes_order():
    scopes = candidate_scopes("S", None, "MD")
    assert [(s.scope_type, s.scope_id) for s in scopes] == [(ScopeType.SCHOOL, "S"), (ScopeType.STATE, "MD")]


def test_select_pack_prefers_highest_version(make_detached_pack, as_of):
    older = make_detached_pack([], pack_id="a", version=1)
    newer = make_detached_pack([], pack_id="b", version=2)
    assert select_pack([newer, older], PlanType.IEP, as_of).id == "b"
