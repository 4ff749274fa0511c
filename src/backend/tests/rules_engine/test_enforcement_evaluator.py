from common.rules_engine.evaluator import EnforcementEvaluator, evaluate


def test_missing_evidence_reported_until_provided(make_rule, make_detached_pack, make_evidence):
    pack = make_detached_pack([make_rule("R1", required=["A", "B"])])

    first = evaluate("mtg-1", [], pack)
    assert first.allowed is False
    assert first.rule_results[0].missing_evidence_keys == ["A", "B"]

    second = evaluate("mtg-1", make_evidence("A"), pack)
    assert second.allowed is False
    assert second.rule_results[0].missing_evidence_keys == ["B"]

    third = evaluate("mtg-1", make_evidence("A", "B"), pack)
    assert third.allowed is True
    assert third.rule_results[0].satisfied is True
    assert third.rule_results[0].missing_evidence_keys == []


def test_no_pack_allows_with_no_results():
    report = evaluate("mtg-1", [], None)
    assert report.allowed is True
    assert report.rule_results == []
    assert report.rule_pack_id is None


def test_disabled_rules_produce_no_result(make_rule, make_detached_pack):
    pack = make_detached_pack([make_rule("R1", required=["A"], is_enabled=False)])
    report = evaluate("mtg-1", [], pack)
    assert report.allowed is True
    assert report.rule_results == []


def test_rule_without_required_evidence_is_advisory(make_rule, make_detached_pack):
    pack = make_detached_pack(
        [
            make_rule("AUDIO_RECORDING_RULE", default_config={"staffMustRecordIfParentRecords": True}),
            make_rule("CONFERENCE_NOTES_REQUIRED", optional=["RECORDING_ACK"]),
        ]
    )
    report = evaluate("mtg-1", [], pack)
    assert report.allowed is True
    assert [(r.rule_key, r.satisfied, r.advisory) for r in report.rule_results] == [
        ("AUDIO_RECORDING_RULE", True, True),
        ("CONFERENCE_NOTES_REQUIRED", True, True),
    ]


def test_optional_evidence_never_blocks(make_rule, make_detached_pack, make_evidence):
    pack = make_detached_pack([make_rule("R1", required=["A"], optional=["B"])])
    report = evaluate("mtg-1", make_evidence("A"), pack)
    assert report.allowed is True
    assert report.rule_results[0].advisory is False


def test_allowed_is_and_of_all_rules(make_rule, make_detached_pack, make_evidence):
    pack = make_detached_pack([make_rule("R1", required=["A"], sort_order=0), make_rule("R2", required=["B"], sort_order=1)])
    report = evaluate("mtg-1", make_evidence("A"), pack)
    assert report.allowed is False
    assert [r.rule_key for r in report.failed()] == ["R2"]


def test_results_follow_sort_order(make_rule, make_detached_pack):
    pack = make_detached_pack(
        [
            make_rule("THIRD", sort_order=5),
            make_rule("FIRST", sort_order=0),
            make_rule("SECOND_A", sort_order=1),
            make_rule("SECOND_B", sort_order=1),
        ]
    )
    report = evaluate("mtg-1", [], pack)
    assert [r.rule_key for r in report.rule_results] == ["FIRST", "SECOND_A", "SECOND_B", "THIRD"]


def test_evidence_for_other_meetings_is_ignored(make_rule, make_detached_pack, make_evidence):
    pack = make_detached_pack([make_rule("R1", required=["A"])])
    report = evaluate("mtg-1", make_evidence("A", meeting_id="mtg-2"), pack)
    assert report.allowed is False


def test_evaluation_is_deterministic(make_rule, make_detached_pack, make_evidence):
    pack = make_detached_pack([make_rule("R1", required=["A", "B"]), make_rule("R2", optional=["C"])])
    evidence = make_evidence("B")
    evaluator = EnforcementEvaluator()
    assert evaluator.evaluate("mtg-1", evidence, pack) == evaluator.evaluate("mtg-1", evidence, pack)


def test_report_identifies_pack_and_checklist(make_rule, make_detached_pack, make_evidence):
    pack = make_detached_pack([make_rule("R1", required=["A"], optional=["B"])], pack_id="pack-9", version=4)
    report = evaluate("mtg-1", make_evidence("B"), pack)
    assert (report.meeting_id, report.rule_pack_id, report.rule_pack_version) == ("mtg-1", "pack-9", 4)
    assert [(i.evidence_type_key, i.is_required, i.is_provided) for i in report.evidence_checklist] == [
        ("A", True, False),
        ("B", False, True),
    ]
