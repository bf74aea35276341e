import logging

import pytest

from ruleguard.alerting import QueryBuilderParser
from ruleguard.alerting.runner import evaluate_rule, rule_applies_to_device, run_rules, uses_override_query
from ruleguard.models import Alert, AlertRule, AlertState, Device, DeviceGroup, Location

DEVICE_DOWN = {"condition": "AND", "rules": [
    {"id": "macros.device_down", "field": "macros.device_down", "type": "integer", "input": "radio",
     "operator": "equal", "value": "1"},
]}


def make_rule(db, name="Device down", builder=DEVICE_DOWN, **kwargs):
    rule = AlertRule(
        name=name,
        severity="critical",
        builder=builder,
        query=QueryBuilderParser.from_json(builder).to_sql() if builder else None,
        extra={"mute": False, "count": None, "delay": 0, "interval": 0, "options": {"override_query": None}},
        **kwargs,
    )
    db.add(rule)
    db.commit()
    return rule


def test_rules_without_maps_apply_everywhere(db):
    rule = make_rule(db)
    assert all(rule_applies_to_device(db, rule, device) for device in db.query(Device))


def test_device_map_and_invert_map(db):
    core_sw, edge_rtr = db.get(Device, 1), db.get(Device, 2)
    rule = make_rule(db, devices=[core_sw])
    assert rule_applies_to_device(db, rule, core_sw)
    assert not rule_applies_to_device(db, rule, edge_rtr)

    rule.invert_map = True
    assert not rule_applies_to_device(db, rule, core_sw)
    assert rule_applies_to_device(db, rule, edge_rtr)


def test_group_and_location_maps(db):
    core = db.query(DeviceGroup).filter_by(name="Core").one()
    branch = db.query(Location).filter_by(location="Branch Office").one()

    by_group = make_rule(db, name="Core only", groups=[core])
    assert [d.device_id for d in db.query(Device).order_by(Device.device_id)
            if rule_applies_to_device(db, by_group, d)] == [1, 2]

    by_location = make_rule(db, name="Branch only", locations=[branch])
    assert [d.device_id for d in db.query(Device).order_by(Device.device_id)
            if rule_applies_to_device(db, by_location, d)] == [3]


def test_dynamic_group_map_follows_the_group_rules(db):
    group = DeviceGroup(name="Branch gear", type="dynamic", rules={"condition": "AND", "rules": [
        {"field": "devices.hostname", "operator": "begins_with", "value": "branch"},
    ]})
    db.add(group)
    rule = make_rule(db, name="Branch group", groups=[group])

    def mapped():
        return [d.device_id for d in db.query(Device).order_by(Device.device_id)
                if rule_applies_to_device(db, rule, d)]

    assert mapped() == [3]

    group.rules = {"condition": "AND", "rules": [{"field": "devices.os", "operator": "equal", "value": "ios"}]}
    db.commit()
    assert mapped() == [1]

    rule.invert_map = True
    assert mapped() == [2, 3, 4]


def test_broken_dynamic_group_is_logged_and_skipped(db, caplog):
    group = DeviceGroup(name="Broken group", type="dynamic", rules={"condition": "AND", "rules": [
        {"field": "devices.nope", "operator": "equal", "value": 1},
    ]})
    db.add(group)
    make_rule(db, name="Broken group rule", groups=[group])
    rule = make_rule(db)

    with caplog.at_level(logging.ERROR):
        assert run_rules(db, 2) == {rule.id: AlertState.ACTIVE}
    assert "Broken group rule" in caplog.text


def test_evaluate_rule_returns_device_rows(db):
    rule = make_rule(db)
    rows = evaluate_rule(db, rule, 2)
    assert len(rows) == 1
    assert rows[0]["hostname"] == "edge-rtr1"
    assert evaluate_rule(db, rule, 1) == []


def test_evaluate_rule_does_not_change_the_stored_builder(db):
    rule = make_rule(db)
    evaluate_rule(db, rule, 2)
    db.refresh(rule)
    assert "joins" not in rule.builder


def test_rule_without_builder_never_matches(db):
    rule = make_rule(db, name="Empty", builder=None)
    assert evaluate_rule(db, rule, 2) == []


def test_override_query(db):
    rule = make_rule(db, name="Junos")
    rule.extra = {"options": {"override_query": "on"}}
    rule.query = "SELECT * FROM devices WHERE devices.device_id = ? AND devices.os = 'junos'"
    db.commit()

    assert uses_override_query(rule)
    assert [row["hostname"] for row in evaluate_rule(db, rule, 2)] == ["edge-rtr1"]
    assert evaluate_rule(db, rule, 1) == []


def test_run_rules_opens_and_clears_alerts(db):
    rule = make_rule(db)

    assert run_rules(db, 1) == {rule.id: AlertState.CLEAR}
    assert db.query(Alert).filter_by(device_id=1).count() == 0

    assert run_rules(db, 2) == {rule.id: AlertState.ACTIVE}
    alert = db.query(Alert).filter_by(device_id=2, rule_id=rule.id).one()
    assert alert.state == AlertState.ACTIVE
    assert alert.open == 1

    db.get(Device, 2).status = 1
    db.commit()
    assert run_rules(db, 2) == {rule.id: AlertState.CLEAR}
    assert alert.state == AlertState.CLEAR

    db.get(Device, 2).status = 0
    db.commit()
    assert run_rules(db, 2) == {rule.id: AlertState.ACTIVE}
    assert db.query(Alert).filter_by(device_id=2).count() == 1


def test_acknowledged_alert_stays_acknowledged_while_matching(db):
    rule = make_rule(db)
    run_rules(db, 2)
    alert = db.query(Alert).filter_by(device_id=2).one()
    alert.state = AlertState.ACKNOWLEDGED
    db.commit()

    assert run_rules(db, 2) == {rule.id: AlertState.ACKNOWLEDGED}


def test_disabled_rules_and_unmapped_devices_are_skipped(db):
    make_rule(db, disabled=True)
    make_rule(db, name="Core sw only", devices=[db.get(Device, 1)])
    assert run_rules(db, 2) == {}
    assert db.query(Alert).count() == 0


def test_broken_rule_is_logged_and_skipped(db, caplog):
    broken = make_rule(db, name="Broken", builder=None)
    broken.builder = {"condition": "AND", "rules": [{"field": "devices.nope", "operator": "equal", "value": 1}]}
    db.commit()
    rule = make_rule(db)

    with caplog.at_level(logging.ERROR):
        assert run_rules(db, 2) == {rule.id: AlertState.ACTIVE}
    assert "Broken" in caplog.text


def test_unknown_device(db):
    make_rule(db)
    assert run_rules(db, 42) == {}


@pytest.mark.parametrize("extra, query, expected", [
    (None, "SELECT 1", False),
    ({"options": {"override_query": "on"}}, None, False),
    ({"options": {"override_query": "on"}}, "SELECT 1", True),
    ({"options": {"override_query": None}}, "SELECT 1", False),
])
def test_uses_override_query(extra, query, expected):
    assert uses_override_query(AlertRule(extra=extra, query=query)) is expected
