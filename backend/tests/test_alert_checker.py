import pytest
import schedule

from ruleguard.alerting import QueryBuilderParser
from ruleguard.models import Alert, AlertRule, AlertState, DeviceGroup
from ruleguard.services import alert_checker

PORT_DOWN = {"condition": "AND", "rules": [
    {"field": "macros.device_up", "operator": "equal", "value": 1},
    {"field": "macros.port_down", "operator": "equal", "value": 1},
]}


class StopLoop(BaseException):
    pass


@pytest.fixture
def checker_db(db, session_factory, monkeypatch):
    monkeypatch.setattr(alert_checker, "SessionLocal", session_factory)
    db.add(AlertRule(name="Port down", severity="warning", builder=PORT_DOWN,
                     query=QueryBuilderParser.from_json(PORT_DOWN).to_sql()))
    db.commit()
    return db


def test_check_all_devices_skips_disabled_devices(checker_db):
    assert alert_checker.check_all_devices() == 3

    alerts = checker_db.query(Alert).all()
    assert [(alert.device_id, alert.state) for alert in alerts] == [(1, AlertState.ACTIVE)]


def test_check_all_devices_is_repeatable(checker_db):
    alert_checker.check_all_devices()
    alert_checker.check_all_devices()
    assert checker_db.query(Alert).count() == 1


def test_check_all_devices_refreshes_dynamic_groups(checker_db):
    group = DeviceGroup(name="Junos", type="dynamic", rules={"condition": "AND", "rules": [
        {"field": "devices.os", "operator": "equal", "value": "junos"},
    ]})
    checker_db.add(group)
    checker_db.commit()
    assert group.devices == []

    alert_checker.check_all_devices()

    checker_db.expire_all()
    assert [device.device_id for device in group.devices] == [2]


def test_start_alert_checker_schedules_the_check(monkeypatch):
    def stop(seconds):
        raise StopLoop()

    monkeypatch.setattr(alert_checker.time, "sleep", stop)
    try:
        with pytest.raises(StopLoop):
            alert_checker.start_alert_checker()
        jobs = schedule.get_jobs()
        assert len(jobs) == 1
        assert jobs[0].job_func.func is alert_checker.check_all_devices
        assert jobs[0].interval == alert_checker.settings.ALERT_CHECK_INTERVAL
    finally:
        schedule.clear()
