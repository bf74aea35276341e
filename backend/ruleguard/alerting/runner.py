# backend/ruleguard/alerting/runner.py
"""Evaluates alert rules against devices and keeps the `alerts` table in step."""
import logging
from datetime import datetime, timezone
from typing import Dict, List

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruleguard.models import Alert, AlertRule, AlertState, Device
from .exceptions import QueryBuilderError
from .fluent import QueryBuilderFluentParser
from .groups import group_device_ids

logger = logging.getLogger(__name__)


def rule_applies_to_device(db: Session, rule: AlertRule, device: Device) -> bool:
    """
    Rules without device, group or location maps are global; invert_map flips membership.
    Dynamic groups are matched on their rules as they stand now, not on the last refresh.
    """
    device_ids = {mapped.device_id for mapped in rule.devices}
    group_ids = {group.id for group in rule.groups}
    location_ids = {location.id for location in rule.locations}
    if not (device_ids or group_ids or location_ids):
        return True

    member = (
        device.device_id in device_ids
        or (device.location_id is not None and device.location_id in location_ids)
        or any(device.device_id in group_device_ids(db, group) for group in rule.groups)
    )
    return member != bool(rule.invert_map)


def uses_override_query(rule: AlertRule) -> bool:
    options = (rule.extra or {}).get("options") or {}
    return options.get("override_query") == "on" and bool(rule.query)


def evaluate_rule(db: Session, rule: AlertRule, device_id: int) -> List[dict]:
    """Rows the rule selects for one device; an empty list means the rule does not match."""
    if uses_override_query(rule):
        # operator supplied SQL with a single `?` for the device id
        result = db.connection().exec_driver_sql(rule.query, (device_id,))
        return [dict(row._mapping) for row in result]

    parser = QueryBuilderFluentParser.from_json(dict(rule.builder or {}))
    query = parser.to_query()
    if query is None:
        return []
    devices = parser.schema.get_table("devices")
    rows = db.execute(query.where(devices.c.device_id == device_id)).mappings().all()
    return [dict(row) for row in rows]


def run_rules(db: Session, device_id: int) -> Dict[int, int]:
    """
    Run every enabled rule that applies to the device and open, keep or clear
    its alerts. Returns {rule_id: alert state} for the rules that were run.
    """
    device = db.get(Device, device_id)
    if device is None:
        logger.warning(f"Device {device_id} not found, no rules run")
        return {}

    states = {}
    now = datetime.now(timezone.utc)
    rules = db.query(AlertRule).filter(AlertRule.disabled.is_(False)).order_by(AlertRule.id).all()
    for rule in rules:
        try:
            if not rule_applies_to_device(db, rule, device):
                continue
            matched = bool(evaluate_rule(db, rule, device_id))
        except (QueryBuilderError, SQLAlchemyError) as e:
            logger.error(f"Rule {rule.id} ({rule.name}) failed for device {device_id}: {e}", exc_info=True)
            continue

        alert = db.query(Alert).filter_by(device_id=device_id, rule_id=rule.id).first()
        if matched:
            if alert is None:
                alert = Alert(device_id=device_id, rule_id=rule.id, state=AlertState.ACTIVE,
                              open=1, alerted=0, note="", info={}, timestamp=now)
                db.add(alert)
                logger.info(f"🔴 Rule '{rule.name}' raised an alert on {device.hostname}")
            elif alert.state == AlertState.CLEAR:
                alert.state = AlertState.ACTIVE
                alert.open = 1
                alert.timestamp = now
                logger.info(f"🔴 Rule '{rule.name}' raised an alert on {device.hostname}")
        elif alert is not None and alert.state in (AlertState.ACTIVE, AlertState.ACKNOWLEDGED):
            alert.state = AlertState.CLEAR
            alert.open = 1
            alert.timestamp = now
            logger.info(f"🟢 Rule '{rule.name}' recovered on {device.hostname}")

        states[rule.id] = alert.state if alert is not None else AlertState.CLEAR

    db.commit()
    return states
