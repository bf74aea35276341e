# backend/ruleguard/routers/rules.py
import json
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruleguard import models, schemas
from ruleguard.alerting import QueryBuilderError, QueryBuilderFilter, QueryBuilderParser
from ruleguard.alerting.runner import evaluate_rule
from ruleguard.dependencies import get_db, read_json_body
from ruleguard.responses import api_error, api_success, api_success_noresult
from ruleguard.utils import convert_delay

logger = logging.getLogger(__name__)

router = APIRouter()

SEVERITIES = ("ok", "warning", "critical")


def load_parser(builder=None, rule=None) -> QueryBuilderParser:
    """Builder JSON (object or string) wins; a `rule` that is not JSON is read as a legacy rule string."""
    if builder is not None:
        return QueryBuilderParser.from_json(builder)
    try:
        decoded = json.loads(rule) if rule else None
    except ValueError:
        decoded = None
    if isinstance(decoded, dict):
        return QueryBuilderParser.from_json(decoded)
    return QueryBuilderParser.from_old(rule or "")


def serialize_rule(rule: models.AlertRule) -> dict:
    return schemas.AlertRuleSchema.model_validate(rule).model_dump()


@router.get("")
@router.get("/")
def list_alert_rules(db: Session = Depends(get_db)):
    rules = db.query(models.AlertRule).order_by(models.AlertRule.id).all()
    return api_success([serialize_rule(rule) for rule in rules], "rules")


@router.get("/filters")
def list_rule_filters():
    return api_success(QueryBuilderFilter().to_list(), "filters")


@router.post("/translate")
def translate_rule(data=Depends(read_json_body)):
    """Compile a builder (or legacy rule string) without saving it."""
    if not isinstance(data, dict):
        return api_error(500, "We couldn't parse the provided json")
    if data.get("builder") is None and not data.get("rule"):
        return api_error(400, "Missing the alert builder rule")

    parser = load_parser(data.get("builder"), data.get("rule"))
    try:
        display = parser.to_sql(False)
        sql = parser.to_sql()
    except QueryBuilderError as e:
        return api_error(400, f"Invalid rule: {e}")
    if sql is None:
        return api_error(500, "We couldn't parse your rule")

    translation = schemas.RuleTranslationSchema(builder=parser.to_dict(), display=display, sql=sql)
    return api_success(translation.model_dump(), "rule")


@router.get("/{rule_id}")
def get_alert_rule(rule_id: int, db: Session = Depends(get_db)):
    rule = db.get(models.AlertRule, rule_id)
    rules = [serialize_rule(rule)] if rule else []
    return api_success(rules, "rules")


@router.get("/{rule_id}/test/{device_id}")
def test_alert_rule(rule_id: int, device_id: int, db: Session = Depends(get_db)):
    """Evaluate a rule for one device without touching the alerts table."""
    rule = db.get(models.AlertRule, rule_id)
    if rule is None:
        return api_error(404, "No alert rule by that ID")
    if db.get(models.Device, device_id) is None:
        return api_error(404, f"Device {device_id} does not exist")

    try:
        rows = evaluate_rule(db, rule, device_id)
    except QueryBuilderError as e:
        return api_error(400, f"Invalid rule: {e}")
    except SQLAlchemyError as e:
        logger.error(f"Rule {rule_id} failed for device {device_id}: {e}", exc_info=True)
        return api_error(500, "The rule query failed, check the advanced query")
    return api_success(rows, "rows", extra={"matched": bool(rows)})


@router.post("")
@router.post("/")
@router.put("")
@router.put("/")
def add_edit_rule(data=Depends(read_json_body), db: Session = Depends(get_db)):
    if not isinstance(data, dict) or not data:
        return api_error(500, "We couldn't parse the provided json")
    try:
        payload = schemas.AlertRulePayload.model_validate(data)
    except ValidationError as e:
        return api_error(400, f"Invalid alert rule: {e.errors()[0]['msg']}")

    rule_id = payload.rule_id
    if not payload.devices and rule_id is None:
        return api_error(400, "Missing the devices or global device (-1)")

    device_ids = []
    for device in payload.devices:
        if str(device) == "-1":
            continue
        if isinstance(device, int) or str(device).isdigit():
            device_ids.append(int(device))
            continue
        found = db.query(models.Device.device_id).filter(models.Device.hostname == device).scalar()
        if found is None:
            return api_error(400, f"Device {device} does not exist")
        device_ids.append(found)

    builder = payload.builder
    if builder is None and not payload.rule:
        return api_error(400, "Missing the alert builder rule")
    if isinstance(builder, str) and not builder.strip():
        return api_error(400, "Missing the alert builder rule")

    if not payload.name:
        return api_error(400, "Missing the alert rule name")
    if payload.severity not in SEVERITIES:
        return api_error(400, "Missing the severity")

    disabled = str(payload.disabled) in ("1", "True", "true")
    mute = str(payload.mute) in ("1", "True", "true", "on")
    extra = {
        "mute": mute,
        "count": payload.count,
        "delay": convert_delay(payload.delay),
        "interval": convert_delay(payload.interval),
        "options": {"override_query": payload.override_query},
    }

    parser = load_parser(builder, payload.rule)
    if payload.override_query == "on":
        query = payload.adv_query
    else:
        try:
            query = parser.to_sql()
        except QueryBuilderError as e:
            return api_error(400, f"Invalid rule: {e}")
    if not query:
        return api_error(500, "We couldn't parse your rule")

    duplicate = db.query(models.AlertRule).filter(models.AlertRule.name == payload.name)
    if rule_id is None:
        if duplicate.first() is not None:
            return api_error(500, "Addition failed : Name has already been used")
        rule = models.AlertRule()
        db.add(rule)
    else:
        if duplicate.filter(models.AlertRule.id != rule_id).first() is not None:
            return api_error(500, "Update failed : Invalid rule id")
        rule = db.get(models.AlertRule, rule_id)
        if rule is None:
            return api_error(404, "No alert rule by that ID")

    rule.name = payload.name
    rule.builder = parser.to_dict()
    rule.query = query
    rule.severity = payload.severity
    rule.disabled = disabled
    rule.invert_map = payload.invert_map
    rule.extra = extra
    rule.notes = payload.notes
    rule.proc = payload.proc
    rule.devices = db.query(models.Device).filter(models.Device.device_id.in_(device_ids)).all()
    rule.groups = db.query(models.DeviceGroup).filter(models.DeviceGroup.id.in_(payload.groups)).all()
    rule.locations = db.query(models.Location).filter(models.Location.id.in_(payload.locations)).all()
    db.commit()

    logger.info(f"Alert rule '{rule.name}' saved with id {rule.id}")
    return api_success_noresult(200, f"Alert rule {rule.id} saved")


@router.delete("/{rule_id}")
def delete_rule(rule_id: int, db: Session = Depends(get_db)):
    rule: Optional[models.AlertRule] = db.get(models.AlertRule, rule_id)
    if rule is None:
        return api_success_noresult(200, "No alert rule by that ID")
    db.delete(rule)
    db.commit()
    logger.info(f"Alert rule {rule_id} removed")
    return api_success_noresult(200, "Alert rule has been removed")
