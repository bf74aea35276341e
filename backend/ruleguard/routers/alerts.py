# backend/ruleguard/routers/alerts.py
import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request
from pydantic import ValidationError
from sqlalchemy.orm import Session

from ruleguard import models, schemas
from ruleguard.config import settings
from ruleguard.dependencies import get_db, read_json_body
from ruleguard.responses import api_error, api_success, api_success_noresult

logger = logging.getLogger(__name__)

router = APIRouter()

SEVERITIES = ("ok", "warning", "critical")


def validate_column_list(columns: str, table) -> list:
    """Split a comma separated column list, rejecting anything that is not a column of `table`."""
    requested = [column.strip() for column in columns.split(",") if column.strip()]
    invalid = [column for column in requested if column not in table.c]
    if invalid:
        raise ValueError(f"Invalid columns: {','.join(invalid)}")
    return requested


def _list_alerts(request: Request, db: Session, alert_id: Optional[int] = None):
    alert_table = models.Alert.__table__
    query = (
        db.query(
            models.Alert,
            models.Device.hostname,
            models.AlertRule.severity,
            models.AlertRule.name,
            models.AlertRule.proc,
            models.AlertRule.notes,
        )
        .join(models.Device, models.Device.device_id == models.Alert.device_id)
        .join(models.AlertRule, models.AlertRule.id == models.Alert.rule_id)
    )

    state = request.query_params.get("state")
    try:
        states = [int(item) for item in state.split(",")] if state else [models.AlertState.ACTIVE]
    except ValueError:
        return api_error(400, f"Invalid state {state}")
    query = query.filter(models.Alert.state.in_(states))

    if alert_id is not None:
        query = query.filter(models.Alert.id == alert_id)

    severity = request.query_params.get("severity")
    if severity in SEVERITIES:
        query = query.filter(models.AlertRule.severity == severity)

    alert_rule = request.query_params.get("alert_rule")
    if alert_rule and alert_rule.isdigit():
        query = query.filter(models.AlertRule.id == int(alert_rule))

    sort_column, sort_order = "timestamp", "desc"
    order = request.query_params.get("order")
    if order:
        column, _, direction = order.partition(" ")
        try:
            validate_column_list(column, alert_table)
        except ValueError as e:
            return api_error(400, str(e))
        if direction in ("asc", "desc"):
            sort_column, sort_order = column, direction
    ordering = alert_table.c[sort_column]
    query = query.order_by(ordering.asc() if sort_order == "asc" else ordering.desc())

    alerts = []
    for alert, hostname, severity, name, proc, notes in query.all():
        row = schemas.AlertSchema.model_validate(alert).model_dump()
        row.update(hostname=hostname, severity=severity, name=name, proc=proc, notes=notes)
        alerts.append(row)
    return api_success(alerts, "alerts")


@router.get("")
@router.get("/")
def list_alerts(request: Request, db: Session = Depends(get_db)):
    return _list_alerts(request, db)


@router.get("/{alert_id}")
def get_alert(alert_id: int, request: Request, db: Session = Depends(get_db)):
    return _list_alerts(request, db, alert_id)


def _append_note(alert: models.Alert, action: str, text: str) -> str:
    note = alert.note or ""
    if note:
        note += "\n"
    stamp = datetime.now().strftime(settings.DATEFORMAT_LONG)
    return (note + f"{stamp} - {action} ({settings.API_USERNAME}) {text}").rstrip()


def _read_note(data):
    if not isinstance(data, dict):
        return None
    try:
        return schemas.AlertNoteSchema.model_validate(data)
    except ValidationError:
        return None


@router.put("/unmute/{alert_id}")
def unmute_alert(alert_id: int, data=Depends(read_json_body), db: Session = Depends(get_db)):
    body = _read_note(data)
    if body is None:
        return api_error(500, "We couldn't parse the provided json")

    alert = db.get(models.Alert, alert_id)
    if alert is None:
        return api_success_noresult(200, "No alert by that ID")

    alert.note = _append_note(alert, "Unmute", body.note)
    alert.state = models.AlertState.ACTIVE
    db.commit()
    return api_success_noresult(200, "Alert has been unmuted")


@router.put("/{alert_id}")
def ack_alert(alert_id: int, data=Depends(read_json_body), db: Session = Depends(get_db)):
    body = _read_note(data)
    if body is None:
        return api_error(500, "We couldn't parse the provided json")

    alert = db.get(models.Alert, alert_id)
    if alert is None:
        return api_success_noresult(200, "No Alert by that ID")

    info = dict(alert.info or {})
    info["until_clear"] = body.until_clear
    alert.note = _append_note(alert, "Ack", body.note)
    alert.info = info
    alert.state = models.AlertState.ACKNOWLEDGED
    db.commit()
    logger.info(f"Alert {alert_id} acknowledged")
    return api_success_noresult(200, "Alert has been acknowledged")
