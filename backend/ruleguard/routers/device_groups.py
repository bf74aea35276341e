# backend/ruleguard/routers/device_groups.py
import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruleguard import models, schemas
from ruleguard.alerting import QueryBuilderError, QueryBuilderParser
from ruleguard.alerting.groups import group_device_ids, update_group_devices
from ruleguard.dependencies import get_db, read_json_body
from ruleguard.responses import api_error, api_success, api_success_noresult

logger = logging.getLogger(__name__)

router = APIRouter()


def find_group(db: Session, name: str) -> Optional[models.DeviceGroup]:
    """Groups are addressed by id when `name` is all digits, otherwise by name."""
    if name.isdigit():
        return db.get(models.DeviceGroup, int(name))
    return db.query(models.DeviceGroup).filter(models.DeviceGroup.name == name).first()


def load_group_payload(data):
    if not isinstance(data, dict):
        return None, api_error(400, "We couldn't parse the provided json")
    try:
        return schemas.DeviceGroupPayload.model_validate(data), None
    except ValidationError as e:
        return None, api_error(422, e.errors()[0]["msg"])


def compile_group_rules(rules):
    """Normalised builder for a dynamic group, or an error response when it does not compile."""
    parser = QueryBuilderParser.from_json(rules)
    try:
        query = parser.to_sql()
    except QueryBuilderError as e:
        return None, api_error(400, f"Invalid rule: {e}")
    if not query:
        return None, api_error(500, "We couldn't parse your rule")
    return parser.to_dict(), None


def set_static_devices(db: Session, group: models.DeviceGroup, device_ids):
    group.devices = db.query(models.Device).filter(models.Device.device_id.in_(device_ids)).all()


@router.get("")
@router.get("/")
def list_device_groups(db: Session = Depends(get_db)):
    groups = db.query(models.DeviceGroup).order_by(models.DeviceGroup.name).all()
    if not groups:
        return api_error(404, "No device groups found")
    result = [schemas.DeviceGroupSchema.model_validate(group).model_dump() for group in groups]
    return api_success(result, "groups", f"Found {len(groups)} device groups")


@router.post("")
@router.post("/")
def add_device_group(data=Depends(read_json_body), db: Session = Depends(get_db)):
    payload, error = load_group_payload(data)
    if error is not None:
        return error

    if not payload.name:
        return api_error(422, "The name field is required.")
    if payload.type not in models.GROUP_TYPES:
        return api_error(422, "The selected type is invalid.")
    if payload.type == "static" and payload.devices is None:
        return api_error(422, "The devices field is required when type is static.")
    if payload.type == "dynamic" and not payload.rules:
        return api_error(422, "The rules field is required when type is dynamic.")
    if find_group(db, payload.name) is not None:
        return api_error(422, "The name has already been taken.")

    group = models.DeviceGroup(name=payload.name, description=payload.desc, type=payload.type)
    if payload.type == "dynamic":
        group.rules, error = compile_group_rules(payload.rules)
        if error is not None:
            return error
    db.add(group)

    if payload.type == "static":
        set_static_devices(db, group, payload.devices)
    else:
        update_group_devices(db, group)
    db.commit()

    logger.info(f"Device group '{group.name}' created with id {group.id}")
    return api_success(group.id, "id", f"Device group {group.name} created", 201)


@router.get("/{name}")
def get_devices_by_group(name: str, full: Optional[str] = None, db: Session = Depends(get_db)):
    group = find_group(db, name)
    if group is None:
        return api_error(404, "Device group not found")

    try:
        device_ids = group_device_ids(db, group)
    except QueryBuilderError as e:
        return api_error(400, f"Invalid rule: {e}")
    if not device_ids:
        return api_error(404, f"No devices found in group {name}")

    if full:
        devices = db.query(models.Device).filter(models.Device.device_id.in_(device_ids)) \
            .order_by(models.Device.device_id).all()
        result = [schemas.DeviceSchema.model_validate(device).model_dump() for device in devices]
    else:
        result = [{"device_id": device_id} for device_id in sorted(device_ids)]
    return api_success(result, "devices")


@router.patch("/{name}")
@router.put("/{name}")
def update_device_group(name: str, data=Depends(read_json_body), db: Session = Depends(get_db)):
    payload, error = load_group_payload(data)
    if error is not None:
        return error

    group = find_group(db, name)
    if group is None:
        return api_error(404, f"Device group {name} not found")

    if payload.type is not None and payload.type not in models.GROUP_TYPES:
        return api_error(422, "The selected type is invalid.")
    if payload.type == "static" and payload.devices is None:
        return api_error(422, "The devices field is required when type is static.")
    if payload.type == "dynamic" and not payload.rules:
        return api_error(422, "The rules field is required when type is dynamic.")
    if payload.name and payload.name != group.name:
        taken = db.query(models.DeviceGroup).filter(models.DeviceGroup.name == payload.name).first()
        if taken is not None:
            return api_error(422, "The name has already been taken.")

    rules = None
    if payload.rules:
        rules, error = compile_group_rules(payload.rules)
        if error is not None:
            return error

    if payload.name:
        group.name = payload.name
    if payload.desc is not None:
        group.description = payload.desc
    if payload.type is not None:
        group.type = payload.type

    if group.type == "static" and payload.devices is not None:
        set_static_devices(db, group, payload.devices)
    if group.type == "dynamic" and rules is not None:
        group.rules = rules

    try:
        if group.type == "dynamic":
            update_group_devices(db, group)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Failed to save device group {name}: {e}", exc_info=True)
        return api_error(500, "Failed to save changes device group")

    return api_success_noresult(200, f"Device group {name} updated")


@router.delete("/{name}")
def delete_device_group(name: str, db: Session = Depends(get_db)):
    group = find_group(db, name)
    if group is None:
        return api_error(404, f"Device group {name} not found")
    db.delete(group)
    db.commit()
    logger.info(f"Device group {name} deleted")
    return api_success_noresult(200, f"Device group {name} deleted")


def load_static_group(db: Session, name: str, data):
    if not isinstance(data, dict):
        return None, None, api_error(400, "We couldn't parse the provided json")
    group = find_group(db, name)
    if group is None:
        return None, None, api_error(404, f"Device group {name} not found")
    if group.type != "static":
        return None, None, api_error(422, "Only static device group can have devices added")
    try:
        payload = schemas.GroupDevicesPayload.model_validate(data)
    except ValidationError as e:
        return None, None, api_error(422, e.errors()[0]["msg"])
    return group, payload, None


@router.post("/{name}/devices")
def add_group_devices(name: str, data=Depends(read_json_body), db: Session = Depends(get_db)):
    group, payload, error = load_static_group(db, name, data)
    if error is not None:
        return error
    current = {device.device_id for device in group.devices}
    new_ids = set(payload.devices) - current
    if new_ids:
        group.devices.extend(db.query(models.Device).filter(models.Device.device_id.in_(new_ids)).all())
    db.commit()
    return api_success_noresult(200, "Devices added")


@router.delete("/{name}/devices")
def remove_group_devices(name: str, data=Depends(read_json_body), db: Session = Depends(get_db)):
    group, payload, error = load_static_group(db, name, data)
    if error is not None:
        return error
    removed = set(payload.devices)
    group.devices = [device for device in group.devices if device.device_id not in removed]
    db.commit()
    return api_success_noresult(200, "Devices removed")
