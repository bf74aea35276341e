# backend/ruleguard/alerting/groups.py
"""
Device group membership.

Static groups list their devices in `device_group_device`. Dynamic groups
carry a rule builder in `rules` and their members are whatever devices the
compiled query selects; `update_group_devices` copies that selection into
`device_group_device` so group listings stay cheap.
"""
import logging
from typing import Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ruleguard.models import Device, DeviceGroup
from .exceptions import QueryBuilderError
from .fluent import QueryBuilderFluentParser

logger = logging.getLogger(__name__)


def group_device_ids(db: Session, group: DeviceGroup) -> Set[int]:
    """Ids of the devices in a group, evaluating the rules of dynamic groups."""
    if group.type != "dynamic":
        return {device.device_id for device in group.devices}

    query = QueryBuilderFluentParser.from_json(dict(group.rules or {})).to_query()
    if query is None:
        return set()
    device_id = Device.__table__.c.device_id
    return set(db.execute(query.with_only_columns(device_id).distinct()).scalars())


def update_group_devices(db: Session, group: DeviceGroup) -> Set[int]:
    device_ids = group_device_ids(db, group)
    if group.type == "dynamic":
        group.devices = db.query(Device).filter(Device.device_id.in_(device_ids)).all() if device_ids else []
    return device_ids


def update_dynamic_groups(db: Session) -> int:
    """Refresh the members of every dynamic group. Returns how many groups were refreshed."""
    updated = 0
    for group in db.query(DeviceGroup).filter(DeviceGroup.type == "dynamic").order_by(DeviceGroup.id).all():
        try:
            update_group_devices(db, group)
            db.commit()
            updated += 1
        except (QueryBuilderError, SQLAlchemyError) as e:
            db.rollback()
            logger.error(f"Could not update device group {group.id} ({group.name}): {e}", exc_info=True)
    return updated
