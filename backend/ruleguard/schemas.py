# backend/ruleguard/schemas.py

from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, field_validator


class OrmConfig(BaseModel):
    class Config:
        from_attributes = True


# --- Alert rules ---

class AlertRuleSchema(OrmConfig):
    id: int
    name: str
    severity: str
    disabled: bool
    invert_map: bool = False
    extra: Optional[Dict[str, Any]] = None
    builder: Optional[Dict[str, Any]] = None
    query: Optional[str] = None
    proc: Optional[str] = None
    notes: Optional[str] = None
    devices: List[int] = []
    groups: List[int] = []
    locations: List[int] = []

    @field_validator("devices", mode="before")
    @classmethod
    def _device_ids(cls, value):
        return [getattr(item, "device_id", item) for item in value or []]

    @field_validator("groups", "locations", mode="before")
    @classmethod
    def _ids(cls, value):
        return [getattr(item, "id", item) for item in value or []]


class AlertRulePayload(BaseModel):
    """Body of add/edit rule requests. Presence checks happen in the router."""
    rule_id: Optional[int] = None
    name: Optional[str] = None
    severity: Optional[str] = None
    devices: List[Union[int, str]] = []
    groups: List[int] = []
    locations: List[int] = []
    builder: Optional[Union[Dict[str, Any], str]] = None
    rule: Optional[str] = None
    disabled: Optional[Union[int, str, bool]] = 0
    invert_map: bool = False
    count: Optional[Union[int, str]] = None
    mute: Optional[Union[int, str, bool]] = False
    delay: Optional[Union[int, str]] = None
    interval: Optional[Union[int, str]] = None
    override_query: Optional[str] = None
    adv_query: Optional[str] = None
    notes: Optional[str] = None
    proc: Optional[str] = None

    @field_validator("devices", "groups", "locations", mode="before")
    @classmethod
    def _as_list(cls, value):
        if value is None:
            return []
        if isinstance(value, (list, tuple)):
            return list(value)
        return [value]


class RuleTranslationSchema(BaseModel):
    builder: Dict[str, Any]
    display: Optional[str] = None
    sql: Optional[str] = None


# --- Alerts ---

class AlertSchema(OrmConfig):
    id: int
    device_id: int
    rule_id: int
    state: int
    alerted: int
    open: int
    note: Optional[str] = None
    info: Optional[Dict[str, Any]] = None
    timestamp: datetime
    hostname: Optional[str] = None
    severity: Optional[str] = None
    name: Optional[str] = None
    proc: Optional[str] = None
    notes: Optional[str] = None


class AlertNoteSchema(BaseModel):
    note: str = ""
    until_clear: Optional[bool] = None


# --- Device groups ---

class DeviceSchema(OrmConfig):
    device_id: int
    hostname: str
    sysName: Optional[str] = None
    display: Optional[str] = None
    os: Optional[str] = None
    hardware: Optional[str] = None
    type: Optional[str] = None
    status: int
    ignore: int
    disabled: int
    location_id: Optional[int] = None


class DeviceGroupSchema(OrmConfig):
    id: int
    name: str
    description: Optional[str] = None
    type: str
    rules: Optional[Dict[str, Any]] = None
    devices: List[int] = []

    @field_validator("devices", mode="before")
    @classmethod
    def _device_ids(cls, value):
        return sorted(getattr(item, "device_id", item) for item in value or [])


class DeviceGroupPayload(BaseModel):
    """Body of add/update device group requests. Presence checks happen in the router."""
    name: Optional[str] = None
    desc: Optional[str] = None
    type: Optional[str] = None
    devices: Optional[List[int]] = None
    rules: Optional[Union[Dict[str, Any], str]] = None


class GroupDevicesPayload(BaseModel):
    devices: List[int] = []
