# backend/ruleguard/models.py

from datetime import datetime, timezone

from sqlalchemy import (
    JSON, BigInteger, Boolean, Column, DateTime, Float, ForeignKey, Integer, String, Table, Text,
)
from sqlalchemy.orm import relationship

from .database import Base

# --- Inventory ---
# Column names follow the SNMP/IF-MIB names the poller writes, which is also
# what alert rules reference (e.g. `ports.ifOperStatus`).

device_group_device = Table(
    "device_group_device",
    Base.metadata,
    Column("device_group_id", Integer, ForeignKey("device_groups.id", ondelete="CASCADE"), primary_key=True),
    Column("device_id", Integer, ForeignKey("devices.device_id", ondelete="CASCADE"), primary_key=True),
)


class Location(Base):
    __tablename__ = "locations"
    id = Column(Integer, primary_key=True, index=True)
    location = Column(String(255), unique=True, nullable=False)
    lat = Column(Float, nullable=True)
    lng = Column(Float, nullable=True)
    devices = relationship("Device", back_populates="location")


class Device(Base):
    __tablename__ = "devices"
    device_id = Column(Integer, primary_key=True, index=True)
    hostname = Column(String(128), unique=True, index=True, nullable=False)
    sysName = Column(String(128), nullable=True)
    display = Column(String(128), nullable=True)
    os = Column(String(32), nullable=True)
    hardware = Column(String(128), nullable=True)
    version = Column(String(128), nullable=True)
    type = Column(String(20), nullable=True)
    status = Column(Integer, default=0, nullable=False)
    status_reason = Column(String(50), default="", nullable=False)
    ignore = Column(Integer, default=0, nullable=False)
    disabled = Column(Integer, default=0, nullable=False)
    uptime = Column(BigInteger, nullable=True)
    last_polled = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    location_id = Column(Integer, ForeignKey("locations.id"), nullable=True)

    location = relationship("Location", back_populates="devices")
    ports = relationship("Port", back_populates="device", cascade="all, delete-orphan")
    sensors = relationship("Sensor", back_populates="device", cascade="all, delete-orphan")
    groups = relationship("DeviceGroup", secondary=device_group_device, back_populates="devices")


class Port(Base):
    __tablename__ = "ports"
    port_id = Column(Integer, primary_key=True, index=True)
    device_id = Column(Integer, ForeignKey("devices.device_id"), nullable=False, index=True)
    ifIndex = Column(Integer, nullable=True)
    ifName = Column(String(255), nullable=True)
    ifDescr = Column(String(255), nullable=True)
    ifAlias = Column(String(255), nullable=True)
    ifType = Column(String(64), nullable=True)
    ifSpeed = Column(BigInteger, nullable=True)
    ifOperStatus = Column(String(16), nullable=True)
    ifAdminStatus = Column(String(16), nullable=True)
    ifInOctets_rate = Column(BigInteger, nullable=True)
    ifOutOctets_rate = Column(BigInteger, nullable=True)
    ifInErrors_delta = Column(BigInteger, nullable=True)
    ifOutErrors_delta = Column(BigInteger, nullable=True)
    deleted = Column(Integer, default=0, nullable=False)
    ignore = Column(Integer, default=0, nullable=False)
    disabled = Column(Integer, default=0, nullable=False)

    device = relationship("Device", back_populates="ports")


class Sensor(Base):
    __tablename__ = "sensors"
    sensor_id = Column(Integer, primary_key=True, index=True)
    device_id = Column(Integer, ForeignKey("devices.device_id"), nullable=False, index=True)
    sensor_class = Column(String(64), nullable=False)
    sensor_type = Column(String(255), nullable=True)
    sensor_descr = Column(String(255), nullable=True)
    sensor_current = Column(Float, nullable=True)
    sensor_limit = Column(Float, nullable=True)
    sensor_limit_low = Column(Float, nullable=True)
    sensor_alert = Column(Integer, default=1, nullable=False)

    device = relationship("Device", back_populates="sensors")


class DeviceGroup(Base):
    __tablename__ = "device_groups"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(String(255), nullable=True)
    # static groups list their devices, dynamic groups select them with `rules`
    type = Column(String(16), nullable=False, default="static")
    rules = Column(JSON, nullable=True)

    devices = relationship("Device", secondary=device_group_device, back_populates="groups")
    alert_rules = relationship("AlertRule", secondary="alert_group_map", back_populates="groups")


GROUP_TYPES = ("static", "dynamic")


# --- Alerting ---

alert_device_map = Table(
    "alert_device_map",
    Base.metadata,
    Column("rule_id", Integer, ForeignKey("alert_rules.id", ondelete="CASCADE"), primary_key=True),
    Column("device_id", Integer, ForeignKey("devices.device_id", ondelete="CASCADE"), primary_key=True),
)

alert_group_map = Table(
    "alert_group_map",
    Base.metadata,
    Column("rule_id", Integer, ForeignKey("alert_rules.id", ondelete="CASCADE"), primary_key=True),
    Column("group_id", Integer, ForeignKey("device_groups.id", ondelete="CASCADE"), primary_key=True),
)

alert_location_map = Table(
    "alert_location_map",
    Base.metadata,
    Column("rule_id", Integer, ForeignKey("alert_rules.id", ondelete="CASCADE"), primary_key=True),
    Column("location_id", Integer, ForeignKey("locations.id", ondelete="CASCADE"), primary_key=True),
)

# Tables the rule compiler must never join through.
ALERTING_TABLES = frozenset({"alert_rules", "alerts", "alert_device_map", "alert_group_map", "alert_location_map"})


class AlertState:
    CLEAR = 0
    ACTIVE = 1
    ACKNOWLEDGED = 2


class AlertRule(Base):
    __tablename__ = "alert_rules"
    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), unique=True, nullable=False)
    severity = Column(String(20), nullable=False, default="critical")
    disabled = Column(Boolean, nullable=False, default=False)
    invert_map = Column(Boolean, nullable=False, default=False)
    extra = Column(JSON, nullable=True)
    builder = Column(JSON, nullable=True)
    # Legacy SQL compiled from `builder`, or the operator supplied advanced query.
    query = Column(Text, nullable=True)
    proc = Column(String(80), nullable=True)
    notes = Column(Text, nullable=True)

    devices = relationship("Device", secondary=alert_device_map)
    groups = relationship("DeviceGroup", secondary=alert_group_map, back_populates="alert_rules")
    locations = relationship("Location", secondary=alert_location_map)
    alerts = relationship("Alert", back_populates="rule", cascade="all, delete-orphan")


class Alert(Base):
    __tablename__ = "alerts"
    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(Integer, ForeignKey("devices.device_id"), nullable=False, index=True)
    rule_id = Column(Integer, ForeignKey("alert_rules.id"), nullable=False, index=True)
    state = Column(Integer, nullable=False, default=AlertState.ACTIVE)
    alerted = Column(Integer, nullable=False, default=0)
    open = Column(Integer, nullable=False, default=1)
    note = Column(Text, nullable=True)
    info = Column(JSON, nullable=True)
    timestamp = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False, index=True)

    device = relationship("Device")
    rule = relationship("AlertRule", back_populates="alerts")
