import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from ruleguard.database import Base
from ruleguard.dependencies import get_db
from ruleguard.main import app
from ruleguard.models import Device, DeviceGroup, Location, Port, Sensor


def seed_inventory(db):
    """Four devices: an up core switch, a down edge router, an ignored AP and a disabled lab firewall."""
    datacenter = Location(id=1, location="Datacenter A")
    branch = Location(id=2, location="Branch Office")

    core_sw = Device(device_id=1, hostname="core-sw1", sysName="core-sw1.example.net", os="ios",
                     hardware="C9300", status=1, uptime=100000, location=datacenter)
    edge_rtr = Device(device_id=2, hostname="edge-rtr1", sysName="", os="junos",
                      status=0, status_reason="icmp", uptime=3600, location=datacenter)
    branch_ap = Device(device_id=3, hostname="branch-ap1", sysName="branch-ap1", os="airos",
                       status=1, ignore=1, uptime=500, location=branch)
    lab_fw = Device(device_id=4, hostname="lab-fw1", sysName="lab-fw1", os="pfsense",
                    status=1, disabled=1, notes="it's in the lab")

    ports = [
        Port(port_id=1, device=core_sw, ifIndex=1, ifName="Gi1/0/1", ifSpeed=1000000000,
             ifOperStatus="up", ifAdminStatus="up", ifInOctets_rate=100000000, ifOutOctets_rate=1000),
        Port(port_id=2, device=core_sw, ifIndex=2, ifName="Gi1/0/2", ifSpeed=1000000000,
             ifOperStatus="down", ifAdminStatus="up", ifInOctets_rate=0, ifOutOctets_rate=0),
        Port(port_id=3, device=edge_rtr, ifIndex=1, ifName="ge-0/0/0", ifSpeed=1000000000,
             ifOperStatus="down", ifAdminStatus="down", ifInOctets_rate=0, ifOutOctets_rate=0),
        Port(port_id=4, device=branch_ap, ifIndex=1, ifName="eth0", ifSpeed=100000000,
             ifOperStatus="up", ifAdminStatus="up", ifInOctets_rate=1250000, ifOutOctets_rate=2500000),
    ]
    sensors = [
        Sensor(sensor_id=1, device=core_sw, sensor_class="temperature", sensor_descr="Inlet",
               sensor_current=45.0, sensor_limit=60.0),
        Sensor(sensor_id=2, device=edge_rtr, sensor_class="temperature", sensor_descr="CPU",
               sensor_current=72.5, sensor_limit=70.0),
        Sensor(sensor_id=3, device=branch_ap, sensor_class="voltage", sensor_descr="PoE In",
               sensor_current=12.1, sensor_limit=14.0, sensor_alert=0),
    ]
    groups = [
        DeviceGroup(id=1, name="Core", devices=[core_sw, edge_rtr]),
        DeviceGroup(id=2, name="Wireless", devices=[branch_ap]),
    ]

    db.add_all([datacenter, branch, core_sw, edge_rtr, branch_ap, lab_fw, *ports, *sensors, *groups])
    db.commit()


@pytest.fixture
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    seed_inventory(session)
    yield session
    session.close()


@pytest.fixture
def client(db, session_factory):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    yield TestClient(app)
    app.dependency_overrides.clear()
