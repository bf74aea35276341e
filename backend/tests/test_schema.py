import pytest
from sqlalchemy import Column, ForeignKey, Integer, MetaData, String, Table

from ruleguard.alerting import Schema


@pytest.fixture
def schema():
    return Schema()


def test_alerting_tables_are_not_part_of_the_schema(schema):
    assert schema.get_tables() == [
        "device_group_device", "device_groups", "devices", "locations", "ports", "sensors",
    ]
    assert not schema.table_exists("alerts")
    assert not schema.column_exists("alert_rules", "name")
    assert schema.find_relationship_path("alerts") is None


def test_columns(schema):
    assert "ifOperStatus" in schema.get_columns("ports")
    assert schema.get_columns("nope") == []
    assert schema.column_exists("devices", "hostname")
    assert not schema.column_exists("devices", "ifName")


@pytest.mark.parametrize("table, column, expected", [
    ("devices", "status", "integer"),
    ("devices", "uptime", "integer"),
    ("devices", "hostname", "string"),
    ("devices", "last_polled", "datetime"),
    ("sensors", "sensor_current", "double"),
])
def test_column_type(schema, table, column, expected):
    assert schema.column_type(table, column) == expected


def test_primary_keys(schema):
    assert schema.get_primary_key("devices") == "device_id"
    assert schema.get_primary_key("device_groups") == "id"
    assert schema.get_primary_key("device_group_device") is None


@pytest.mark.parametrize("table, path", [
    ("devices", ["devices"]),
    ("ports", ["devices", "ports"]),
    ("locations", ["devices", "locations"]),
    ("device_groups", ["devices", "device_group_device", "device_groups"]),
])
def test_relationship_paths(schema, table, path):
    assert schema.find_relationship_path(table) == path


def test_glue_follows_foreign_keys_either_way(schema):
    assert schema.get_glue("devices", "ports") == ("devices.device_id", "ports.device_id")
    assert schema.get_glue("devices", "locations") == ("devices.location_id", "locations.id")
    assert schema.get_glue("device_group_device", "device_groups") == (
        "device_group_device.device_group_id", "device_groups.id",
    )


def test_glue_without_foreign_keys():
    metadata = MetaData()
    Table("hosts", metadata, Column("host_id", Integer, primary_key=True), Column("name", String))
    Table("interfaces", metadata, Column("interface_id", Integer, primary_key=True), Column("host_id", Integer))
    Table("boxes", metadata, Column("id", Integer, primary_key=True))
    Table("slots", metadata, Column("slot_id", Integer, primary_key=True), Column("box_id", Integer))
    schema = Schema(metadata)

    assert schema.get_table_relationships()["hosts"] == []
    assert schema.find_relationship_path("interfaces", "hosts") is None
    assert schema.get_glue("hosts", "interfaces") == ("hosts.host_id", "interfaces.host_id")
    assert schema.get_glue("boxes", "slots") == ("boxes.id", "slots.box_id")


def test_custom_metadata_relationships():
    metadata = MetaData()
    Table("devices", metadata, Column("device_id", Integer, primary_key=True))
    Table("vlans", metadata, Column("vlan_id", Integer, primary_key=True),
          Column("device_id", Integer, ForeignKey("devices.device_id")))
    Table("vlan_ports", metadata, Column("id", Integer, primary_key=True),
          Column("vlan_id", Integer, ForeignKey("vlans.vlan_id")))
    schema = Schema(metadata)

    assert schema.get_table_relationships() == {
        "devices": ["vlans"],
        "vlan_ports": ["vlans"],
        "vlans": ["devices", "vlan_ports"],
    }
    assert schema.find_relationship_path("vlan_ports") == ["devices", "vlans", "vlan_ports"]
    assert schema.get_glue("vlans", "vlan_ports") == ("vlans.vlan_id", "vlan_ports.vlan_id")
