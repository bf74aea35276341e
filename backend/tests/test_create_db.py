from sqlalchemy import create_engine, inspect

from ruleguard import create_db, database


def test_main_creates_tables(tmp_path, monkeypatch):
    engine = create_engine(f"sqlite:///{tmp_path / 'ruleguard.db'}")
    monkeypatch.setattr(database, "engine", engine)

    assert create_db.main() == 0
    tables = inspect(engine).get_table_names()
    assert {"devices", "ports", "sensors", "alert_rules", "alerts", "alert_device_map"} <= set(tables)
    engine.dispose()


def test_main_reports_failures(monkeypatch, capsys):
    def fail(bind=None):
        raise RuntimeError("disk full")

    monkeypatch.setattr(database, "create_db_and_tables", fail)

    assert create_db.main() == 1
    assert "disk full" in capsys.readouterr().err
