# backend/ruleguard/config.py

from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Macros are referenced from rules as `macros.<name>` and may reference each other.
DEFAULT_ALERT_MACROS = {
    "device": "(devices.disabled = 0 AND devices.ignore = 0)",
    "device_up": "(devices.status = 1 AND macros.device)",
    "device_down": "(devices.status = 0 AND macros.device)",
    "port": "(ports.deleted = 0 AND ports.ignore = 0 AND ports.disabled = 0)",
    "port_up": "(ports.ifOperStatus = 'up' AND ports.ifAdminStatus = 'up' AND macros.port)",
    "port_down": "(ports.ifOperStatus != 'up' AND ports.ifAdminStatus != 'down' AND macros.port)",
    "port_usage_perc": "((ports.ifInOctets_rate * 8.0) / ports.ifSpeed) * 100",
    "sensor": "(sensors.sensor_alert = 1)",
    "now": "CURRENT_TIMESTAMP",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    DATABASE_URL: str = "sqlite:///./ruleguard.db"
    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # --- Alerting ---
    API_USERNAME: str = "api"
    DATEFORMAT_LONG: str = "%Y-%m-%d %H:%M:%S"
    ALERT_MACROS: Dict[str, str] = Field(default_factory=lambda: dict(DEFAULT_ALERT_MACROS))
    ALERT_CHECK_ENABLED: bool = False
    ALERT_CHECK_INTERVAL: int = 60


settings = Settings()
