# backend/ruleguard/services/alert_checker.py
import logging
import time

import schedule
from sqlalchemy.exc import SQLAlchemyError

from ruleguard.alerting.groups import update_dynamic_groups
from ruleguard.alerting.runner import run_rules
from ruleguard.config import settings
from ruleguard.database import SessionLocal
from ruleguard.models import Device

logger = logging.getLogger(__name__)


def check_all_devices():
    """Refreshes dynamic device groups, then runs every alert rule against every enabled device."""
    logger.debug("[Scheduler] Running alert rules...")
    with SessionLocal() as db:
        update_dynamic_groups(db)
        device_ids = [device_id for (device_id,) in db.query(Device.device_id).filter(Device.disabled == 0)]
        for device_id in device_ids:
            try:
                run_rules(db, device_id)
            except SQLAlchemyError as e:
                logger.error(f"Alert check failed for device {device_id}: {e}", exc_info=True)
                db.rollback()
    logger.debug(f"[Scheduler] Alert rules checked for {len(device_ids)} devices.")
    return len(device_ids)


def start_alert_checker():
    """Background loop that checks alert rules every ALERT_CHECK_INTERVAL seconds."""
    logger.info("✅ Alert checker service starting...")
    schedule.every(settings.ALERT_CHECK_INTERVAL).seconds.do(check_all_devices)
    logger.info(f"🗓️  Alert rules will be checked every {settings.ALERT_CHECK_INTERVAL} seconds.")

    while True:
        try:
            schedule.run_pending()
            time.sleep(1)
        except Exception as e:
            logger.error(f"Fatal error in alert checker loop: {e}", exc_info=True)
            time.sleep(settings.ALERT_CHECK_INTERVAL)
