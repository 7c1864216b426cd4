"""Notification trigger: queue store alerts for a separate delivery process."""

import logging
import sqlite3
from typing import Protocol

from db import enqueue_alert
from models import StoreAlert

logger = logging.getLogger(__name__)


class Notifier(Protocol):
    def notify(self, store_id: int, alert: StoreAlert) -> None: ...


class AlertQueueNotifier:
    """Writes alerts to pending_alerts. Never raises."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    def notify(self, store_id: int, alert: StoreAlert) -> None:
        try:
            if alert.new_item_count > 0:
                enqueue_alert(self.conn, store_id, "new", {"new_item_count": alert.new_item_count})
            if alert.sold_item_ids:
                enqueue_alert(self.conn, store_id, "sold", {"sold_item_ids": alert.sold_item_ids})
        except sqlite3.Error as e:
            logger.warning(f"Failed to queue alert for store {store_id}: {e}")
            return
        if alert.new_item_count or alert.sold_item_ids:
            logger.info(
                f"Queued alert for store {store_id}: {alert.new_item_count} new, "
                f"{len(alert.sold_item_ids)} sold"
            )


class NullNotifier:
    def notify(self, store_id: int, alert: StoreAlert) -> None:
        logger.debug(f"Alert for store {store_id} dropped: {alert.to_dict()}")
