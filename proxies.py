"""Proxy pool for browser sessions, with temporary blocking on challenges."""

import logging
import random
import sqlite3
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from config import PROXY_BLOCK_MINUTES
from db import format_ts, now_utc, utcnow

logger = logging.getLogger(__name__)

# proxy_usage_logs.event_type values
USED = "USED"
SUCCESS = "SUCCESS"
CHALLENGE_DETECTED = "CHALLENGE_DETECTED"
ERROR = "ERROR"


@dataclass
class Proxy:
    id: int
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None
    proxy_type: str = "HTTP"

    @property
    def server(self) -> str:
        scheme = "socks5" if self.proxy_type.upper() == "SOCKS5" else "http"
        return f"{scheme}://{self.host}:{self.port}"

    def to_playwright(self) -> dict:
        settings = {"server": self.server}
        if self.username:
            settings["username"] = self.username
            settings["password"] = self.password or ""
        return settings


class ProxyPool:
    def __init__(self, conn: sqlite3.Connection, block_minutes: int = PROXY_BLOCK_MINUTES):
        self.conn = conn
        self.block_minutes = block_minutes

    def add_proxy(
        self,
        host: str,
        port: int,
        username: Optional[str] = None,
        password: Optional[str] = None,
        proxy_type: str = "HTTP",
    ) -> int:
        cursor = self.conn.execute(
            "INSERT INTO proxies (host, port, username, password, proxy_type) VALUES (?, ?, ?, ?, ?)",
            (host, port, username, password, proxy_type.upper()),
        )
        self.conn.commit()
        logger.info(f"Added proxy {host}:{port} ({proxy_type})")
        return cursor.lastrowid

    def get_available_proxy(self) -> Optional[Proxy]:
        """Pick a random active proxy that is not currently blocked."""
        rows = self.conn.execute(
            """SELECT * FROM proxies
            WHERE is_active = 1 AND (blocked_until IS NULL OR blocked_until < ?)""",
            (now_utc(),),
        ).fetchall()
        if not rows:
            logger.warning("No available proxies")
            return None
        row = random.choice(rows)
        logger.info(f"Using proxy {row['host']}:{row['port']} ({row['proxy_type']})")
        return Proxy(
            id=row["id"],
            host=row["host"],
            port=row["port"],
            username=row["username"],
            password=row["password"],
            proxy_type=row["proxy_type"],
        )

    def mark_blocked(self, proxy_id: int):
        blocked_until = format_ts(utcnow() + timedelta(minutes=self.block_minutes))
        self.conn.execute(
            "UPDATE proxies SET blocked_until = ? WHERE id = ?", (blocked_until, proxy_id)
        )
        self.conn.commit()
        logger.warning(f"Proxy {proxy_id} blocked until {blocked_until}")

    def log_usage(
        self,
        proxy_id: int,
        event_type: str,
        store_id: Optional[int] = None,
        url: Optional[str] = None,
        error_message: Optional[str] = None,
    ):
        self.conn.execute(
            """INSERT INTO proxy_usage_logs (proxy_id, event_type, store_id, url, error_message, created_at)
            VALUES (?, ?, ?, ?, ?, ?)""",
            (proxy_id, event_type, store_id, url, error_message, now_utc()),
        )
        self.conn.commit()
