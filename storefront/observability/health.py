from __future__ import annotations

from typing import Dict

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from storefront.config import Config
from storefront.database import engine


def check_database_health() -> Dict[str, str]:
    """Attempt a lightweight DB query to ensure connectivity."""
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
        return {"status": "UP"}
    except OperationalError as exc:
        return {"status": "DOWN", "detail": str(exc)}


def check_media_storage_health() -> Dict[str, str]:
    """The media root must exist and be writable for product uploads."""
    root = Config.MEDIA_ROOT
    if not root.exists():
        return {"status": "DOWN", "detail": f"{root} does not exist"}
    marker = root / ".healthcheck"
    try:
        marker.write_text("ok")
        marker.unlink()
    except OSError as exc:
        return {"status": "DOWN", "detail": str(exc)}
    return {"status": "UP"}
