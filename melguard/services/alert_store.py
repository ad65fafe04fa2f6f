"""
MEL Guard - MEL Alert Store
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Guarded resolve; create raises IntegrityError on a
                      concurrent active alert for the same key
v1.0.0 (2026-09-28): Keyed CRUD for mel_alerts
"""

import logging
from typing import Any, Dict, List, Optional

from melguard.database import (
    get_db, execute_one, execute_all, execute_insert, execute_update, utcnow_iso,
)
from melguard.models.mel import Alert, AlertStatus

logger = logging.getLogger(__name__)


def _to_alert(row: Optional[dict]) -> Optional[Alert]:
    return Alert(**row) if row else None


class AlertStore:
    """mel_alerts table; at most one active alert per (sector_id, group key)"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    async def get(self, alert_id: int) -> Optional[Alert]:
        async with get_db(self.db_path) as db:
            return _to_alert(await execute_one(
                db, "SELECT * FROM mel_alerts WHERE id = ?", (alert_id,)))

    async def get_active(self, sector_id: int, group_key: str) -> Optional[Alert]:
        async with get_db(self.db_path) as db:
            return _to_alert(await execute_one(db, """
                SELECT * FROM mel_alerts
                WHERE sector_id = ? AND equipment_group_key = ? AND status = 'active'
            """, (sector_id, group_key)))

    async def list_active(self) -> List[Alert]:
        return await self.list(active_only=True)

    async def list(self, active_only: bool = True) -> List[Alert]:
        query = "SELECT * FROM mel_alerts"
        if active_only:
            query += " WHERE status = 'active'"
        query += " ORDER BY created_at DESC, id DESC"
        async with get_db(self.db_path) as db:
            rows = await execute_all(db, query)
        return [_to_alert(r) for r in rows]

    async def create(self, sector_id: int, sector_name: str, group_key: str, group_name: str,
                     mel_rule_id: Optional[int], minimum_quantity: int, current_available: int,
                     total_in_sector: int, unavailable_count: int) -> int:
        """
        Insert an active alert.

        Raises:
            aiosqlite.IntegrityError: an active alert already exists for the key
        """
        async with get_db(self.db_path) as db:
            return await execute_insert(db, """
                INSERT INTO mel_alerts
                    (sector_id, sector_name, equipment_group_key, equipment_group_name,
                     mel_rule_id, minimum_quantity, current_available,
                     total_in_sector, unavailable_count, status, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """, (sector_id, sector_name, group_key, group_name, mel_rule_id,
                  minimum_quantity, current_available, total_in_sector,
                  unavailable_count, AlertStatus.ACTIVE.value, utcnow_iso()))

    async def update_figures(self, alert_id: int, changes: Dict[str, Any]) -> int:
        """Update an active alert's figures or names; no-op for an empty change set"""
        if not changes:
            return 0
        updates = [f"{name} = ?" for name in changes]
        params = list(changes.values())
        updates.append("updated_at = ?")
        params.extend([utcnow_iso(), alert_id])
        async with get_db(self.db_path) as db:
            return await execute_update(
                db,
                f"UPDATE mel_alerts SET {', '.join(updates)} WHERE id = ? AND status = 'active'",
                params)

    async def resolve(self, alert_id: int) -> int:
        """Mark resolved; returns 0 if another pass resolved it first"""
        now = utcnow_iso()
        async with get_db(self.db_path) as db:
            return await execute_update(db, """
                UPDATE mel_alerts SET status = ?, resolved_at = ?, updated_at = ?
                WHERE id = ? AND status = 'active'
            """, (AlertStatus.RESOLVED.value, now, now, alert_id))
