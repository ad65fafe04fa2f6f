"""
MEL Guard - MEL Rule Store
Version: 1.0.0

Changelog:
v1.0.0 (2026-09-28): Keyed CRUD for mel_rules
"""

import logging
from typing import Any, Dict, List, Optional

from melguard.database import (
    get_db, execute_one, execute_all, execute_update, utcnow_iso,
)
from melguard.models.mel import MelRule

logger = logging.getLogger(__name__)

_UPDATABLE = {
    "sector_name", "equipment_group_name", "minimum_quantity", "group_pattern",
    "justification", "active", "updated_by",
}


def _to_rule(row: Optional[dict]) -> Optional[MelRule]:
    if row is None:
        return None
    row["active"] = bool(row["active"])
    return MelRule(**row)


class MelRuleStore:
    """mel_rules table, unique on (sector_id, equipment_group_key)"""

    def __init__(self, db_path: Optional[str] = None):
        self.db_path = db_path

    async def get(self, rule_id: int) -> Optional[MelRule]:
        async with get_db(self.db_path) as db:
            return _to_rule(await execute_one(
                db, "SELECT * FROM mel_rules WHERE id = ?", (rule_id,)))

    async def get_by_key(self, sector_id: int, group_key: str) -> Optional[MelRule]:
        async with get_db(self.db_path) as db:
            return _to_rule(await execute_one(
                db,
                "SELECT * FROM mel_rules WHERE sector_id = ? AND equipment_group_key = ?",
                (sector_id, group_key)))

    async def list_active(self) -> List[MelRule]:
        async with get_db(self.db_path) as db:
            rows = await execute_all(
                db, "SELECT * FROM mel_rules WHERE active = 1 ORDER BY sector_id, id")
        return [_to_rule(r) for r in rows]

    async def list_all(self) -> List[MelRule]:
        async with get_db(self.db_path) as db:
            rows = await execute_all(
                db, "SELECT * FROM mel_rules ORDER BY sector_id, equipment_group_name")
        return [_to_rule(r) for r in rows]

    async def list_by_sector(self, sector_id: int) -> List[MelRule]:
        async with get_db(self.db_path) as db:
            rows = await execute_all(
                db, "SELECT * FROM mel_rules WHERE sector_id = ? ORDER BY id", (sector_id,))
        return [_to_rule(r) for r in rows]

    async def upsert(self, sector_id: int, sector_name: str, group_key: str, group_name: str,
                     minimum_quantity: int, group_pattern: Optional[str] = None,
                     justification: Optional[str] = None, user: Optional[str] = None) -> MelRule:
        """Create or update by (sector_id, group_key); an existing pattern survives a None"""
        now = utcnow_iso()
        async with get_db(self.db_path) as db:
            await db.execute("""
                INSERT INTO mel_rules
                    (sector_id, sector_name, equipment_group_key, equipment_group_name,
                     minimum_quantity, group_pattern, justification, active,
                     created_by, updated_by, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, 1, ?, ?, ?, ?)
                ON CONFLICT (sector_id, equipment_group_key) DO UPDATE SET
                    sector_name = excluded.sector_name,
                    equipment_group_name = excluded.equipment_group_name,
                    minimum_quantity = excluded.minimum_quantity,
                    group_pattern = COALESCE(excluded.group_pattern, mel_rules.group_pattern),
                    justification = excluded.justification,
                    updated_by = excluded.updated_by,
                    updated_at = excluded.updated_at
            """, (sector_id, sector_name, group_key, group_name, minimum_quantity,
                  group_pattern, justification, user, user, now, now))
            await db.commit()
            row = await execute_one(
                db,
                "SELECT * FROM mel_rules WHERE sector_id = ? AND equipment_group_key = ?",
                (sector_id, group_key))
        return _to_rule(row)

    async def update(self, rule_id: int, changes: Dict[str, Any]) -> int:
        updates = []
        params = []
        for field_name, value in changes.items():
            if field_name not in _UPDATABLE:
                raise KeyError(f"Column not updatable: {field_name}")
            updates.append(f"{field_name} = ?")
            params.append(value)
        updates.append("updated_at = ?")
        params.append(utcnow_iso())
        params.append(rule_id)

        async with get_db(self.db_path) as db:
            return await execute_update(
                db, f"UPDATE mel_rules SET {', '.join(updates)} WHERE id = ?", params)

    async def delete(self, rule_id: int) -> int:
        async with get_db(self.db_path) as db:
            return await execute_update(db, "DELETE FROM mel_rules WHERE id = ?", (rule_id,))

    async def delete_by_key(self, sector_id: int, group_key: str) -> int:
        async with get_db(self.db_path) as db:
            return await execute_update(
                db, "DELETE FROM mel_rules WHERE sector_id = ? AND equipment_group_key = ?",
                (sector_id, group_key))

    async def delete_by_sector(self, sector_id: int) -> int:
        async with get_db(self.db_path) as db:
            return await execute_update(
                db, "DELETE FROM mel_rules WHERE sector_id = ?", (sector_id,))
