"""
MEL Guard - Database Models
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Partial unique index keeps one active alert per
                      (sector, equipment group); total and unavailable counts
                      stored on alerts
v1.0.0 (2026-09-28): Initial MEL rules and alerts schema
"""

from .equipment import EquipmentRecord, WorkOrderRecord
from .mel import (
    AlertStatus, EquipmentGroupDefinition, MelRule, MelRuleItem, MelRuleUpdate,
    Alert, Availability, GroupAvailability, ReconcileResult,
)

import aiosqlite
import logging

logger = logging.getLogger(__name__)


async def init_db(db_path: str | None = None):
    """Initialize SQLite database with the MEL schema"""
    from melguard.database import get_db_path
    db_path = db_path or get_db_path()
    logger.info(f"Initializing database: {db_path}")

    async with aiosqlite.connect(db_path) as db:
        await db.execute("PRAGMA journal_mode=WAL")
        await db.execute("PRAGMA foreign_keys=ON")

        # ================================================================
        # MEL RULES (minimum quantity per sector and equipment group)
        # ================================================================
        await db.execute("""
            CREATE TABLE IF NOT EXISTS mel_rules (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sector_id INTEGER NOT NULL,
                sector_name TEXT NOT NULL DEFAULT '',
                equipment_group_key TEXT NOT NULL,
                equipment_group_name TEXT NOT NULL,
                minimum_quantity INTEGER NOT NULL CHECK (minimum_quantity >= 0),
                group_pattern TEXT,
                justification TEXT,
                active BOOLEAN NOT NULL DEFAULT 1,
                created_by TEXT,
                updated_by TEXT,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL,
                UNIQUE (sector_id, equipment_group_key)
            )
        """)

        # ================================================================
        # MEL ALERTS (written only by the reconciler)
        # ================================================================
        await db.execute("""
            CREATE TABLE IF NOT EXISTS mel_alerts (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                sector_id INTEGER NOT NULL,
                sector_name TEXT NOT NULL DEFAULT '',
                equipment_group_key TEXT NOT NULL,
                equipment_group_name TEXT NOT NULL,
                mel_rule_id INTEGER REFERENCES mel_rules(id) ON DELETE SET NULL,
                minimum_quantity INTEGER NOT NULL,
                current_available INTEGER NOT NULL,
                total_in_sector INTEGER NOT NULL DEFAULT 0,
                unavailable_count INTEGER NOT NULL DEFAULT 0,
                status TEXT NOT NULL DEFAULT 'active'
                    CHECK (status IN ('active', 'resolved')),
                created_at TEXT NOT NULL,
                updated_at TEXT,
                resolved_at TEXT
            )
        """)

        # ================================================================
        # INDEXES
        # ================================================================
        await db.execute("CREATE INDEX IF NOT EXISTS idx_rules_sector ON mel_rules(sector_id)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_rules_active ON mel_rules(active)")
        await db.execute("CREATE INDEX IF NOT EXISTS idx_alerts_status ON mel_alerts(status)")
        await db.execute("""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_alerts_active_key
            ON mel_alerts(sector_id, equipment_group_key)
            WHERE status = 'active'
        """)

        await db.commit()

    logger.info("Database initialized successfully (MEL schema v1.1.0)")


__all__ = [
    'EquipmentRecord', 'WorkOrderRecord',
    'AlertStatus', 'EquipmentGroupDefinition', 'MelRule', 'MelRuleItem', 'MelRuleUpdate',
    'Alert', 'Availability', 'GroupAvailability', 'ReconcileResult',
    'init_db'
]
