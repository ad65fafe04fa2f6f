"""
MEL Guard - MEL Service
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Listing endpoints read through SnapshotCache; rule
                      writes invalidate it and trigger a reconcile pass
v1.0.0 (2026-09-28): Sector group listing, rule configuration and summary

Operator-facing operations. Rules are written here; alerts are only ever
written by the AlertReconciler.
"""

import logging
from collections import OrderedDict
from typing import Any, Dict, List, Optional, Sequence

from melguard.errors import NotFoundError, ReconcileError, ValidationError
from melguard.models.equipment import EquipmentRecord
from melguard.models.mel import (
    Alert, GroupAvailability, MelRule, MelRuleItem, MelRuleUpdate, ReconcileResult,
)
from melguard.services.alert_reconciler import AlertReconciler, get_reconciler
from melguard.services.alert_store import AlertStore
from melguard.services.availability import AvailabilityCalculator
from melguard.services.data_source import DataSource, Snapshot, get_data_source
from melguard.services.equipment_groups import (
    GroupClassifier, build_custom_membership, find_definition,
)
from melguard.services.rule_store import MelRuleStore
from melguard.services.sector_matcher import SectorMatcher
from melguard.services.snapshot_cache import SnapshotCache

logger = logging.getLogger(__name__)


class MelService:
    """Sector listings, rule CRUD and the MEL summary"""

    def __init__(self,
                 source: Optional[DataSource] = None,
                 rule_store: Optional[MelRuleStore] = None,
                 alert_store: Optional[AlertStore] = None,
                 classifier: Optional[GroupClassifier] = None,
                 calculator: Optional[AvailabilityCalculator] = None,
                 sector_matcher: Optional[SectorMatcher] = None,
                 cache: Optional[SnapshotCache] = None,
                 reconciler: Optional[AlertReconciler] = None):
        self.source = source or get_data_source()
        self.rule_store = rule_store or MelRuleStore()
        self.alert_store = alert_store or AlertStore()
        self.classifier = classifier or GroupClassifier()
        self.calculator = calculator or AvailabilityCalculator()
        self.sector_matcher = sector_matcher or SectorMatcher()
        self.cache = cache or SnapshotCache()
        self.reconciler = reconciler or AlertReconciler(
            source=self.source,
            rule_store=self.rule_store,
            alert_store=self.alert_store,
            classifier=self.classifier,
            calculator=self.calculator,
            sector_matcher=self.sector_matcher,
        )

    # ================================================================
    # SNAPSHOT
    # ================================================================

    async def _load_snapshot(self) -> Snapshot:
        equipment = await self.source.fetch_equipment()
        work_orders = await self.source.fetch_work_orders()
        return Snapshot(equipment=equipment, work_orders=work_orders)

    async def snapshot(self) -> Snapshot:
        """Cached snapshot for read-only listings (TransientExternalError on fetch failure)"""
        return await self.cache.get_or_load(self._load_snapshot)

    def _sector_name(self, sector_id: int, sector_name: Optional[str],
                     rules: Sequence[MelRule]) -> str:
        if sector_name:
            return sector_name
        for rule in rules:
            if rule.sector_name:
                return rule.sector_name
        return ""

    # ================================================================
    # LISTINGS
    # ================================================================

    def _rule_row(self, rule: MelRule, sector_equipment: Sequence[EquipmentRecord],
                  snapshot: Snapshot) -> GroupAvailability:
        members = self.classifier.classify(sector_equipment, rule)
        availability = self.calculator.compute(members, snapshot.work_orders)
        return GroupAvailability(
            group_key=rule.equipment_group_key,
            group_name=rule.equipment_group_name,
            total=availability.total,
            available=availability.available,
            unavailable=availability.unavailable,
            minimum_quantity=rule.minimum_quantity,
            em_alerta=rule.active and availability.available < rule.minimum_quantity,
            custom=self.classifier.custom_membership(rule) is not None,
            equipment=members,
        )

    async def list_groups_for_sector(self, sector_id: int,
                                     sector_name: Optional[str] = None) -> List[GroupAvailability]:
        """
        Equipment groups present in a sector with live availability.

        Groups without a rule come from the first-match partition of the
        sector's equipment. Groups with a rule are evaluated exactly as the
        reconciler evaluates them, so em_alerta agrees with the alert state.
        """
        rules = await self.rule_store.list_by_sector(sector_id)
        name = self._sector_name(sector_id, sector_name, rules)
        snapshot = await self.snapshot()
        sector_equipment = self.sector_matcher.filter(snapshot.equipment, sector_id, name)

        rules_by_key = {rule.equipment_group_key: rule for rule in rules}
        rows: List[GroupAvailability] = []

        for definition, members in self.classifier.groups_with_counts(sector_equipment):
            rule = rules_by_key.pop(definition.key, None)
            if rule is not None:
                rows.append(self._rule_row(rule, sector_equipment, snapshot))
                continue
            availability = self.calculator.compute(members, snapshot.work_orders)
            rows.append(GroupAvailability(
                group_key=definition.key,
                group_name=definition.display_name,
                total=availability.total,
                available=availability.available,
                unavailable=availability.unavailable,
                equipment=members,
            ))

        # Custom groups and configured groups with no unit in the sector
        for rule in rules_by_key.values():
            rows.append(self._rule_row(rule, sector_equipment, snapshot))

        logger.info(f"Sector {sector_id} '{name}': {len(sector_equipment)} equipment, "
                    f"{len(rows)} groups")
        return rows

    async def list_mel_for_sector(self, sector_id: int,
                                  sector_name: Optional[str] = None) -> List[GroupAvailability]:
        """Only the groups that carry a rule"""
        rows = await self.list_groups_for_sector(sector_id, sector_name)
        return [row for row in rows if row.minimum_quantity is not None]

    # ================================================================
    # RULES
    # ================================================================

    async def _validate_item(self, sector_id: int, item: MelRuleItem):
        key = item.equipment_group_key.strip()
        if not key:
            raise ValidationError("Equipment group key is required", field="equipment_group_key")
        if not item.equipment_group_name.strip():
            raise ValidationError("Equipment group name is required", field="equipment_group_name")
        if item.minimum_quantity < 0:
            raise ValidationError(f"Minimum quantity must be >= 0 for '{key}'",
                                  field="minimum_quantity")

        if item.equipment_ids or find_definition(key, self.classifier.definitions):
            return
        existing = await self.rule_store.get_by_key(sector_id, key)
        if existing is not None and self.classifier.custom_membership(existing) is not None:
            return
        raise ValidationError(
            f"Unknown equipment group '{key}': select equipment for a custom group",
            field="equipment_ids")

    async def upsert_rules(self, sector_id: int, items: Sequence[MelRuleItem],
                           sector_name: Optional[str] = None, user: Optional[str] = None,
                           reconcile: bool = True) -> List[MelRule]:
        """
        Create or update rules keyed by (sector_id, equipment_group_key).

        Every item is validated before anything is written.

        Raises:
            ValidationError: invalid item
        """
        for item in items:
            await self._validate_item(sector_id, item)

        name = self._sector_name(
            sector_id, sector_name, await self.rule_store.list_by_sector(sector_id))

        saved = []
        for item in items:
            pattern = build_custom_membership(item.equipment_ids) if item.equipment_ids else None
            saved.append(await self.rule_store.upsert(
                sector_id=sector_id,
                sector_name=name,
                group_key=item.equipment_group_key.strip(),
                group_name=item.equipment_group_name.strip(),
                minimum_quantity=item.minimum_quantity,
                group_pattern=pattern,
                justification=item.justification,
                user=user,
            ))
        logger.info(f"Sector {sector_id}: {len(saved)} MEL rule(s) saved by {user or 'unknown'}")

        await self._after_mutation(reconcile)
        return saved

    async def get_rule(self, rule_id: int) -> MelRule:
        rule = await self.rule_store.get(rule_id)
        if rule is None:
            raise NotFoundError("MEL rule", rule_id)
        return rule

    async def update_rule(self, rule_id: int, changes: MelRuleUpdate,
                          user: Optional[str] = None, reconcile: bool = True) -> MelRule:
        """
        Partial edit of one rule.

        Raises:
            NotFoundError: no such rule
            ValidationError: negative minimum, or clearing the membership of
                a group that has no default definition
        """
        rule = await self.get_rule(rule_id)
        fields: Dict[str, Any] = changes.model_dump(exclude_unset=True)

        updates: Dict[str, Any] = {}
        if fields.get("minimum_quantity") is not None:
            if fields["minimum_quantity"] < 0:
                raise ValidationError("Minimum quantity must be >= 0", field="minimum_quantity")
            updates["minimum_quantity"] = fields["minimum_quantity"]
        if "justification" in fields:
            updates["justification"] = fields["justification"]
        if fields.get("active") is not None:
            updates["active"] = 1 if fields["active"] else 0
        if fields.get("equipment_group_name"):
            updates["equipment_group_name"] = fields["equipment_group_name"].strip()
        if "equipment_ids" in fields:
            ids = fields["equipment_ids"]
            if ids:
                updates["group_pattern"] = build_custom_membership(ids)
            elif find_definition(rule.equipment_group_key, self.classifier.definitions):
                updates["group_pattern"] = None
            else:
                raise ValidationError(
                    f"Group '{rule.equipment_group_key}' needs at least one equipment",
                    field="equipment_ids")

        if updates:
            updates["updated_by"] = user
            await self.rule_store.update(rule_id, updates)
            logger.info(f"MEL rule {rule_id} updated: {sorted(updates)}")
            await self._after_mutation(reconcile)
        return await self.get_rule(rule_id)

    async def delete_rule(self, rule_id: int, reconcile: bool = True):
        if not await self.rule_store.delete(rule_id):
            raise NotFoundError("MEL rule", rule_id)
        logger.info(f"MEL rule {rule_id} deleted")
        await self._after_mutation(reconcile)

    async def delete_rule_by_key(self, sector_id: int, group_key: str, reconcile: bool = True):
        if not await self.rule_store.delete_by_key(sector_id, group_key):
            raise NotFoundError("MEL rule", f"{sector_id}/{group_key}")
        logger.info(f"MEL rule {sector_id}/{group_key} deleted")
        await self._after_mutation(reconcile)

    async def delete_sector_rules(self, sector_id: int, reconcile: bool = True) -> int:
        deleted = await self.rule_store.delete_by_sector(sector_id)
        if not deleted:
            raise NotFoundError("MEL rules for sector", sector_id)
        logger.info(f"Sector {sector_id}: {deleted} MEL rule(s) deleted")
        await self._after_mutation(reconcile)
        return deleted

    async def _after_mutation(self, reconcile: bool):
        self.cache.invalidate()
        if not reconcile:
            return
        try:
            await self.reconciler.reconcile()
        except ReconcileError as e:
            # Rule is saved; the next scheduled pass picks it up
            logger.warning(f"Post-write reconcile skipped ({e.phase}): {e.message}")

    # ================================================================
    # ALERTS
    # ================================================================

    async def list_alerts(self, active_only: bool = True) -> List[Alert]:
        return await self.alert_store.list(active_only=active_only)

    async def list_active_alerts(self) -> List[Alert]:
        return await self.alert_store.list_active()

    async def count_active_alerts(self) -> int:
        return len(await self.alert_store.list_active())

    async def recalculate(self) -> ReconcileResult:
        """Explicit reconcile pass; ReconcileError propagates to the caller"""
        self.cache.invalidate()
        return await self.reconciler.reconcile()

    # ================================================================
    # SUMMARY
    # ================================================================

    async def summary(self) -> Dict[str, Any]:
        """Rules grouped by sector with live availability, plus the active alert digest"""
        rules = await self.rule_store.list_all()
        alerts = await self.alert_store.list_active()
        snapshot = await self.snapshot() if rules else Snapshot(equipment=(), work_orders=())

        by_sector: "OrderedDict[int, List[MelRule]]" = OrderedDict()
        for rule in rules:
            by_sector.setdefault(rule.sector_id, []).append(rule)

        sector_names: Dict[int, str] = {}
        sectors = []
        for sector_id, sector_rules in by_sector.items():
            name = self._sector_name(sector_id, None, sector_rules)
            sector_names[sector_id] = name
            sector_equipment = self.sector_matcher.filter(snapshot.equipment, sector_id, name)
            rows = [self._summary_row(rule, sector_equipment, snapshot) for rule in sector_rules]
            sectors.append({
                "sector_id": sector_id,
                "sector_name": name,
                "rules": rows,
                "total_rules": len(rows),
                "rules_in_alert": sum(1 for r in rows if r["em_alerta"]),
            })

        problems = [{
            "sector_id": alert.sector_id,
            "sector_name": sector_names.get(alert.sector_id) or alert.sector_name,
            "equipment_group_key": alert.equipment_group_key,
            "equipment_group_name": alert.equipment_group_name,
            "available": alert.current_available,
            "minimum": alert.minimum_quantity,
            "shortfall": alert.minimum_quantity - alert.current_available,
        } for alert in alerts]

        return {
            "total_sectors_with_mel": len(by_sector),
            "total_sectors_with_problem": len({a.sector_id for a in alerts}),
            "total_active_alerts": len(alerts),
            "problems": problems,
            "sectors": sectors,
        }

    def _summary_row(self, rule: MelRule, sector_equipment: Sequence[EquipmentRecord],
                     snapshot: Snapshot) -> Dict[str, Any]:
        row = self._rule_row(rule, sector_equipment, snapshot)
        return {
            "id": rule.id,
            "equipment_group_key": rule.equipment_group_key,
            "equipment_group_name": rule.equipment_group_name,
            "minimum_quantity": rule.minimum_quantity,
            "active": rule.active,
            "justification": rule.justification,
            "available": row.available,
            "total": row.total,
            "unavailable": row.unavailable,
            "em_alerta": row.em_alerta,
        }


_service: Optional[MelService] = None


def get_mel_service() -> MelService:
    """Shared service instance (FastAPI dependency)"""
    global _service
    if _service is None:
        _service = MelService(reconciler=get_reconciler())
    return _service
