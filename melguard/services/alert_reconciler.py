"""
MEL Guard - Alert Reconciler
Version: 1.2.0

Changelog:
v1.2.0 (2026-10-19): Rule renames and sector names carried onto active alerts
v1.1.0 (2026-10-12): Fresh snapshot per pass, fetch failures abort before any
                      write, per-rule failure isolation, creation race handled
                      through the active-alert unique index
v1.0.0 (2026-09-28): Periodic MEL evaluation and alert lifecycle

One pass:
  1. fetch equipment, then work orders (ReconcileError on failure, no writes)
  2. resolve active alerts whose rule is gone or inactive
  3. for each active rule: sector filter -> classify -> availability -> diff

Transitions per (sector, group):
  no alert  + available <  minimum -> create
  active    + available <  minimum -> update figures and names when they changed
  active    + available >= minimum -> resolve
  active    + no active rule       -> resolve
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

import aiosqlite

from melguard.config import settings
from melguard.errors import ReconcileError, TransientExternalError
from melguard.models.mel import Alert, Availability, MelRule, ReconcileResult
from melguard.services.alert_store import AlertStore
from melguard.services.availability import AvailabilityCalculator
from melguard.services.data_source import DataSource, Snapshot, get_data_source
from melguard.services.equipment_groups import GroupClassifier
from melguard.services.rule_store import MelRuleStore
from melguard.services.sector_matcher import SectorMatcher

logger = logging.getLogger(__name__)

AlertKey = Tuple[int, str]


def _figures(rule: MelRule, availability: Availability) -> Dict[str, int]:
    return {
        "minimum_quantity": rule.minimum_quantity,
        "current_available": availability.available,
        "total_in_sector": availability.total,
        "unavailable_count": availability.unavailable,
    }


def _labels(rule: MelRule) -> Dict[str, str]:
    return {
        "sector_name": rule.sector_name,
        "equipment_group_name": rule.equipment_group_name,
    }


def _changed(alert: Alert, figures: Dict[str, Any]) -> Dict[str, Any]:
    return {name: value for name, value in figures.items() if getattr(alert, name) != value}


class AlertReconciler:
    """Brings persisted alerts in line with live availability"""

    def __init__(self,
                 source: Optional[DataSource] = None,
                 rule_store: Optional[MelRuleStore] = None,
                 alert_store: Optional[AlertStore] = None,
                 classifier: Optional[GroupClassifier] = None,
                 calculator: Optional[AvailabilityCalculator] = None,
                 sector_matcher: Optional[SectorMatcher] = None,
                 source_timeout: Optional[float] = None):
        self.source = source or get_data_source()
        self.rule_store = rule_store or MelRuleStore()
        self.alert_store = alert_store or AlertStore()
        self.classifier = classifier or GroupClassifier()
        self.calculator = calculator or AvailabilityCalculator()
        self.sector_matcher = sector_matcher or SectorMatcher()
        self.source_timeout = source_timeout

    async def take_snapshot(self) -> Snapshot:
        """
        Fetch equipment, then work orders.

        Raises:
            ReconcileError: phase "equipment" or "work_orders"
        """
        try:
            equipment = await self.source.fetch_equipment(self.source_timeout)
        except TransientExternalError as e:
            raise ReconcileError(f"Equipment fetch failed: {e.message}", phase="equipment")

        try:
            work_orders = await self.source.fetch_work_orders(self.source_timeout)
        except TransientExternalError as e:
            raise ReconcileError(f"Work order fetch failed: {e.message}", phase="work_orders")

        return Snapshot(equipment=equipment, work_orders=work_orders)

    def evaluate(self, rule: MelRule, snapshot: Snapshot) -> Availability:
        """Availability of the rule's group in its sector"""
        sector_equipment = self.sector_matcher.filter(
            snapshot.equipment, rule.sector_id, rule.sector_name)
        group_equipment = self.classifier.classify(sector_equipment, rule)
        return self.calculator.compute(group_equipment, snapshot.work_orders)

    async def reconcile(self) -> ReconcileResult:
        """
        Run one full pass.

        Raises:
            ReconcileError: a source fetch failed; no alert was touched
        """
        result = ReconcileResult(started_at=datetime.now(timezone.utc))

        snapshot = await self.take_snapshot()
        logger.info(f"Reconcile: {len(snapshot.equipment)} equipment, "
                    f"{len(snapshot.work_orders)} work orders")

        rules = await self.rule_store.list_active()
        active_alerts: Dict[AlertKey, Alert] = {
            (a.sector_id, a.equipment_group_key): a
            for a in await self.alert_store.list_active()
        }

        # Orphans: no active rule for the key anymore
        rule_keys = {(r.sector_id, r.equipment_group_key) for r in rules}
        for key, alert in list(active_alerts.items()):
            if key not in rule_keys:
                if await self.alert_store.resolve(alert.id):
                    result.alerts_resolved += 1
                    logger.info(f"Resolved orphan alert {alert.id} ({key[0]}/{key[1]})")
                del active_alerts[key]

        for rule in rules:
            try:
                await self._reconcile_rule(rule, snapshot,
                                           active_alerts.get((rule.sector_id, rule.equipment_group_key)),
                                           result)
                result.rules_evaluated += 1
            except Exception as e:
                result.rules_failed += 1
                logger.error(f"Rule {rule.id} ({rule.sector_id}/{rule.equipment_group_key}) "
                             f"failed, alert left unchanged: {e}", exc_info=True)

        result.finished_at = datetime.now(timezone.utc)
        logger.info(f"Reconcile done: {result.alerts_created} created, "
                    f"{result.alerts_updated} updated, {result.alerts_resolved} resolved, "
                    f"{result.rules_failed} rules failed")
        return result

    async def _reconcile_rule(self, rule: MelRule, snapshot: Snapshot,
                              alert: Optional[Alert], result: ReconcileResult):
        availability = self.evaluate(rule, snapshot)
        violated = availability.available < rule.minimum_quantity

        if not violated:
            if alert is not None and await self.alert_store.resolve(alert.id):
                result.alerts_resolved += 1
                logger.info(f"Resolved alert {alert.id} ({rule.sector_id}/"
                            f"{rule.equipment_group_key}): {availability.available}/"
                            f"{rule.minimum_quantity} available")
            return

        figures = _figures(rule, availability)

        if alert is None:
            try:
                alert_id = await self.alert_store.create(
                    sector_id=rule.sector_id,
                    sector_name=rule.sector_name,
                    group_key=rule.equipment_group_key,
                    group_name=rule.equipment_group_name,
                    mel_rule_id=rule.id,
                    **figures,
                )
                result.alerts_created += 1
                logger.warning(f"MEL alert {alert_id} ({rule.sector_id}/"
                               f"{rule.equipment_group_key}): {availability.available} available, "
                               f"minimum {rule.minimum_quantity}")
                return
            except aiosqlite.IntegrityError:
                # Another pass created it first
                alert = await self.alert_store.get_active(rule.sector_id, rule.equipment_group_key)
                if alert is None:
                    raise
                logger.debug(f"Alert for {rule.sector_id}/{rule.equipment_group_key} "
                             f"created concurrently, updating {alert.id}")

        changes = _changed(alert, {**_labels(rule), **figures})
        if changes and await self.alert_store.update_figures(alert.id, changes):
            result.alerts_updated += 1
            logger.info(f"Updated alert {alert.id}: {changes}")


_reconciler: Optional[AlertReconciler] = None


def get_reconciler() -> AlertReconciler:
    global _reconciler
    if _reconciler is None:
        _reconciler = AlertReconciler()
    return _reconciler


async def reconcile() -> ReconcileResult:
    """Run one pass with the configured reconciler"""
    return await get_reconciler().reconcile()


async def start_scheduler(interval: Optional[float] = None):
    """Reconcile every RECONCILE_INTERVAL_S seconds (0 disables)"""
    interval = settings.RECONCILE_INTERVAL_S if interval is None else interval
    if interval <= 0:
        logger.info("Reconcile scheduler disabled")
        return

    logger.info(f"Starting reconcile scheduler (every {interval}s)")
    while True:
        try:
            await reconcile()
        except ReconcileError as e:
            logger.warning(f"Reconcile pass aborted in phase '{e.phase}': {e.message}")
        except Exception as e:
            logger.error(f"Reconcile pass failed: {e}", exc_info=True)
        await asyncio.sleep(interval)
