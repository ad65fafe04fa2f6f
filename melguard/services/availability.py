"""
MEL Guard - Availability Calculator
Version: 1.2.0

Changelog:
v1.2.0 (2026-10-19): Chain falls through to the next matcher when a tier
                      finds no unit
v1.1.0 (2026-10-12): Identity resolution as an ordered matcher chain;
                      ambiguous tags/descriptions resolve to nothing
v1.0.0 (2026-09-28): Initial availability computation

A unit is unavailable when an open corrective work order resolves to it, or
when its own status marks it out of service (scrapped, written off, on loan).

Work order -> equipment resolution, in order:
  1. EquipmentIdMatcher   - work order EquipamentoId against equipment id
  2. TagMatcher           - normalized tag against equipment tag
  3. DescriptionMatcher   - (name, model, manufacturer) tuple

The first matcher that resolves to a unit wins. A tier whose key is missing,
unknown or shared by several units falls through to the next one, so an
order with a stale equipment id still blocks the unit its tag points at.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, Hashable, List, Optional, Sequence

from melguard.config import settings
from melguard.models.equipment import (
    EquipmentRecord, WorkOrderRecord, normalize_tag, normalize_text,
)
from melguard.models.mel import Availability

logger = logging.getLogger(__name__)


class IdentityMatcher:
    """One tier of the work order -> equipment identity chain"""

    name = "base"

    def __init__(self, equipment: Sequence[EquipmentRecord]):
        self.index: Dict[Hashable, List[str]] = {}
        for eq in equipment:
            key = self.equipment_key(eq)
            if key:
                ids = self.index.setdefault(key, [])
                if eq.id not in ids:
                    ids.append(eq.id)

    def equipment_key(self, equipment: EquipmentRecord) -> Optional[Hashable]:
        raise NotImplementedError

    def work_order_key(self, work_order: WorkOrderRecord) -> Optional[Hashable]:
        raise NotImplementedError

    def resolve(self, key: Hashable) -> Optional[str]:
        candidates = self.index.get(key, [])
        if len(candidates) == 1:
            return candidates[0]
        if len(candidates) > 1:
            logger.debug(f"{self.name}: key {key!r} shared by {candidates}, not resolving")
        return None


class EquipmentIdMatcher(IdentityMatcher):
    name = "equipment_id"

    def equipment_key(self, equipment):
        return equipment.id

    def work_order_key(self, work_order):
        return work_order.equipment_id


class TagMatcher(IdentityMatcher):
    name = "tag"

    def equipment_key(self, equipment):
        return normalize_tag(equipment.tag) or None

    def work_order_key(self, work_order):
        return normalize_tag(work_order.tag) or None


class DescriptionMatcher(IdentityMatcher):
    name = "description"

    def equipment_key(self, equipment):
        key = equipment.description_key
        return key if key[0] else None

    def work_order_key(self, work_order):
        key = work_order.description_key
        return key if key[0] else None


DEFAULT_MATCHER_CHAIN = (EquipmentIdMatcher, TagMatcher, DescriptionMatcher)


@dataclass
class IdentityChain:
    """Ordered matchers built over one group's equipment"""
    matchers: List[IdentityMatcher] = field(default_factory=list)

    @classmethod
    def build(cls, equipment: Sequence[EquipmentRecord],
              matcher_types=DEFAULT_MATCHER_CHAIN) -> "IdentityChain":
        return cls(matchers=[matcher_type(equipment) for matcher_type in matcher_types])

    def resolve(self, work_order: WorkOrderRecord) -> Optional[str]:
        """Equipment id the order refers to, or None when unresolved"""
        for matcher in self.matchers:
            key = matcher.work_order_key(work_order)
            if key is None:
                continue
            equipment_id = matcher.resolve(key)
            if equipment_id is not None:
                return equipment_id
        return None


def _contains_any(value: str, vocabulary: Sequence[str]) -> bool:
    text = normalize_text(value)
    return bool(text) and any(normalize_text(term) in text for term in vocabulary if term)


class AvailabilityCalculator:
    """Counts total, unavailable and available units of one group"""

    def __init__(self,
                 open_statuses: Optional[Sequence[str]] = None,
                 corrective_types: Optional[Sequence[str]] = None,
                 out_of_service_statuses: Optional[Sequence[str]] = None,
                 matcher_types=DEFAULT_MATCHER_CHAIN):
        self.open_statuses = list(settings.OPEN_WORK_ORDER_STATUSES
                                  if open_statuses is None else open_statuses)
        self.corrective_types = list(settings.CORRECTIVE_MAINTENANCE_TYPES
                                     if corrective_types is None else corrective_types)
        self.out_of_service_statuses = list(settings.OUT_OF_SERVICE_STATUSES
                                            if out_of_service_statuses is None
                                            else out_of_service_statuses)
        self.matcher_types = matcher_types

    def is_blocking(self, work_order: WorkOrderRecord) -> bool:
        """Open and corrective"""
        return (_contains_any(work_order.status, self.open_statuses)
                and _contains_any(work_order.maintenance_type, self.corrective_types))

    def is_out_of_service(self, equipment: EquipmentRecord) -> bool:
        return _contains_any(equipment.status, self.out_of_service_statuses)

    def unavailable_ids(self, group_equipment: Sequence[EquipmentRecord],
                        work_orders: Sequence[WorkOrderRecord]) -> set:
        chain = IdentityChain.build(group_equipment, self.matcher_types)
        unavailable = {eq.id for eq in group_equipment if self.is_out_of_service(eq)}

        for work_order in work_orders:
            if not self.is_blocking(work_order):
                continue
            equipment_id = chain.resolve(work_order)
            if equipment_id is not None:
                unavailable.add(equipment_id)

        return unavailable

    def compute(self, group_equipment: Sequence[EquipmentRecord],
                work_orders: Sequence[WorkOrderRecord]) -> Availability:
        total = len(group_equipment)
        unavailable = len(self.unavailable_ids(group_equipment, work_orders))
        return Availability(
            total=total,
            unavailable=unavailable,
            available=max(total - unavailable, 0),
        )
