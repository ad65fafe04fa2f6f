"""
MEL Guard - Sector Matcher
Version: 1.0.0

Changelog:
v1.0.0 (2026-09-28): Sector filter extracted from the MEL service

Effort equipment rows carry the sector as free text (and, on newer
installations, a SetorId). Rules carry our own sector id plus the name the
operator saw when the rule was written. Checks, in order:
  1. both sides carry a sector id   -> ids must be equal (authoritative)
  2. exact normalized name
  3. one name contains the other (shorter side at least 3 chars)
  4. at least two significant words (3+ chars) in common
Names shorter than 3 characters only use the exact comparison.
"""

import logging
from typing import List, Optional, Sequence

from melguard.models.equipment import EquipmentRecord, normalize_text

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 3


class SectorMatcher:
    """Decides whether an equipment record belongs to a sector"""

    def matches(self, equipment: EquipmentRecord, sector_id: Optional[int],
                sector_name: str) -> bool:
        if equipment.sector_id is not None and sector_id is not None:
            return equipment.sector_id == sector_id

        wanted = normalize_text(sector_name)
        actual = normalize_text(equipment.sector_name)
        if not wanted or not actual:
            return False

        if wanted == actual:
            return True
        if len(wanted) < MIN_NAME_LENGTH:
            return False

        if wanted in actual:
            return True
        if len(actual) >= MIN_NAME_LENGTH and actual in wanted:
            return True

        words = [w for w in wanted.split(" ") if len(w) >= MIN_NAME_LENGTH]
        if len(words) >= 2:
            shared = [w for w in words if w in actual]
            if len(shared) >= 2:
                return True

        return False

    def filter(self, equipment: Sequence[EquipmentRecord], sector_id: Optional[int],
               sector_name: str) -> List[EquipmentRecord]:
        result = [eq for eq in equipment if self.matches(eq, sector_id, sector_name)]
        if equipment and not result:
            logger.warning(f"No equipment found for sector {sector_id} '{sector_name}'")
        else:
            logger.debug(f"Sector {sector_id} '{sector_name}': {len(result)} of "
                         f"{len(equipment)} equipment")
        return result
