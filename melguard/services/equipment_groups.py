"""
MEL Guard - Equipment Group Classifier
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Custom membership restricted to the sector's equipment;
                      malformed payloads fall back to pattern matching
v1.0.0 (2026-09-28): Initial pattern-based grouping

Partitions a sector's equipment into named groups of interchangeable units.
A rule either names a default group (matched by text patterns against
name/model/manufacturer) or carries an explicit list of equipment ids that
replaces pattern matching for that rule.

Listing by default groups is first-match-wins in declaration order, so one
unit never counts in two default groups.
"""

import json
import logging
from typing import Dict, Iterable, List, Optional, Sequence, FrozenSet

from melguard.errors import MalformedDataError
from melguard.models.equipment import EquipmentRecord, normalize_text
from melguard.models.mel import EquipmentGroupDefinition, MelRule

logger = logging.getLogger(__name__)


DEFAULT_EQUIPMENT_GROUPS: List[EquipmentGroupDefinition] = [
    EquipmentGroupDefinition(
        key="monitor", display_name="Monitor Multiparâmetro",
        patterns=["monitor", "multiparâmetro", "multiparameter", "sinais vitais", "ecg", "spo2"]),
    EquipmentGroupDefinition(
        key="ventilador", display_name="Ventilador Pulmonar",
        patterns=["ventilador", "ventilator", "respirator", "respirador"]),
    EquipmentGroupDefinition(
        key="desfibrilador", display_name="Desfibrilador",
        patterns=["desfibrilador", "defibrillator"]),
    EquipmentGroupDefinition(
        key="bomba-infusao", display_name="Bomba de Infusão",
        patterns=["bomba", "infusão", "infusion pump", "bomba de infusão"]),
    EquipmentGroupDefinition(
        key="anestesia", display_name="Aparelho de Anestesia",
        patterns=["anestesia", "anesthesia", "aparelho de anestesia"]),
    EquipmentGroupDefinition(
        key="mesa-cirurgica", display_name="Mesa Cirúrgica",
        patterns=["mesa cirúrgica", "surgical table", "mesa operatória"]),
    EquipmentGroupDefinition(
        key="foco-cirurgico", display_name="Foco Cirúrgico",
        patterns=["foco", "surgical light", "lâmpada cirúrgica", "iluminação cirúrgica"]),
    EquipmentGroupDefinition(
        key="bisturi-eletronico", display_name="Bisturi Eletrônico",
        patterns=["bisturi", "electrosurgical", "electrocautery", "bisturi elétrico"]),
    EquipmentGroupDefinition(
        key="aspirador-cirurgico", display_name="Aspirador Cirúrgico",
        patterns=["aspirador cirúrgico", "surgical aspirator", "aspirador de sucção"]),
    EquipmentGroupDefinition(
        key="oximetro", display_name="Oxímetro de Pulso",
        patterns=["oxímetro", "pulse oximeter", "oximetro de pulso"]),
    EquipmentGroupDefinition(
        key="raio-x", display_name="Raio-X",
        patterns=["raio-x", "x-ray", "radiografia", "fluoroscopia"]),
    EquipmentGroupDefinition(
        key="ultrassom", display_name="Ultrassom",
        patterns=["ultrassom", "ultrasound", "ecografia"]),
    EquipmentGroupDefinition(
        key="eletrocardiografo", display_name="Eletrocardiógrafo",
        patterns=["eletrocardi", "ecg", "eletrocardiógrafo"]),
]


def find_definition(key: str,
                    definitions: Sequence[EquipmentGroupDefinition] = DEFAULT_EQUIPMENT_GROUPS
                    ) -> Optional[EquipmentGroupDefinition]:
    for definition in definitions:
        if definition.key == key:
            return definition
    return None


def matches_definition(equipment: EquipmentRecord,
                       definition: EquipmentGroupDefinition) -> bool:
    """True if any pattern is a substring of name/model/manufacturer"""
    fields = [value for value in equipment.description_key if value]
    for pattern in definition.patterns:
        needle = normalize_text(pattern)
        if needle and any(needle in value for value in fields):
            return True
    return False


def build_custom_membership(equipment_ids: Iterable) -> str:
    """Serialize an explicit id list into the persisted group_pattern payload"""
    ids = [str(i).strip() for i in equipment_ids if str(i).strip()]
    return json.dumps({"type": "custom", "equipmentIds": ids})


def parse_custom_membership(payload) -> Optional[FrozenSet[str]]:
    """
    Parse a persisted custom membership payload.

    Returns None when the payload is absent or is not a custom group.

    Raises:
        MalformedDataError: payload present but unparseable
    """
    if payload is None or payload == "":
        return None

    if isinstance(payload, str):
        try:
            data = json.loads(payload)
        except (json.JSONDecodeError, TypeError) as e:
            raise MalformedDataError(f"Custom membership is not valid JSON: {e}")
    else:
        data = payload

    if isinstance(data, list):
        ids = data
    elif isinstance(data, dict):
        if data.get("type") != "custom":
            return None
        ids = data.get("equipmentIds")
    else:
        raise MalformedDataError(f"Unexpected custom membership type: {type(data).__name__}")

    if not isinstance(ids, list):
        raise MalformedDataError("equipmentIds must be a list")
    if any(isinstance(i, (dict, list)) or i is None for i in ids):
        raise MalformedDataError("equipmentIds must contain scalar ids")

    return frozenset(str(i).strip() for i in ids if str(i).strip())


class GroupClassifier:
    """Resolves which equipment belongs to a rule's group"""

    def __init__(self, definitions: Sequence[EquipmentGroupDefinition] = DEFAULT_EQUIPMENT_GROUPS):
        self.definitions = list(definitions)

    def custom_membership(self, rule: MelRule) -> Optional[FrozenSet[str]]:
        """Parsed explicit membership, or None (absent, empty or malformed)"""
        try:
            ids = parse_custom_membership(rule.group_pattern)
        except MalformedDataError as e:
            logger.warning(f"Rule {rule.id} ({rule.sector_id}/{rule.equipment_group_key}): "
                           f"ignoring custom membership, using patterns: {e.message}")
            return None
        return ids or None

    def classify(self, sector_equipment: Sequence[EquipmentRecord], rule: MelRule,
                 definitions: Optional[Sequence[EquipmentGroupDefinition]] = None
                 ) -> List[EquipmentRecord]:
        """
        Equipment of the sector belonging to rule.equipment_group_key.

        1. Non-empty custom membership: intersection with the sector's ids
        2. Otherwise the default definition's patterns (unknown key -> [])
        """
        ids = self.custom_membership(rule)
        if ids is not None:
            return [eq for eq in sector_equipment if eq.id in ids]

        definition = find_definition(rule.equipment_group_key, definitions or self.definitions)
        if definition is None:
            logger.debug(f"No group definition for key '{rule.equipment_group_key}'")
            return []
        return [eq for eq in sector_equipment if matches_definition(eq, definition)]

    def identify_group(self, equipment: EquipmentRecord) -> Optional[EquipmentGroupDefinition]:
        """First definition in declaration order that matches"""
        for definition in self.definitions:
            if matches_definition(equipment, definition):
                return definition
        return None

    def group_equipment(self, equipment: Sequence[EquipmentRecord]
                        ) -> Dict[str, List[EquipmentRecord]]:
        """Partition by default groups, first match wins; unmatched units are dropped"""
        groups: Dict[str, List[EquipmentRecord]] = {}
        for eq in equipment:
            definition = self.identify_group(eq)
            if definition:
                groups.setdefault(definition.key, []).append(eq)
        return groups

    def groups_with_counts(self, equipment: Sequence[EquipmentRecord]):
        """(definition, members) pairs, largest group first, then by name"""
        grouped = self.group_equipment(equipment)
        result = [(find_definition(key, self.definitions), members)
                  for key, members in grouped.items()]
        result.sort(key=lambda item: (-len(item[1]), item[0].display_name))
        return result
