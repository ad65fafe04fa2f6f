"""
MEL Guard - Equipment and Work Order Records
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Accept analytic work order payloads (Tag, EquipamentoId)
v1.0.0 (2026-09-28): Initial normalized record models

Raw Effort payloads arrive with inconsistent field naming (Equipamento vs
name, SituacaoDaOS vs Status, ...). from_source() is the single place where
those shapes are all tried; everything downstream works on these frozen models.
"""

import unicodedata
import re
from datetime import datetime
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


def normalize_text(value: Any) -> str:
    """Lowercase, strip accents and collapse whitespace"""
    if value is None:
        return ""
    text = unicodedata.normalize("NFD", str(value).lower())
    text = "".join(ch for ch in text if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", text).strip()


def normalize_tag(value: Any) -> str:
    """Tags compare case-insensitively with surrounding blanks removed"""
    if value is None:
        return ""
    return str(value).strip().upper()


def _first(raw: Dict[str, Any], *keys: str) -> Any:
    """First non-empty value among candidate keys"""
    for key in keys:
        value = raw.get(key)
        if value is not None and value != "":
            return value
    return None


def _as_id(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip() or None


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def _as_datetime(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    except ValueError:
        return None


class EquipmentRecord(BaseModel):
    """Immutable equipment snapshot for one recompute pass"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(..., description="Effort equipment id")
    tag: str = ""
    name: str = ""
    model: str = ""
    manufacturer: str = ""
    sector_id: Optional[int] = None
    sector_name: str = ""
    status: str = ""

    @property
    def description_key(self) -> Tuple[str, str, str]:
        return (normalize_text(self.name), normalize_text(self.model),
                normalize_text(self.manufacturer))

    @classmethod
    def from_source(cls, raw: Dict[str, Any]) -> "EquipmentRecord":
        """
        Build a record from an Effort equipamentos row or a normalized dict.

        Raises:
            ValueError: the payload carries no usable id
        """
        equipment_id = _as_id(_first(raw, "Id", "id", "EquipamentoId", "equipmentId"))
        if equipment_id is None:
            raise ValueError(f"Equipment payload without id: {sorted(raw.keys())}")

        return cls(
            id=equipment_id,
            tag=str(_first(raw, "Tag", "tag") or "").strip(),
            name=str(_first(raw, "Equipamento", "name", "Nome") or ""),
            model=str(_first(raw, "Modelo", "model") or ""),
            manufacturer=str(_first(raw, "Fabricante", "manufacturer") or ""),
            sector_id=_as_int(_first(raw, "SetorId", "sectorId", "sector_id")),
            sector_name=str(_first(raw, "Setor", "sectorName", "sector_name") or ""),
            status=str(_first(raw, "Status", "Situacao", "status") or ""),
        )


class WorkOrderRecord(BaseModel):
    """Immutable maintenance order snapshot for one recompute pass"""
    model_config = ConfigDict(frozen=True)

    serial_code: str
    code: str = ""
    equipment_id: Optional[str] = None
    tag: Optional[str] = None
    name: str = ""
    model: str = ""
    manufacturer: str = ""
    status: str = ""
    maintenance_type: str = ""
    opened_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None

    @property
    def description_key(self) -> Tuple[str, str, str]:
        return (normalize_text(self.name), normalize_text(self.model),
                normalize_text(self.manufacturer))

    @classmethod
    def from_source(cls, raw: Dict[str, Any]) -> "WorkOrderRecord":
        """
        Build a record from an Effort listagem_analitica_das_os row.

        SituacaoDaOS is preferred over Status; the analytic listing uses
        Status for free-text progress notes on some installations.

        Raises:
            ValueError: the payload carries no serial code
        """
        serial = _as_id(_first(raw, "CodigoSerialOS", "serialCode", "serial_code"))
        if serial is None:
            raise ValueError(f"Work order payload without serial code: {sorted(raw.keys())}")

        tag = _first(raw, "Tag", "tag")
        return cls(
            serial_code=serial,
            code=str(_first(raw, "OS", "code") or ""),
            equipment_id=_as_id(_first(raw, "EquipamentoId", "equipmentId", "equipment_id")),
            tag=str(tag).strip() if tag is not None and str(tag).strip() else None,
            name=str(_first(raw, "Equipamento", "name") or ""),
            model=str(_first(raw, "Modelo", "model") or ""),
            manufacturer=str(_first(raw, "Fabricante", "manufacturer") or ""),
            status=str(_first(raw, "SituacaoDaOS", "Status", "status") or ""),
            maintenance_type=str(_first(raw, "TipoDeManutencao", "maintenanceType",
                                        "maintenance_type") or ""),
            opened_at=_as_datetime(_first(raw, "Abertura", "openedAt", "opened_at")),
            closed_at=_as_datetime(_first(raw, "Fechamento", "closedAt", "closed_at")),
        )
