"""
MEL Guard - MEL Rule and Alert Models
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): ReconcileResult carries rule counters and pass timestamps
v1.0.0 (2026-09-28): Initial rule, alert and group models
"""

from pydantic import BaseModel, Field
from enum import Enum
from typing import Optional, List, Union
from datetime import datetime

from melguard.models.equipment import EquipmentRecord


class AlertStatus(str, Enum):
    """Alert lifecycle states"""
    ACTIVE = "active"
    RESOLVED = "resolved"


class EquipmentGroupDefinition(BaseModel):
    """Named class of interchangeable equipment, matched by text patterns"""
    key: str = Field(..., description="Unique group key (e.g., 'ventilador')")
    display_name: str = Field(..., description="Readable group name")
    patterns: List[str] = Field(default_factory=list,
                                description="Case-insensitive substrings of name/model/manufacturer")


class MelRule(BaseModel):
    """Minimum quantity configured for one (sector, equipment group)"""
    id: int
    sector_id: int
    sector_name: str = ""
    equipment_group_key: str
    equipment_group_name: str
    minimum_quantity: int = Field(..., ge=0)
    group_pattern: Optional[str] = Field(
        None, description="Raw custom membership payload: {\"type\": \"custom\", \"equipmentIds\": [...]}")
    justification: Optional[str] = None
    active: bool = True
    created_by: Optional[str] = None
    updated_by: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class MelRuleItem(BaseModel):
    """One rule in a sector MEL configuration request"""
    equipment_group_key: str = Field(..., min_length=1)
    equipment_group_name: str = Field(..., min_length=1)
    minimum_quantity: int = Field(..., ge=0)
    justification: Optional[str] = None
    equipment_ids: Optional[List[Union[int, str]]] = Field(
        None, description="Explicit membership; overrides pattern matching")


class MelRuleUpdate(BaseModel):
    """Partial rule edit"""
    minimum_quantity: Optional[int] = Field(None, ge=0)
    justification: Optional[str] = None
    active: Optional[bool] = None
    equipment_group_name: Optional[str] = None
    equipment_ids: Optional[List[Union[int, str]]] = None


class Alert(BaseModel):
    """Persisted MEL violation"""
    id: int
    sector_id: int
    sector_name: str = ""
    equipment_group_key: str
    equipment_group_name: str
    mel_rule_id: Optional[int] = None
    minimum_quantity: int
    current_available: int
    total_in_sector: int = 0
    unavailable_count: int = 0
    status: AlertStatus
    created_at: str
    updated_at: Optional[str] = None
    resolved_at: Optional[str] = None


class Availability(BaseModel):
    """Availability of one group; available is never negative"""
    total: int = Field(..., ge=0)
    unavailable: int = Field(..., ge=0)
    available: int = Field(..., ge=0)


class GroupAvailability(BaseModel):
    """Group listing row for a sector"""
    group_key: str
    group_name: str
    total: int
    available: int
    unavailable: int
    minimum_quantity: Optional[int] = None
    em_alerta: bool = False
    custom: bool = False
    equipment: List[EquipmentRecord] = Field(default_factory=list)


class ReconcileResult(BaseModel):
    """Outcome of one full reconcile pass"""
    alerts_created: int = 0
    alerts_updated: int = 0
    alerts_resolved: int = 0
    rules_evaluated: int = 0
    rules_failed: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
