"""
MEL Guard - MEL Configuration API Endpoints
Version: 1.1.0

Changelog:
v1.1.0 (2026-10-12): Explicit recalculate endpoint returns pass counters;
                      source failures answer 503
v1.0.0 (2026-09-28): Sector groups, rule CRUD and summary
"""

from fastapi import APIRouter, Depends, Header, Query
from pydantic import BaseModel, Field
from typing import List, Optional
import logging

from melguard.models.mel import MelRuleItem, MelRuleUpdate
from melguard.services.equipment_groups import DEFAULT_EQUIPMENT_GROUPS
from melguard.services.mel_service import MelService, get_mel_service

router = APIRouter()
logger = logging.getLogger(__name__)


class SectorMelRequest(BaseModel):
    sector_name: Optional[str] = Field(None, description="Sector name as shown in Effort")
    items: List[MelRuleItem]


@router.get("/equipment-groups")
async def list_equipment_groups():
    """Default equipment group definitions"""
    return {
        "success": True,
        "groups": [g.model_dump() for g in DEFAULT_EQUIPMENT_GROUPS],
    }


@router.get("/sector/{sector_id}/equipments")
async def list_sector_equipment_groups(sector_id: int,
                                       sector_name: Optional[str] = Query(None),
                                       service: MelService = Depends(get_mel_service)):
    """Equipment of a sector grouped by type, with availability"""
    groups = await service.list_groups_for_sector(sector_id, sector_name)
    return {
        "success": True,
        "sector_id": sector_id,
        "groups": [g.model_dump() for g in groups],
    }


@router.get("/sector/{sector_id}")
async def get_sector_mel(sector_id: int,
                         sector_name: Optional[str] = Query(None),
                         service: MelService = Depends(get_mel_service)):
    """Configured MEL items of a sector with current availability"""
    items = await service.list_mel_for_sector(sector_id, sector_name)
    return {
        "success": True,
        "sector_id": sector_id,
        "items": [i.model_dump(exclude={"equipment"}) for i in items],
    }


@router.post("/sector/{sector_id}")
async def configure_sector_mel(sector_id: int, data: SectorMelRequest,
                               x_user: Optional[str] = Header(None),
                               service: MelService = Depends(get_mel_service)):
    """Create or update the MEL of a sector"""
    rules = await service.upsert_rules(sector_id, data.items,
                                       sector_name=data.sector_name, user=x_user)
    return {
        "success": True,
        "sector_id": sector_id,
        "items": [r.model_dump() for r in rules],
        "message": f"MEL configured for {len(rules)} equipment group(s)",
    }


@router.delete("/sector/{sector_id}")
async def delete_sector_mel(sector_id: int, service: MelService = Depends(get_mel_service)):
    """Remove every MEL rule of a sector"""
    deleted = await service.delete_sector_rules(sector_id)
    return {"success": True, "deleted": deleted}


@router.delete("/sector/{sector_id}/equipment-group/{group_key}")
async def delete_sector_group(sector_id: int, group_key: str,
                              service: MelService = Depends(get_mel_service)):
    await service.delete_rule_by_key(sector_id, group_key)
    return {"success": True, "message": "MEL item removed"}


@router.get("/rule/{rule_id}")
async def get_rule(rule_id: int, service: MelService = Depends(get_mel_service)):
    return await service.get_rule(rule_id)


@router.patch("/rule/{rule_id}")
async def update_rule(rule_id: int, data: MelRuleUpdate,
                      x_user: Optional[str] = Header(None),
                      service: MelService = Depends(get_mel_service)):
    rule = await service.update_rule(rule_id, data, user=x_user)
    return {"success": True, "rule": rule.model_dump()}


@router.delete("/rule/{rule_id}")
async def delete_rule(rule_id: int, service: MelService = Depends(get_mel_service)):
    await service.delete_rule(rule_id)
    return {"success": True, "message": "MEL rule removed"}


@router.post("/recalculate")
async def recalculate(service: MelService = Depends(get_mel_service)):
    """Run a reconcile pass now"""
    result = await service.recalculate()
    return {"success": True, **result.model_dump(mode="json")}


@router.get("/summary")
async def summary(service: MelService = Depends(get_mel_service)):
    """Rules per sector with live availability and the active alert digest"""
    return {"success": True, **await service.summary()}
