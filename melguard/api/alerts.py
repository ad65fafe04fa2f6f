"""
MEL Guard - MEL Alert API Endpoints
Version: 1.0.0

Changelog:
v1.0.0 (2026-09-28): Read-only alert listing; alerts are written by the reconciler
"""

from fastapi import APIRouter, Depends, Query

from melguard.services.mel_service import MelService, get_mel_service

router = APIRouter()


@router.get("/alerts")
async def list_alerts(only_active: bool = Query(True),
                      service: MelService = Depends(get_mel_service)):
    """MEL alerts, newest first"""
    alerts = await service.list_alerts(active_only=only_active)
    return {
        "success": True,
        "total": len(alerts),
        "alerts": [a.model_dump() for a in alerts],
    }


@router.get("/alerts/count")
async def count_alerts(service: MelService = Depends(get_mel_service)):
    """Number of active alerts (badge counter)"""
    return {"success": True, "count": await service.count_active_alerts()}
