"""Liveness and dependency health."""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from livedesk.api.deps import get_hub, get_services
from livedesk.realtime.hub import RoutingHub
from livedesk.services.desk import DeskServices

router = APIRouter(tags=["health"])


@router.get("/health")
async def health(
    services: DeskServices = Depends(get_services),
    hub: RoutingHub = Depends(get_hub),
) -> dict:
    await services.store.db.execute(text("SELECT 1"))
    return {
        "status": "ok",
        "database": "ok",
        "connected_operators": len(hub.registry.operators),
        "connected_customers": len(hub.registry.customers),
    }
