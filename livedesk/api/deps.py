"""Shared FastAPI dependencies: unit-of-work and service injection.

The SupportDesk and RoutingHub are created once during the FastAPI lifespan
and stored on app.state. Request handlers retrieve them via Depends(),
never by direct import.
"""

from collections.abc import AsyncGenerator

from fastapi import Depends, Request

from livedesk.realtime.hub import RoutingHub
from livedesk.services.desk import DeskServices, SupportDesk


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

def get_desk(request: Request) -> SupportDesk:
    """Return the SupportDesk created in the lifespan."""
    return request.app.state.desk


async def get_services(
    desk: SupportDesk = Depends(get_desk),
) -> AsyncGenerator[DeskServices, None]:
    """Services bound to one unit of work for the duration of the request."""
    async with desk.unit() as services:
        yield services


def get_hub(request: Request) -> RoutingHub:
    return request.app.state.hub
