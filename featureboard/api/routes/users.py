from __future__ import annotations

from fastapi import APIRouter

from featureboard.api.schemas import CamelModel
from featureboard.dependencies.auth import CurrentPrincipal
from featureboard.dependencies.services import TicketServiceDep

router = APIRouter(prefix="/user", tags=["users"])


class DisplayNameRequest(CamelModel):
    display_name: str = ""


class DisplayNameResponse(CamelModel):
    display_name: str | None


@router.get("/display-name", response_model=DisplayNameResponse)
async def get_display_name(service: TicketServiceDep, principal: CurrentPrincipal) -> DisplayNameResponse:
    return DisplayNameResponse(display_name=await service.get_display_name(principal))


@router.patch("/display-name", response_model=DisplayNameResponse)
async def update_display_name(
    payload: DisplayNameRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> DisplayNameResponse:
    name = await service.update_display_name(principal, payload.display_name)
    return DisplayNameResponse(display_name=name)
