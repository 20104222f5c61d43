from __future__ import annotations

from fastapi import APIRouter

from featureboard.api.schemas import CamelModel
from featureboard.dependencies.auth import CurrentPrincipal, OptionalPrincipal
from featureboard.dependencies.services import TicketServiceDep
from featureboard.tickets.models import VoteAction

router = APIRouter(prefix="/votes", tags=["votes"])


class VoteRequest(CamelModel):
    ticket_id: str = ""


class VoteResponse(CamelModel):
    action: VoteAction
    upvotes: int


class UpvotedResponse(CamelModel):
    upvoted_posts: list[str]


@router.post("", response_model=VoteResponse)
async def toggle_vote(payload: VoteRequest, service: TicketServiceDep, principal: CurrentPrincipal) -> VoteResponse:
    result = await service.toggle_vote(principal, payload.ticket_id)
    return VoteResponse(action=result.action, upvotes=result.upvotes)


@router.get("", response_model=UpvotedResponse)
async def list_upvoted(service: TicketServiceDep, principal: OptionalPrincipal) -> UpvotedResponse:
    return UpvotedResponse(upvoted_posts=await service.upvoted_ticket_ids(principal))
