from __future__ import annotations

from fastapi import APIRouter, Query, status

from featureboard.api.schemas import CamelModel, CommentResponse, comment_response
from featureboard.dependencies.auth import CurrentPrincipal
from featureboard.dependencies.services import TicketServiceDep

router = APIRouter(prefix="/comments", tags=["comments"])


class CommentCreateRequest(CamelModel):
    ticket_id: str = ""
    content: str = ""


@router.get("", response_model=list[CommentResponse])
async def list_comments(
    service: TicketServiceDep,
    ticket_id: str = Query(..., alias="ticketId", min_length=1),
) -> list[CommentResponse]:
    comments = await service.list_comments(ticket_id)
    return [comment_response(comment) for comment in comments]


@router.post("", response_model=CommentResponse, status_code=status.HTTP_201_CREATED)
async def create_comment(
    payload: CommentCreateRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> CommentResponse:
    comment = await service.add_comment(principal, ticket_id=payload.ticket_id, content=payload.content)
    return comment_response(comment)
