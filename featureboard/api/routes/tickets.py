from __future__ import annotations

from fastapi import APIRouter, Query, Response, status

from featureboard.api.schemas import CamelModel, TicketPageResponse, TicketResponse, page_response, ticket_response
from featureboard.dependencies.auth import AdminPrincipal, CurrentPrincipal
from featureboard.dependencies.services import AdminServiceDep, TicketServiceDep
from featureboard.tickets.models import SortField, SortOrder, TicketQuery
from featureboard.tickets.service import TempImageRef
from featureboard.tickets.state import TicketStatus

router = APIRouter(prefix="/tickets", tags=["tickets"])
admin_router = APIRouter(prefix="/admin/tickets", tags=["admin"])


class TicketCreateRequest(CamelModel):
    title: str = ""
    description: str = ""
    image_url: str | None = None
    temp_filename: str | None = None
    original_name: str | None = None
    original_type: str | None = None


class TicketStatusChangeRequest(CamelModel):
    # Kept as a plain string so unknown values get the domain error message.
    status: str | None = None


class TicketVisibilityRequest(CamelModel):
    hidden: bool


def _build_query(
    *,
    status_filter: str | None,
    search: str | None,
    author_id: str | None,
    sort_by: SortField,
    sort_order: SortOrder,
    page: int,
    limit: int,
    hidden: bool | None = None,
) -> TicketQuery:
    return TicketQuery(
        status=TicketStatus.parse(status_filter) if status_filter else None,
        search=search or None,
        author_id=author_id or None,
        hidden=hidden,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )


@router.get("", response_model=TicketPageResponse)
async def list_tickets(
    service: TicketServiceDep,
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    author_id: str | None = Query(default=None, alias="authorId"),
    sort_by: SortField = Query(default=SortField.CREATED_AT, alias="sortBy"),
    sort_order: SortOrder = Query(default=SortOrder.DESC, alias="sortOrder"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=1000, ge=1, le=1000),
) -> TicketPageResponse:
    query = _build_query(
        status_filter=status_filter,
        search=search,
        author_id=author_id,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
    )
    return page_response(await service.list_tickets(query))


@router.post("", response_model=TicketResponse, status_code=status.HTTP_201_CREATED)
async def create_ticket(
    payload: TicketCreateRequest,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> TicketResponse:
    temp_image = None
    if payload.temp_filename:
        temp_image = TempImageRef(
            temp_key=payload.temp_filename,
            original_name=payload.original_name,
            content_type=payload.original_type,
        )
    ticket = await service.create_ticket(
        principal,
        title=payload.title,
        description=payload.description,
        image_url=payload.image_url,
        temp_image=temp_image,
    )
    return ticket_response(ticket)


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: str, service: TicketServiceDep) -> TicketResponse:
    return ticket_response(await service.get_ticket(ticket_id))


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def change_ticket_status(
    ticket_id: str,
    payload: TicketStatusChangeRequest,
    service: TicketServiceDep,
    _: AdminPrincipal,
) -> TicketResponse:
    return ticket_response(await service.change_status(ticket_id, payload.status))


@router.patch("/{ticket_id}/visibility", response_model=TicketResponse)
async def change_ticket_visibility(
    ticket_id: str,
    payload: TicketVisibilityRequest,
    service: TicketServiceDep,
    _: AdminPrincipal,
) -> TicketResponse:
    return ticket_response(await service.set_visibility(ticket_id, payload.hidden))


@router.delete("/{ticket_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_ticket(
    ticket_id: str,
    service: TicketServiceDep,
    admins: AdminServiceDep,
    principal: CurrentPrincipal,
) -> Response:
    is_admin = await admins.is_admin(principal.email)
    await service.delete_ticket(ticket_id, principal, is_admin=is_admin)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@admin_router.get("", response_model=TicketPageResponse)
async def list_all_tickets(
    service: TicketServiceDep,
    _: AdminPrincipal,
    status_filter: str | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None),
    author_id: str | None = Query(default=None, alias="authorId"),
    hidden: bool | None = Query(default=None),
    sort_by: SortField = Query(default=SortField.CREATED_AT, alias="sortBy"),
    sort_order: SortOrder = Query(default=SortOrder.DESC, alias="sortOrder"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=1000, ge=1, le=1000),
) -> TicketPageResponse:
    query = _build_query(
        status_filter=status_filter,
        search=search,
        author_id=author_id,
        sort_by=sort_by,
        sort_order=sort_order,
        page=page,
        limit=limit,
        hidden=hidden,
    )
    return page_response(await service.list_tickets(query, include_hidden=True))
