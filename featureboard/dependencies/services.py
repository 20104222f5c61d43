from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from featureboard.admins.service import AdminService
from featureboard.identity import IdentityProvider
from featureboard.storage.uploads import EphemeralUploadManager
from featureboard.tickets.service import TicketService


def _state(request: Request, name: str, label: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=503, detail=f"{label} is not configured")
    return service


async def get_ticket_service(request: Request) -> TicketService:
    return _state(request, "ticket_service", "Ticket service")


async def get_admin_service(request: Request) -> AdminService:
    return _state(request, "admin_service", "Admin service")


async def get_upload_manager(request: Request) -> EphemeralUploadManager:
    return _state(request, "upload_manager", "Upload storage")


async def get_identity_provider(request: Request) -> IdentityProvider:
    return _state(request, "identity_provider", "Identity provider")


TicketServiceDep = Annotated[TicketService, Depends(get_ticket_service)]
AdminServiceDep = Annotated[AdminService, Depends(get_admin_service)]
UploadManagerDep = Annotated[EphemeralUploadManager, Depends(get_upload_manager)]
