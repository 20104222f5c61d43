from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Response, status

from featureboard.api.schemas import CamelModel
from featureboard.dependencies.auth import AdminPrincipal, CurrentPrincipal
from featureboard.dependencies.services import AdminServiceDep

router = APIRouter(prefix="/admin", tags=["admin"])


class SystemAdminCreateRequest(CamelModel):
    email: str = ""
    name: str | None = None


class SystemAdminResponse(CamelModel):
    id: str
    email: str
    name: str
    created_at: datetime


class AdminStatusResponse(CamelModel):
    is_admin: bool


@router.get("/me", response_model=AdminStatusResponse)
async def admin_status(admins: AdminServiceDep, principal: CurrentPrincipal) -> AdminStatusResponse:
    return AdminStatusResponse(is_admin=await admins.is_admin(principal.email))


@router.get("/system-admins", response_model=list[SystemAdminResponse])
async def list_system_admins(admins: AdminServiceDep, _: AdminPrincipal) -> list[SystemAdminResponse]:
    return [SystemAdminResponse.model_validate(admin) for admin in await admins.list_admins()]


@router.post("/system-admins", response_model=SystemAdminResponse, status_code=status.HTTP_201_CREATED)
async def add_system_admin(
    payload: SystemAdminCreateRequest,
    admins: AdminServiceDep,
    _: AdminPrincipal,
) -> SystemAdminResponse:
    admin = await admins.add_admin(payload.email, payload.name)
    return SystemAdminResponse.model_validate(admin)


@router.delete("/system-admins/{admin_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_system_admin(admin_id: str, admins: AdminServiceDep, _: AdminPrincipal) -> Response:
    await admins.remove_admin(admin_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
