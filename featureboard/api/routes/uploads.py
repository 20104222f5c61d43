from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, File, UploadFile
from pydantic import Field

from featureboard.api.schemas import CamelModel
from featureboard.dependencies.auth import CurrentPrincipal
from featureboard.dependencies.services import TicketServiceDep, UploadManagerDep
from featureboard.errors import ValidationError
from featureboard.storage.uploads import IncomingImage

router = APIRouter(prefix="/uploads", tags=["uploads"])


class TempUploadResponse(CamelModel):
    temp_filename: str
    signed_url: str
    expires_at: datetime
    size: int
    content_type: str = Field(alias="type")


class MoveUploadRequest(CamelModel):
    temp_filename: str = ""
    original_name: str | None = None
    original_type: str | None = None


class MoveUploadResponse(CamelModel):
    image_url: str
    filename: str


class CleanupRequest(CamelModel):
    temp_filenames: list[str] | None = None
    run_full_cleanup: bool = False


class CleanupResponse(CamelModel):
    removed_files: list[str]


@router.post("/temp", response_model=TempUploadResponse)
async def upload_temp(manager: UploadManagerDep, file: UploadFile = File(...)) -> TempUploadResponse:
    # One byte past the limit is enough to reject oversize files.
    data = await file.read(manager.max_bytes + 1)
    staged = await manager.stage_upload(
        IncomingImage(filename=file.filename or "image", content_type=file.content_type, data=data)
    )
    return TempUploadResponse(
        temp_filename=staged.temp_key,
        signed_url=staged.signed_url,
        expires_at=staged.expires_at,
        size=staged.size,
        content_type=staged.content_type,
    )


@router.post("/move", response_model=MoveUploadResponse)
async def move_upload(
    payload: MoveUploadRequest,
    manager: UploadManagerDep,
    service: TicketServiceDep,
    principal: CurrentPrincipal,
) -> MoveUploadResponse:
    if not payload.temp_filename:
        raise ValidationError("Temporary filename is required")
    user = await service.resolve_user(principal)
    promoted = await manager.promote(
        payload.temp_filename,
        target_name=payload.original_name,
        content_type=payload.original_type,
        owner_id=user.id,
    )
    return MoveUploadResponse(image_url=promoted.url, filename=promoted.key)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_uploads(payload: CleanupRequest, manager: UploadManagerDep) -> CleanupResponse:
    if payload.run_full_cleanup:
        report = await manager.sweep_expired()
        return CleanupResponse(removed_files=report.removed)
    removed = await manager.discard(payload.temp_filenames or [])
    return CleanupResponse(removed_files=removed)
