from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from featureboard.admins import AdminRepository, AdminService
from featureboard.api.routes import admins, comments, ping, tickets, uploads, users, votes
from featureboard.core.config import get_settings
from featureboard.core.logging import configure_logging, init_tracer, shutdown_tracer
from featureboard.errors import AuthError, ErrorKind, FeatureBoardError, TransportError
from featureboard.identity import HTTPIdentityProvider
from featureboard.services.postgres import PostgresConnectionTester
from featureboard.services.sweeper import stop_sweep_worker, temp_sweep_worker
from featureboard.storage import EphemeralUploadManager, StorageBucket
from featureboard.tickets import TicketService
from featureboard.tickets.repository import TicketRepository

logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    ErrorKind.VALIDATION: 400,
    ErrorKind.AUTH: 401,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.CONFLICT: 409,
    ErrorKind.TRANSPORT: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):  # pragma: no cover - executed by framework
    settings = get_settings()
    configure_logging(settings)
    tracer_provider = init_tracer(settings)

    postgres_tester = PostgresConnectionTester(dsn=settings.postgres_dsn)
    pool = await postgres_tester.get_pool()
    http_client = httpx.AsyncClient(timeout=settings.storage_timeout_seconds)

    temp_bucket = StorageBucket(
        http_client,
        base_url=settings.storage_url,
        bucket=settings.temp_bucket,
        service_key=settings.storage_service_key,
    )
    permanent_bucket = StorageBucket(
        http_client,
        base_url=settings.storage_url,
        bucket=settings.permanent_bucket,
        service_key=settings.storage_service_key,
    )
    upload_manager = EphemeralUploadManager(
        temp_bucket,
        permanent_bucket,
        temp_prefix=settings.temp_prefix,
        url_ttl_seconds=settings.temp_url_ttl_seconds,
        max_bytes=settings.max_upload_bytes,
        sweep_threshold_seconds=settings.sweep_threshold_seconds,
    )

    ticket_service = TicketService(TicketRepository(pool), uploads=upload_manager)
    admin_service = AdminService(AdminRepository(pool))
    await ticket_service.ensure_schema()
    await admin_service.ensure_schema()
    seeded = await admin_service.bootstrap(settings.bootstrap_admin_email, settings.bootstrap_admin_name)
    if seeded is not None:
        logger.info("Seeded initial system administrator %s", seeded.email)

    app.state.postgres_tester = postgres_tester
    app.state.ticket_service = ticket_service
    app.state.admin_service = admin_service
    app.state.upload_manager = upload_manager
    app.state.identity_provider = HTTPIdentityProvider(
        http_client,
        base_url=settings.identity_url,
        api_key=settings.identity_api_key,
    )

    sweep_stop = asyncio.Event()
    sweep_task = None
    if settings.sweep_interval_seconds > 0:
        sweep_task = asyncio.create_task(
            temp_sweep_worker(upload_manager, sweep_stop, interval_seconds=settings.sweep_interval_seconds)
        )

    try:
        yield
    finally:
        await stop_sweep_worker(sweep_task, sweep_stop)
        await http_client.aclose()
        await postgres_tester.close()
        shutdown_tracer(tracer_provider)


def _error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


async def _feature_board_error_handler(request: Request, exc: FeatureBoardError) -> JSONResponse:
    status_code = _STATUS_BY_KIND.get(exc.kind, 500)
    if isinstance(exc, TransportError):
        logger.error("Upstream failure on %s %s: %s", request.method, request.url.path, exc)
    elif isinstance(exc, AuthError):
        logger.debug("Rejected %s %s: %s", request.method, request.url.path, exc)
    return _error_response(status_code, str(exc))


async def _http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    return _error_response(exc.status_code, str(exc.detail))


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    message = errors[0].get("msg", "Invalid request") if errors else "Invalid request"
    return _error_response(400, message)


def create_app() -> FastAPI:
    settings = get_settings()
    app = FastAPI(title=settings.app_name, lifespan=lifespan)
    app.add_exception_handler(FeatureBoardError, _feature_board_error_handler)
    app.add_exception_handler(HTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.include_router(ping.router)
    app.include_router(tickets.router)
    app.include_router(tickets.admin_router)
    app.include_router(comments.router)
    app.include_router(votes.router)
    app.include_router(uploads.router)
    app.include_router(users.router)
    app.include_router(admins.router)
    return app


app = create_app()
