from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/ping", tags=["health"])


@router.get("", summary="Public health check")
async def ping() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/ready", summary="Database readiness check")
async def ready(request: Request) -> dict[str, str]:
    tester = getattr(request.app.state, "postgres_tester", None)
    if tester is None:
        raise HTTPException(status_code=503, detail="Database is not configured")
    try:
        await tester.test_connection()
    except Exception as exc:  # noqa: BLE001 - any driver failure means "not ready"
        raise HTTPException(status_code=503, detail="Database unavailable") from exc
    return {"status": "ok", "database": "ok"}
