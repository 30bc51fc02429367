from fastapi import APIRouter
from sqlalchemy import text

from kyc_service.db.session import SessionLocal
from kyc_service.utils.redis_pool import ping

router = APIRouter(tags=["health"])


@router.get("/health")
async def health():
    return {"ok": True}


@router.get("/health/ready")
async def ready():
    checks = {}
    try:
        async with SessionLocal() as db:
            await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e.__class__.__name__}"
    try:
        await ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"error: {e.__class__.__name__}"
    return {"ok": all(v == "ok" for v in checks.values()), "checks": checks}
