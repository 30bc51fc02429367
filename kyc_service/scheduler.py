import asyncio
import logging
from datetime import datetime, timezone

from kyc_service.core.config import settings
from kyc_service.db.session import SessionLocal
from kyc_service.services.documents import document_custodian
from kyc_service.services.orchestrator import verification_orchestrator

log = logging.getLogger("scheduler")

_scheduler_task: asyncio.Task | None = None


async def run_sweeps_once() -> dict:
    """Expire lapsed verifications and purge document blobs past retention."""
    result = {}
    async with SessionLocal() as db:
        try:
            result["expired"] = await verification_orchestrator.expire_verifications(db)
        except Exception as e:
            log.exception(f"[SCHEDULER] Verification expiry sweep failed: {e}")
            result["expired_error"] = str(e)

    async with SessionLocal() as db:
        try:
            result["purged"] = await document_custodian.purge_expired(db)
        except Exception as e:
            log.exception(f"[SCHEDULER] Document purge sweep failed: {e}")
            result["purged_error"] = str(e)

    log.info(
        f"[SCHEDULER] KYC sweeps complete: "
        f"expired={result.get('expired', 0)}, "
        f"purged={result.get('purged', 0)}"
    )
    return result


async def _scheduler_loop():
    interval_seconds = settings.KYC_SWEEP_INTERVAL_HOURS * 3600

    log.info(f"[SCHEDULER] Starting KYC sweep scheduler: interval={settings.KYC_SWEEP_INTERVAL_HOURS}h")

    await asyncio.sleep(60)

    while True:
        try:
            log.info(f"[SCHEDULER] Running KYC sweeps at {datetime.now(timezone.utc).isoformat()}")
            await run_sweeps_once()
        except asyncio.CancelledError:
            log.info("[SCHEDULER] Scheduler cancelled, shutting down")
            break
        except Exception as e:
            log.exception(f"[SCHEDULER] Unexpected error: {e}")

        log.info(f"[SCHEDULER] Next run in {settings.KYC_SWEEP_INTERVAL_HOURS} hours")
        await asyncio.sleep(interval_seconds)


def start_scheduler():
    global _scheduler_task

    if not settings.KYC_SWEEPS_ENABLED:
        log.info("[SCHEDULER] KYC sweep scheduler is disabled (KYC_SWEEPS_ENABLED=false)")
        return

    if _scheduler_task is not None:
        log.warning("[SCHEDULER] Scheduler already running")
        return

    _scheduler_task = asyncio.create_task(_scheduler_loop())
    log.info("[SCHEDULER] KYC sweep scheduler started")


def stop_scheduler():
    global _scheduler_task

    if _scheduler_task is not None:
        _scheduler_task.cancel()
        _scheduler_task = None
        log.info("[SCHEDULER] KYC sweep scheduler stopped")
