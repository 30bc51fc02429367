"""
Vendor verification webhooks.

The raw body is kept for signature validation; the JSON is parsed into the
normalised callback shape only after reading it.
"""
import json
import logging

import pydantic
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from kyc_service.core.context import RequestContext
from kyc_service.core.errors import ValidationError
from kyc_service.db.session import get_db
from kyc_service.schemas.verification import CallbackRequest
from kyc_service.services.orchestrator import verification_orchestrator
from kyc_service.utils.deps import get_request_context
from kyc_service.utils.masking import mask_value

log = logging.getLogger(__name__)

router = APIRouter(prefix="/kyc/webhooks", tags=["kyc-webhooks"])


@router.post("/{provider}")
async def provider_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    context: RequestContext = Depends(get_request_context),
):
    adapter = verification_orchestrator.router.select_adapter(provider)
    raw_body = await request.body()
    signature = request.headers.get(adapter.signature_header)

    try:
        callback = CallbackRequest.model_validate(json.loads(raw_body or b"{}"))
    except (json.JSONDecodeError, pydantic.ValidationError) as e:
        log.warning(f"Malformed {adapter.name} webhook payload: {e}")
        raise ValidationError("Malformed callback payload") from e

    log.info(f"Received {adapter.name} webhook for reference {mask_value(callback.reference_id)} status={callback.status}")

    record = await verification_orchestrator.process_callback(
        db,
        adapter.name,
        callback,
        signature=signature,
        raw_payload=raw_body,
        context=context,
    )
    return {"ok": True, "status": record.status}
