"""Inbound Clerk webhook endpoint."""

from typing import Any

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from home_inventory.core.errors import AuthSyncError, InvalidWebhookPayloadError
from home_inventory.core.logging import get_logger
from home_inventory.core.services import AppServices, Services
from home_inventory.modules.auth.schemas import ClerkWebhookEvent
from home_inventory.modules.webhooks.idempotency import RESERVED_VALUE, delivery_key
from home_inventory.modules.webhooks.signing import WebhookVerificationError, verify_signature

router = APIRouter()
logger = get_logger(__name__)


def _error(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"code": code, "message": message})


@router.post("/clerk")
async def receive_clerk_webhook(request: Request, services: Services) -> Any:
    """
    Verify, de-duplicate and apply a Clerk lifecycle event.

    Deliveries are keyed by ``svix-id``. A reservation survives client
    errors (redelivering a bad payload cannot help) and is released on
    any other failure so Svix can retry.
    """
    settings = services.settings
    body = await request.body()

    try:
        svix_id = verify_signature(
            body,
            request.headers,
            settings.clerk_webhook_signing_secret,
            tolerance_seconds=settings.webhook_tolerance_seconds,
        )
    except WebhookVerificationError as exc:
        logger.warning("clerk_webhook_rejected", reason=str(exc))
        return _error(status.HTTP_400_BAD_REQUEST, "INVALID_WEBHOOK", "Invalid webhook signature")

    try:
        event = ClerkWebhookEvent.model_validate_json(body)
    except ValidationError as exc:
        raise InvalidWebhookPayloadError("Webhook body is not a valid event envelope") from exc

    if not event.is_user_event:
        logger.info("clerk_webhook_event_ignored", event_type=event.type, svix_id=svix_id)
        return {"ok": True}

    key = delivery_key(settings.webhook_idempotency_prefix, svix_id)
    reservation: str | None = key
    reserved = True
    try:
        reserved = await services.idempotency.set_if_absent(
            key, RESERVED_VALUE, settings.webhook_idempotency_ttl_seconds
        )
    except Exception:
        # Re-applying an event is a no-op, so an outage only costs dedup.
        logger.warning("webhook_idempotency_unavailable", svix_id=svix_id)
        reservation = None

    if not reserved:
        logger.info("clerk_webhook_duplicate", event_type=event.type, svix_id=svix_id)
        return {"ok": True, "duplicate": True}

    try:
        await services.user_sync.apply_lifecycle_event(event)
    except Exception as exc:
        if isinstance(exc, AuthSyncError) and exc.is_client_error:
            logger.warning(
                "clerk_webhook_rejected_payload",
                event_type=event.type,
                svix_id=svix_id,
                code=exc.code,
            )
            raise
        await _release(services, reservation)
        services.reporter.capture_exception(exc, event_type=event.type, svix_id=svix_id)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            "WEBHOOK_PROCESSING_FAILED",
            "Failed to process webhook",
        )

    logger.info("clerk_webhook_processed", event_type=event.type, svix_id=svix_id)
    return {"ok": True}


async def _release(services: AppServices, key: str | None) -> None:
    if key is None:
        return
    try:
        await services.idempotency.delete(key)
    except Exception:
        logger.warning("webhook_idempotency_release_failed", key=key)
