"""
Router for Stripe webhook deliveries.

No session auth: the request is authenticated by its Stripe-Signature header.
Responses tell Stripe whether to retry:
    200 {"received": true} : applied, ignored, or dropped for missing metadata
    400                    : bad signature (retrying will not help)
    500                    : unexpected failure or timeout (Stripe retries)

Event handling runs in a worker thread on its own database Session. After a
timeout the endpoint answers 500 but the thread may still finish and commit;
that late commit is safe because every write is an upsert keyed by Stripe id,
so Stripe's retry converges to the same rows.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from app.core.config import get_settings
from app.core.database import get_session_factory
from app.core.errors import SignatureInvalid
from app.schemas import WebhookAck
from app.services.stripe_service import StripeService, get_stripe_service
from app.services.webhook_service import ReconcileOutcome, WebhookService, verify_event

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/webhooks",
    tags=["Webhooks"],
)


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"message": message}})


def _reconcile(session_factory, stripe_service: StripeService, event: dict) -> ReconcileOutcome:
    """Runs in the threadpool; logs its own failures since the caller may have stopped waiting."""
    with session_factory() as db:
        try:
            return WebhookService(db, stripe_service).handle_event(event)
        except Exception:
            logger.exception("Error processing Stripe event %s %s", event.get("type"), event.get("id"))
            raise


@router.post("/stripe", response_model=WebhookAck, include_in_schema=False)
async def stripe_webhook(
    request: Request,
    session_factory=Depends(get_session_factory),
    stripe_service: StripeService = Depends(get_stripe_service),
):
    settings = get_settings()
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")

    try:
        event = verify_event(stripe_service, payload, signature)
    except SignatureInvalid as e:
        logger.warning("Stripe webhook signature verification failed: %s", e.message)
        return _error(400, e.message)

    try:
        outcome = await asyncio.wait_for(
            run_in_threadpool(_reconcile, session_factory, stripe_service, event),
            timeout=settings.WEBHOOK_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        logger.error(
            "Stripe event %s %s timed out after %ss",
            event.get("type"), event.get("id"), settings.WEBHOOK_TIMEOUT_SECONDS,
        )
        return _error(500, "Internal Server Error")
    except Exception:
        # already logged with traceback by _reconcile
        return _error(500, "Internal Server Error")

    logger.debug("Stripe event %s: %s", event.get("id"), outcome.value)
    return WebhookAck(received=True)
