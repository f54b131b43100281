from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from titan_billing.core.config import settings
from titan_billing.core.database import get_db
from titan_billing.dependencies.auth import get_current_user
from titan_billing.dependencies.rate_limit import require_rate_limit
from titan_billing.dependencies.validation import parse_json_body
from titan_billing.models.user import User
from titan_billing.schemas.payments import CheckoutSessionCreate, CheckoutSessionOut, PortalSessionOut
from titan_billing.services.billing_sync import BillingSyncError, BillingSyncService
from titan_billing.services.stripe import (
    StripeConfigError,
    StripeService,
    StripeServiceError,
    StripeWebhookError,
    stripe_field,
)
from titan_billing.services.subscriptions import find_customer_id

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


def get_stripe_service() -> StripeService:
    return StripeService()


def _webhook_response(status_code: int, **body) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"status": status_code, **body})


@router.post("/webhooks")
async def stripe_webhook(
    request: Request,
    db: Session = Depends(get_db),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> JSONResponse:
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = stripe_service.parse_event(payload, signature)
    except StripeConfigError:
        return _webhook_response(status.HTTP_500_INTERNAL_SERVER_ERROR, error="Stripe configuration error")
    except StripeWebhookError as exc:
        logger.warning("Rejected Stripe webhook: %s", exc)
        return _webhook_response(status.HTTP_400_BAD_REQUEST, error="Webhook Error: Invalid Signature")

    service = BillingSyncService(db, stripe_service)
    try:
        outcome = service.process_event(event)
    except BillingSyncError as exc:
        logger.error("Stripe event %s (%s) failed: %s", event.get("id"), event.get("type"), exc)
        return _webhook_response(exc.status_code, error=str(exc))
    except StripeServiceError as exc:
        logger.error("Stripe event %s (%s) failed upstream: %s", event.get("id"), event.get("type"), exc)
        return _webhook_response(status.HTTP_500_INTERNAL_SERVER_ERROR, error=str(exc))
    except Exception:
        logger.exception("Unexpected error handling Stripe event %s (%s)", event.get("id"), event.get("type"))
        return _webhook_response(status.HTTP_500_INTERNAL_SERVER_ERROR, error="Internal server error")

    return JSONResponse(status_code=outcome.status, content=outcome.body())


@router.post(
    "/create-checkout-session",
    response_model=CheckoutSessionOut,
    dependencies=[Depends(require_rate_limit("payment"))],
)
async def create_checkout_session(
    request: Request,
    stripe_service: StripeService = Depends(get_stripe_service),
) -> CheckoutSessionOut:
    if not settings.STRIPE_SECRET_KEY:
        logger.error("Missing STRIPE_SECRET_KEY environment variable")
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Stripe configuration error")

    payload = await parse_json_body(request, CheckoutSessionCreate)

    base_url = settings.FRONTEND_BASE_URL or "http://localhost:3000"
    success_url = str(payload.success_url) if payload.success_url else f"{base_url}/success?session_id={{CHECKOUT_SESSION_ID}}"
    cancel_url = str(payload.cancel_url) if payload.cancel_url else f"{base_url}/cancel"

    subscription_metadata = None
    if payload.subscription and payload.billing_type == "organization":
        subscription_metadata = {
            "organizationId": payload.organization_id or "",
            "billingType": "organization",
            "initialSeats": str(payload.quantity),
        }

    try:
        session = stripe_service.create_checkout_session(
            price_id=payload.price_id,
            quantity=payload.quantity,
            subscription=payload.subscription,
            metadata=payload.stripe_metadata(),
            success_url=success_url,
            cancel_url=cancel_url,
            subscription_metadata=subscription_metadata,
        )
    except StripeConfigError as exc:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    except StripeServiceError as exc:
        logger.error("Error creating checkout session: %s", exc)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={"message": "Failed to create checkout session", "details": {"reason": str(exc)}},
        ) from exc

    session_id = stripe_field(session, "id")
    logger.info("Created checkout session %s for %s billing", session_id, payload.billing_type)
    return CheckoutSessionOut(
        session_id=session_id,
        billing_type=payload.billing_type,
        quantity=payload.quantity,
    )


@router.post("/create-portal-session", response_model=PortalSessionOut)
def create_portal_session(
    db: Session = Depends(get_db),
    user: User = Depends(get_current_user),
    stripe_service: StripeService = Depends(get_stripe_service),
) -> PortalSessionOut:
    customer_id = find_customer_id(db, user)
    if not customer_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No subscription found")

    try:
        session = stripe_service.create_portal_session(
            customer_id=customer_id,
            return_url=f"{settings.FRONTEND_BASE_URL or 'http://localhost:3000'}/dashboard",
        )
    except StripeServiceError as exc:
        logger.error("Error creating billing portal session for %s: %s", user.user_id, exc)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create billing portal session",
        ) from exc

    logger.info("Created billing portal session for user %s (customer %s)", user.user_id, customer_id)
    return PortalSessionOut(url=stripe_field(session, "url"))
