"""API endpoints for billing operations.

This module provides the HTTP interface for billing operations,
delegating all business logic to the billing service.
"""

from typing import List, Optional
from uuid import UUID

from fastapi import Depends, Header, Request, Response
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.api import deps
from planstate.api.context import ApiContext
from planstate.api.router import TrailingSlashRouter
from planstate.core.exceptions import WebhookSignatureError
from planstate.core.logging import logger
from planstate.platform.billing.billing_service import BillingService
from planstate.platform.billing.webhook_handler import BillingWebhookProcessor

router = TrailingSlashRouter()

ORG = "/organizations/{organization_id}"


# Checkout and portal


@router.post(f"{ORG}/checkout-session", response_model=schemas.CheckoutSessionResponse)
async def create_checkout_session(
    request: schemas.CheckoutSessionRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.CheckoutSessionResponse:
    """Create a Stripe checkout session for the organization's first subscription.

    Args:
        request: Checkout session request with price and URLs
        db: Database session
        ctx: Request context
        service: Billing service

    Returns:
        Checkout session URL to redirect the customer to
    """
    return await service.checkout.create_checkout_session(
        db,
        ctx,
        price_id=request.price_id,
        success_url=request.success_url,
        cancel_url=request.cancel_url,
        email=request.email,
    )


@router.post(f"{ORG}/checkout-session/resume", response_model=schemas.ResumeCheckoutResponse)
async def resume_checkout(
    request: schemas.ResumeCheckoutRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.ResumeCheckoutResponse:
    """Resume a checkout that was started but never completed.

    Returns the open session when there is one, otherwise a new session.
    """
    return await service.checkout.resume_checkout(
        db, ctx, success_url=request.success_url, cancel_url=request.cancel_url
    )


@router.post(f"{ORG}/sync", response_model=schemas.BillingDecision)
async def sync_after_checkout(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.BillingDecision:
    """Resync billing state right after returning from checkout."""
    return await service.checkout.sync_after_checkout(db, ctx)


@router.post(f"{ORG}/portal-session", response_model=schemas.CustomerPortalResponse)
async def create_portal_session(
    request: schemas.CustomerPortalRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.CustomerPortalResponse:
    """Create a Stripe customer portal session.

    The customer portal allows customers to:
    - Update payment methods
    - Download invoices
    - Update billing address

    Args:
        request: Portal session request with return URL
        db: Database session
        ctx: Request context
        service: Billing service

    Returns:
        Portal session URL to redirect the customer to
    """
    return await service.checkout.create_portal_session(db, ctx, return_url=request.return_url)


# Subscription state


@router.get(f"{ORG}/subscription", response_model=schemas.SubscriptionSummary)
async def get_subscription(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.SubscriptionSummary:
    """Get the organization's current subscription from the billing cache."""
    return await service.queries.get_subscription_summary(db, organization_id)


@router.get(f"{ORG}/subscriptions", response_model=List[schemas.SubscriptionSnapshot])
async def list_subscriptions(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> List[schemas.SubscriptionSnapshot]:
    """List every cached subscription of the organization."""
    return await service.queries.get_all_subscriptions(db, organization_id)


@router.get(f"{ORG}/audit-trail", response_model=List[schemas.BillingAuditEvent])
async def get_audit_trail(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> List[schemas.BillingAuditEvent]:
    """List the billing audit records of the organization, newest first."""
    return await service.queries.get_audit_trail(db, organization_id)


@router.get(f"{ORG}/seats", response_model=schemas.SeatInfo)
async def get_seat_info(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.SeatInfo:
    """Get seat usage against the plan's limit."""
    return await service.queries.get_seat_info(db, organization_id)


@router.get(f"{ORG}/features/{{feature}}", response_model=schemas.FeatureCheck)
async def check_feature(
    organization_id: UUID,
    feature: str,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.FeatureCheck:
    """Check whether the organization's plan includes a feature."""
    return await service.queries.has_feature(db, organization_id, feature)


@router.get(f"{ORG}/history", response_model=schemas.CompleteBillingData)
async def get_billing_history(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.CompleteBillingData:
    """Get invoices, refunds, subscriptions and activity from Stripe."""
    return await service.queries.get_complete_billing_data(db, organization_id)


@router.get("/prices", response_model=List[schemas.PriceInfo])
async def list_prices(
    service: BillingService = Depends(deps.get_billing_service),
) -> List[schemas.PriceInfo]:
    """List the configured prices."""
    return await service.queries.list_prices()


# Plan changes


@router.post(f"{ORG}/update-plan", response_model=schemas.PlanChangeResult)
async def update_plan(
    request: schemas.UpdatePlanRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.PlanChangeResult:
    """Move the subscription to another price.

    Upgrades apply immediately and charge the prorated difference. Downgrades
    of paid subscriptions apply at the end of the current period. During a
    trial both apply immediately without charge.

    Args:
        request: Target price and optional return URL
        db: Database session
        ctx: Request context
        service: Billing service

    Returns:
        What changed and when it takes effect
    """
    return await service.plans.change_plan(
        db, ctx, price_id=request.price_id, success_url=request.success_url
    )


@router.post(f"{ORG}/cancel", response_model=schemas.BillingDecision)
async def cancel_subscription(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.BillingDecision:
    """Cancel the subscription at the end of the current billing period."""
    return await service.plans.cancel_subscription(db, ctx)


@router.post(f"{ORG}/reactivate", response_model=schemas.BillingDecision)
async def reactivate_subscription(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.BillingDecision:
    """Undo a scheduled cancellation."""
    return await service.plans.resume_subscription(db, ctx)


@router.post(f"{ORG}/cancel-plan-change", response_model=schemas.BillingDecision)
async def cancel_plan_change(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.BillingDecision:
    """Cancel a scheduled downgrade."""
    return await service.plans.cancel_scheduled_downgrade(db, ctx)


# Trials


@router.get(f"{ORG}/trial/eligibility", response_model=schemas.TrialEligibility)
async def check_trial_eligibility(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.TrialEligibility:
    """Check whether the organization can still start a free trial."""
    return await service.trials.check_trial_eligibility(db, organization_id)


@router.post(f"{ORG}/trial", response_model=schemas.StartTrialResult)
async def start_trial(
    request: schemas.StartTrialRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.StartTrialResult:
    """Start the organization's one free trial."""
    return await service.trials.start_trial(db, ctx, price_id=request.price_id)


@router.post(f"{ORG}/trial/end", response_model=schemas.EndTrialResult)
async def end_trial(
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.EndTrialResult:
    """End the trial now; unused trial days extend the first paid period."""
    return await service.trials.end_trial_and_start_paying(db, ctx)


# Refunds


@router.get(f"{ORG}/refund/eligibility", response_model=schemas.RefundEligibility)
async def check_refund_eligibility(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.RefundEligibility:
    """Check whether the money-back guarantee can still be claimed."""
    return await service.refunds.check_refund_eligibility(db, organization_id)


@router.post(f"{ORG}/refund", response_model=schemas.RefundResult)
async def request_refund(
    request: schemas.RefundRequest,
    db: AsyncSession = Depends(deps.get_db),
    ctx: ApiContext = Depends(deps.get_context),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.RefundResult:
    """Claim the money-back guarantee: cancel and refund every paid invoice."""
    return await service.refunds.request_money_back_refund(db, ctx, reason=request.reason)


# Organization deletion


@router.get(f"{ORG}/can-delete", response_model=schemas.DeletionCheck)
async def can_delete_organization(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.DeletionCheck:
    """Check whether the organization can be deleted without orphaning billing."""
    return await service.deletion.can_delete(db, organization_id)


@router.post(f"{ORG}/cancel-all", response_model=schemas.CancelAllResult)
async def cancel_all_subscriptions(
    organization_id: UUID,
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> schemas.CancelAllResult:
    """Cancel every live subscription immediately, ahead of deleting the organization."""
    return await service.deletion.cancel_all_subscriptions(db, organization_id)


# Webhooks


@router.post("/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    stripe_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(deps.get_db),
    service: BillingService = Depends(deps.get_billing_service),
) -> Response:
    """Handle Stripe webhook events.

    Security:
    - Verifies webhook signature
    - Idempotent processing

    Args:
        request: Raw HTTP request
        stripe_signature: Stripe signature header
        db: Database session
        service: Billing service

    Returns:
        200 OK when processed or ignored, 400 on a bad signature, 500 when the
        resync failed and Stripe should redeliver
    """
    if service.stripe is None:
        return Response(status_code=200)

    payload = await request.body()

    if not stripe_signature:
        return JSONResponse(status_code=400, content={"detail": "Missing Stripe signature"})

    try:
        event = service.stripe.verify_webhook_signature(payload, stripe_signature)
    except WebhookSignatureError as e:
        logger.warning(f"Rejected Stripe webhook: {e}")
        return JSONResponse(status_code=400, content={"detail": str(e)})

    try:
        processor = BillingWebhookProcessor(db, service=service)
        await processor.process_event(event)
    except Exception as e:
        logger.error(f"Failed to process Stripe webhook {event.get('id')}: {e}")
        return JSONResponse(status_code=500, content={"detail": "Webhook processing failed"})

    return JSONResponse(status_code=200, content={"received": True})
