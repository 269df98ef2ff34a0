"""Money-back guarantee.

A customer can claim a full refund once, within the guarantee window counted
from their first subscription. Refunds are read from Stripe every time; only
refunds on the customer's own charges count, because Stripe cannot list
refunds by customer.
"""

from typing import Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.api.context import ApiContext
from planstate.core import datetime_utils
from planstate.core.config import settings
from planstate.core.exceptions import ExternalServiceError
from planstate.integrations.stripe_client import StripeClient, require_stripe, stripe_client
from planstate.platform.billing.billing_data_access import BillingRepository
from planstate.platform.billing.customer_binding import CustomerBindingStore
from planstate.platform.billing.stripe_translation import (
    invoice_payment_refs,
    parse_subscription,
    refund_charge_id,
)
from planstate.platform.billing.subscription_sync import SubscriptionSync
from planstate.schemas.billing import ChangeEffect

GUARANTEE_REFUND_TYPE = "money_back_guarantee"


class RefundPolicy:
    """Eligibility and execution of the money-back guarantee."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        bindings: Optional[CustomerBindingStore] = None,
        sync: Optional[SubscriptionSync] = None,
        stripe: Optional[StripeClient] = None,
    ):
        """Initialize the refund policy."""
        self.repository = repository or BillingRepository()
        self.stripe = stripe if stripe is not None else stripe_client
        self.bindings = bindings or CustomerBindingStore(self.repository, stripe=self.stripe)
        self.sync = sync or SubscriptionSync(self.repository, stripe=self.stripe)

    async def _customer_refunds(self, customer_id: str, since_s: Optional[int]) -> list:
        """Refunds issued against the customer's own charges."""
        stripe = require_stripe(self.stripe)
        charge_ids = {charge["id"] for charge in await stripe.list_charges(customer_id)}
        refunds = await stripe.list_refunds(created_gte=since_s)
        return [refund for refund in refunds if refund_charge_id(refund) in charge_ids]

    async def check_refund_eligibility(
        self, db: AsyncSession, organization_id: UUID
    ) -> schemas.RefundEligibility:
        """Whether the organization can still claim the money-back guarantee."""
        guarantee_days = settings.REFUND_GUARANTEE_DAYS

        customer_id = await self.bindings.get_binding(db, organization_id)
        if not customer_id:
            return schemas.RefundEligibility(eligible=False, message="No billing account found")

        stripe = require_stripe(self.stripe)
        subscriptions = [
            parse_subscription(sub) for sub in await stripe.list_subscriptions(customer_id)
        ]
        created = [sub.created for sub in subscriptions if sub.created is not None]
        if not created:
            return schemas.RefundEligibility(
                eligible=False, message="No subscription history found"
            )

        first_created = min(created)
        days_since = (datetime_utils.utc_now_ms() - first_created) // datetime_utils.MS_PER_DAY
        days_remaining = max(0, guarantee_days - days_since)
        if days_since >= guarantee_days:
            return schemas.RefundEligibility(
                eligible=False,
                message=(
                    f"The {guarantee_days}-day money-back guarantee period has ended "
                    f"({days_since} days since your first subscription)"
                ),
                days_since_first_subscription=days_since,
            )

        refunds = await self._customer_refunds(
            customer_id, datetime_utils.ms_to_seconds(first_created)
        )
        if any(
            (refund.get("metadata") or {}).get("type") == GUARANTEE_REFUND_TYPE
            for refund in refunds
        ):
            return schemas.RefundEligibility(
                eligible=False,
                message="The money-back guarantee has already been used",
                days_since_first_subscription=days_since,
                days_remaining=days_remaining,
            )

        invoices = await stripe.list_invoices(customer_id, status="paid")
        paid = sum(invoice.get("amount_paid") or 0 for invoice in invoices)
        refunded = sum(refund.get("amount") or 0 for refund in refunds)
        refundable = paid - refunded
        currency = invoices[0].get("currency") if invoices else None

        if refundable <= 0:
            return schemas.RefundEligibility(
                eligible=False,
                message="There are no payments to refund",
                days_since_first_subscription=days_since,
                days_remaining=days_remaining,
            )

        return schemas.RefundEligibility(
            eligible=True,
            message=f"Eligible for a full refund ({days_remaining} days remaining)",
            days_since_first_subscription=days_since,
            days_remaining=days_remaining,
            refundable_amount=refundable,
            currency=currency or "usd",
        )

    async def request_money_back_refund(
        self, db: AsyncSession, ctx: ApiContext, reason: str = ""
    ) -> schemas.RefundResult:
        """Cancel every active subscription and refund every paid invoice.

        Individual cancellation and refund failures are collected; the loop
        always runs to the end.
        """
        eligibility = await self.check_refund_eligibility(db, ctx.organization.id)
        if not eligibility.eligible:
            return schemas.RefundResult(success=False, message=eligibility.message)

        customer_id = await self.bindings.get_binding(db, ctx.organization.id)
        stripe = require_stripe(self.stripe)
        errors: list[str] = []

        canceled: list[str] = []
        for raw in await stripe.list_subscriptions(customer_id):
            subscription = parse_subscription(raw)
            if not subscription.is_qualifying:
                continue
            try:
                await stripe.cancel_subscription(subscription.id, prorate=False)
                canceled.append(subscription.id)
            except ExternalServiceError as e:
                ctx.logger.error(f"Failed to cancel subscription {subscription.id}: {e}")
                errors.append(f"Subscription {subscription.id}: {e}")

        refund_ids: list[str] = []
        refunded_amount = 0
        for invoice in await stripe.list_invoices(customer_id, status="paid"):
            if not invoice.get("amount_paid"):
                continue
            charge_id, payment_intent_id = invoice_payment_refs(invoice)
            if not charge_id and not payment_intent_id:
                errors.append(f"Invoice {invoice['id']}: no payment to refund")
                continue
            try:
                refund = await stripe.create_refund(
                    charge=charge_id,
                    payment_intent=None if charge_id else payment_intent_id,
                    metadata={
                        "type": GUARANTEE_REFUND_TYPE,
                        "organization_id": str(ctx.organization.id),
                        "invoice_id": invoice["id"],
                        "user_reason": reason or "Not specified",
                    },
                )
            except ExternalServiceError as e:
                ctx.logger.error(f"Failed to refund invoice {invoice['id']}: {e}")
                errors.append(f"Invoice {invoice['id']}: {e}")
                continue
            refund_ids.append(refund["id"])
            refunded_amount += refund.get("amount") or 0

        await self.sync.resync_customer(db, customer_id)

        if not refund_ids:
            return schemas.RefundResult(
                success=False,
                message="No refunds could be issued",
                canceled_subscription_ids=canceled,
                errors=errors,
            )

        await self.repository.record_audit(
            db,
            schemas.BillingAuditEventCreate(
                organization_id=ctx.organization.id,
                action="money_back_refund",
                effective=ChangeEffect.IMMEDIATE,
                details={
                    "refund_ids": refund_ids,
                    "refunded_amount": refunded_amount,
                    "canceled_subscription_ids": canceled,
                    "reason": reason or "Not specified",
                },
            ),
        )
        ctx.logger.info(f"Refunded {refunded_amount} across {len(refund_ids)} refund(s)")

        return schemas.RefundResult(
            success=True,
            message=(
                f"Refunded {refunded_amount / 100:.2f} {eligibility.currency.upper()} "
                "and canceled your subscription"
            ),
            refunded_amount=refunded_amount,
            refund_ids=refund_ids,
            canceled_subscription_ids=canceled,
            errors=errors,
        )
