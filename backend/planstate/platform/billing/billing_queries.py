"""Read-only billing queries for administrators.

Subscription state comes from the snapshot cache. Billing history (invoices,
refunds, past subscriptions, activity) is listed from Stripe on demand.
"""

from typing import Any, Optional
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from planstate import schemas
from planstate.core import datetime_utils
from planstate.core.config import settings
from planstate.core.exceptions import ExternalServiceError, NotFoundException
from planstate.core.logging import logger
from planstate.integrations.stripe_client import StripeClient, require_stripe, stripe_client
from planstate.models import SubscriptionSnapshot
from planstate.platform.billing.billing_data_access import BillingRepository
from planstate.platform.billing.plan_logic import (
    UNLIMITED_SEATS,
    PriceCatalog,
    get_catalog,
    get_features,
    get_seat_limit,
    interval_or_default,
    plan_name,
    tier_has_feature,
)
from planstate.platform.billing.stripe_translation import (
    event_customer_id,
    event_object,
    id_of,
    invoice_line_price_id,
    invoice_subscription_id,
    parse_subscription,
    refund_charge_id,
)
from planstate.schemas.billing import BillingInterval, SubscriptionStatus, Tier

_QUALIFYING = {SubscriptionStatus.ACTIVE.value, SubscriptionStatus.TRIALING.value}

ACTIVITY_EVENT_TYPES = [
    "customer.subscription.created",
    "customer.subscription.updated",
    "customer.subscription.deleted",
    "customer.subscription.paused",
    "customer.subscription.resumed",
    "invoice.paid",
    "invoice.payment_failed",
    "charge.refunded",
]


def _money(amount: Optional[int], currency: Optional[str]) -> str:
    symbol = "$" if (currency or "usd").lower() == "usd" else ""
    suffix = "" if symbol else f" {(currency or '').upper()}"
    return f"{symbol}{(amount or 0) / 100:.2f}{suffix}"


class BillingQueries:
    """Subscription summary, seats, features, prices, and billing history."""

    def __init__(
        self,
        repository: Optional[BillingRepository] = None,
        stripe: Optional[StripeClient] = None,
    ):
        """Initialize the query service."""
        self.repository = repository or BillingRepository()
        self.stripe = stripe if stripe is not None else stripe_client

    async def _organization(self, db: AsyncSession, organization_id: UUID):
        organization = await self.repository.get_organization(db, organization_id)
        if organization is None:
            raise NotFoundException(f"Organization {organization_id} not found")
        return organization

    async def _rows(self, db: AsyncSession, organization_id: UUID) -> list[SubscriptionSnapshot]:
        binding = await self.repository.get_binding(db, organization_id)
        if binding is None:
            return []
        return await self.repository.get_snapshots(db, binding.stripe_customer_id)

    async def _current_tier(self, db: AsyncSession, organization_id: UUID) -> Tier:
        rows = await self._rows(db, organization_id)
        current = next((row for row in rows if row.status in _QUALIFYING), None)
        return Tier(current.tier) if current else Tier.PERSONAL

    # Subscription state

    async def get_subscription_summary(
        self, db: AsyncSession, organization_id: UUID
    ) -> schemas.SubscriptionSummary:
        """Current subscription of an organization.

        Falls back to the most recent non-qualifying subscription (for
        instance a canceled one) so the caller can show what lapsed.
        """
        organization = await self._organization(db, organization_id)
        rows = await self._rows(db, organization_id)

        pending_setup = any(
            row.status == SubscriptionStatus.NONE.value and row.pending_checkout_session_id
            for row in rows
        )
        subscribed = [row for row in rows if row.stripe_subscription_id]
        current = next((row for row in subscribed if row.status in _QUALIFYING), None)
        if current is None and subscribed:
            current = subscribed[0]

        if current is None:
            return schemas.SubscriptionSummary(
                features=get_features(Tier.PERSONAL),
                pending_setup=pending_setup,
                is_personal_workspace=organization.is_personal,
            )

        tier = Tier(current.tier)
        scheduled = get_catalog().lookup(current.scheduled_price_id)

        guarantee = None
        created = [
            row.subscription_created_at for row in subscribed if row.subscription_created_at
        ]
        if created:
            days_since = (datetime_utils.utc_now_ms() - min(created)) // datetime_utils.MS_PER_DAY
            days_remaining = max(0, settings.REFUND_GUARANTEE_DAYS - days_since)
            guarantee = schemas.MoneyBackGuarantee(
                eligible=days_remaining > 0,
                days_since_start=days_since,
                days_remaining=days_remaining,
            )

        return schemas.SubscriptionSummary(
            has_subscription=current.status in _QUALIFYING,
            status=SubscriptionStatus(current.status),
            tier=tier,
            billing_interval=BillingInterval(current.billing_interval),
            plan_name=plan_name(tier),
            stripe_subscription_id=current.stripe_subscription_id,
            stripe_price_id=current.stripe_price_id,
            seat_limit=current.seat_limit,
            features=get_features(tier),
            current_period_start=current.current_period_start,
            current_period_end=current.current_period_end,
            cancel_at_period_end=current.cancel_at_period_end,
            cancel_at=current.cancel_at,
            trial_start=current.trial_start,
            trial_end=current.trial_end,
            payment_method_brand=current.payment_method_brand,
            payment_method_last4=current.payment_method_last4,
            scheduled_price_id=current.scheduled_price_id,
            scheduled_tier=scheduled.tier if scheduled else None,
            pending_setup=pending_setup,
            is_personal_workspace=organization.is_personal,
            money_back_guarantee=guarantee,
        )

    async def get_all_subscriptions(
        self, db: AsyncSession, organization_id: UUID
    ) -> list[schemas.SubscriptionSnapshot]:
        """Every cached snapshot row of the organization, most recently updated first."""
        rows = await self.repository.get_organization_snapshots(db, organization_id)
        return [schemas.SubscriptionSnapshot.model_validate(row) for row in rows]

    async def get_audit_trail(
        self, db: AsyncSession, organization_id: UUID
    ) -> list[schemas.BillingAuditEvent]:
        """Recorded plan changes, trials, cancellations and refunds, newest first."""
        await self._organization(db, organization_id)
        return await self.repository.get_audit_trail(db, organization_id)

    async def get_seat_info(self, db: AsyncSession, organization_id: UUID) -> schemas.SeatInfo:
        """Seat usage against the tier's limit."""
        organization = await self._organization(db, organization_id)
        rows = await self._rows(db, organization_id)
        current = next((row for row in rows if row.status in _QUALIFYING), None)
        tier = Tier(current.tier) if current else Tier.PERSONAL
        seat_limit = current.seat_limit if current else get_seat_limit(Tier.PERSONAL)

        seats = organization.member_count
        unlimited = seat_limit == UNLIMITED_SEATS
        return schemas.SeatInfo(
            current_seats=seats,
            seat_limit=seat_limit,
            is_unlimited=unlimited,
            can_add_member=unlimited or seats < seat_limit,
            utilization_percent=0.0 if unlimited else round(seats / seat_limit * 100, 1),
            tier=tier,
        )

    async def has_feature(
        self, db: AsyncSession, organization_id: UUID, feature: str
    ) -> schemas.FeatureCheck:
        """Whether the organization's current tier includes ``feature``."""
        tier = await self._current_tier(db, organization_id)
        return schemas.FeatureCheck(
            feature=feature, has_feature=tier_has_feature(tier, feature), tier=tier
        )

    async def list_prices(self) -> list[schemas.PriceInfo]:
        """Configured prices with their Stripe product and amount."""
        stripe = require_stripe(self.stripe)
        prices = []
        for plan in get_catalog().plans():
            try:
                price = await stripe.get_price(plan.price_id)
            except ExternalServiceError as e:
                logger.warning(f"Skipping price {plan.price_id}: {e}")
                continue
            product = price.get("product")
            product_name = product.get("name") if isinstance(product, dict) else None
            prices.append(
                schemas.PriceInfo(
                    price_id=plan.price_id,
                    product_name=product_name or plan_name(plan.tier),
                    amount=price.get("unit_amount"),
                    currency=price.get("currency") or "usd",
                    interval=plan.interval,
                    tier=plan.tier,
                )
            )
        return prices

    # Billing history

    def _invoice_record(self, invoice: Any, catalog: PriceCatalog) -> schemas.InvoiceRecord:
        lines = (invoice.get("lines") or {}).get("data") or []
        plan = None
        line_items = []
        for line in lines:
            plan = plan or catalog.lookup(invoice_line_price_id(line))
            period = line.get("period") or {}
            line_items.append(
                schemas.InvoiceLineItem(
                    description=line.get("description"),
                    amount=line.get("amount") or 0,
                    quantity=line.get("quantity"),
                    period_start=datetime_utils.seconds_to_ms(period.get("start")),
                    period_end=datetime_utils.seconds_to_ms(period.get("end")),
                )
            )
        return schemas.InvoiceRecord(
            id=invoice["id"],
            number=invoice.get("number"),
            status=invoice.get("status"),
            amount_due=invoice.get("amount_due") or 0,
            amount_paid=invoice.get("amount_paid") or 0,
            currency=invoice.get("currency") or "usd",
            created=datetime_utils.seconds_to_ms(invoice.get("created")) or 0,
            period_start=datetime_utils.seconds_to_ms(invoice.get("period_start")),
            period_end=datetime_utils.seconds_to_ms(invoice.get("period_end")),
            billing_reason=invoice.get("billing_reason"),
            subscription_id=invoice_subscription_id(invoice),
            hosted_invoice_url=invoice.get("hosted_invoice_url"),
            invoice_pdf=invoice.get("invoice_pdf"),
            plan_name=plan_name(plan.tier) if plan else None,
            lines=line_items,
        )

    def _activity(self, event: Any) -> Optional[schemas.ActivityEvent]:
        event_type = event.get("type") or ""
        obj = event_object(event)
        created = datetime_utils.seconds_to_ms(event.get("created")) or 0
        base = {"id": event["id"], "type": event_type, "created": created}

        if event_type.startswith("customer.subscription."):
            action = event_type.rsplit(".", 1)[-1]
            plan = get_catalog().lookup(parse_subscription(obj).price_id) if obj.get("id") else None
            name = plan_name(plan.tier) if plan else "Subscription"
            return schemas.ActivityEvent(
                description=f"{name} {action}",
                details=f"Status: {obj.get('status')}" if obj.get("status") else None,
                status=obj.get("status"),
                **base,
            )
        if event_type == "invoice.paid":
            return schemas.ActivityEvent(
                description=f"{_money(obj.get('amount_paid'), obj.get('currency'))} charged",
                details=obj.get("number"),
                amount=obj.get("amount_paid"),
                status="paid",
                **base,
            )
        if event_type == "invoice.payment_failed":
            return schemas.ActivityEvent(
                description=(
                    f"Payment of {_money(obj.get('amount_due'), obj.get('currency'))} failed"
                ),
                details=obj.get("number"),
                amount=obj.get("amount_due"),
                status="failed",
                **base,
            )
        if event_type == "charge.refunded":
            return schemas.ActivityEvent(
                description=f"{_money(obj.get('amount_refunded'), obj.get('currency'))} refunded",
                amount=obj.get("amount_refunded"),
                status="refunded",
                **base,
            )
        return None

    async def get_complete_billing_data(
        self, db: AsyncSession, organization_id: UUID
    ) -> schemas.CompleteBillingData:
        """Invoices, refunds, subscriptions and an activity timeline from Stripe."""
        binding = await self.repository.get_binding(db, organization_id)
        if binding is None:
            return schemas.CompleteBillingData()

        stripe = require_stripe(self.stripe)
        customer_id = binding.stripe_customer_id
        catalog = get_catalog()

        invoices = [
            self._invoice_record(invoice, catalog)
            for invoice in await stripe.list_invoices(customer_id)
        ]

        charges = {charge["id"]: charge for charge in await stripe.list_charges(customer_id)}
        raw_subscriptions = await stripe.list_subscriptions(customer_id)
        parsed = [parse_subscription(sub) for sub in raw_subscriptions]
        created = [sub.created for sub in parsed if sub.created is not None]
        since_s = datetime_utils.ms_to_seconds(min(created)) if created else None

        refunds = []
        for refund in await stripe.list_refunds(created_gte=since_s):
            charge_id = refund_charge_id(refund)
            if charge_id not in charges:
                continue
            refunds.append(
                schemas.RefundRecord(
                    id=refund["id"],
                    amount=refund.get("amount") or 0,
                    currency=refund.get("currency") or "usd",
                    status=refund.get("status"),
                    reason=refund.get("reason"),
                    created=datetime_utils.seconds_to_ms(refund.get("created")) or 0,
                    charge_id=charge_id,
                    invoice_id=id_of(charges[charge_id].get("invoice")),
                    metadata=dict(refund.get("metadata") or {}),
                )
            )

        subscriptions = []
        for sub in parsed:
            plan = catalog.lookup(sub.price_id)
            tier = plan.tier if plan else Tier.PERSONAL
            subscriptions.append(
                schemas.SubscriptionRecord(
                    id=sub.id,
                    status=sub.status,
                    plan_name=plan_name(tier),
                    tier=tier,
                    billing_interval=(
                        plan.interval if plan else interval_or_default(sub.price_interval)
                    ),
                    amount=sub.unit_amount,
                    currency=sub.currency,
                    created=sub.created or 0,
                    current_period_start=sub.current_period_start,
                    current_period_end=sub.current_period_end,
                    cancel_at_period_end=sub.cancel_at_period_end,
                    canceled_at=sub.canceled_at,
                    ended_at=sub.ended_at,
                )
            )

        activity = []
        for event in await stripe.list_events(ACTIVITY_EVENT_TYPES, created_gte=since_s):
            if event_customer_id(event) != customer_id:
                continue
            entry = self._activity(event)
            if entry is not None:
                activity.append(entry)
        activity.sort(key=lambda entry: entry.created, reverse=True)

        return schemas.CompleteBillingData(
            invoices=invoices,
            refunds=refunds,
            subscriptions=subscriptions,
            activity=activity,
        )
