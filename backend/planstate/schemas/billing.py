"""Billing schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class Tier(str, Enum):
    """Subscription plan tiers, ordered personal < pro < enterprise."""

    PERSONAL = "personal"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class BillingInterval(str, Enum):
    """Billing cadence of a price."""

    MONTH = "month"
    YEAR = "year"


class SubscriptionStatus(str, Enum):
    """Subscription status as mirrored from Stripe, plus ``none``."""

    NONE = "none"
    ACTIVE = "active"
    TRIALING = "trialing"
    PAST_DUE = "past_due"
    PAUSED = "paused"
    CANCELED = "canceled"
    INCOMPLETE = "incomplete"
    INCOMPLETE_EXPIRED = "incomplete_expired"
    UNPAID = "unpaid"


class ChangeEffect(str, Enum):
    """When a billing mutation takes effect."""

    IMMEDIATE = "immediate"
    SCHEDULED = "scheduled"
    NONE = "none"


# ------------------------------ Snapshot ------------------------------ #


class SubscriptionSnapshotBase(BaseModel):
    """Fields of a subscription snapshot row."""

    stripe_customer_id: str
    stripe_subscription_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    status: SubscriptionStatus = SubscriptionStatus.NONE
    tier: Tier = Tier.PERSONAL
    billing_interval: BillingInterval = BillingInterval.MONTH
    seat_limit: int = 1
    subscription_created_at: Optional[int] = None
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    cancel_at: Optional[int] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    payment_method_brand: Optional[str] = None
    payment_method_last4: Optional[str] = None
    scheduled_price_id: Optional[str] = None
    schedule_id: Optional[str] = None
    pending_checkout_session_id: Optional[str] = None
    pending_price_id: Optional[str] = None


class SubscriptionSnapshotCreate(SubscriptionSnapshotBase):
    """Snapshot row produced by the sync projection."""

    model_config = {"use_enum_values": True}

    organization_id: UUID


class SubscriptionSnapshot(SubscriptionSnapshotBase):
    """Snapshot row as stored."""

    model_config = {"from_attributes": True}

    id: UUID
    organization_id: UUID
    created_at: datetime
    modified_at: datetime


# ------------------------------ Decisions ------------------------------ #


class BillingDecision(BaseModel):
    """Outcome of a policy decision: always a flag with an explanation."""

    success: bool = Field(..., description="Whether the operation went through")
    message: str = Field(..., description="Human-readable explanation")


class PlanChangeResult(BillingDecision):
    """Outcome of a plan change request."""

    effect: ChangeEffect = Field(ChangeEffect.NONE, description="Immediate or scheduled")
    effective_at: Optional[int] = Field(
        None, description="When the change takes effect (epoch ms)"
    )
    previous_tier: Optional[Tier] = None
    previous_interval: Optional[BillingInterval] = None
    new_tier: Optional[Tier] = None
    new_interval: Optional[BillingInterval] = None


class TrialEligibility(BaseModel):
    """Whether an organization may start a trial."""

    eligible: bool
    message: str
    trial_days: int = Field(..., description="Length of the trial in days")


class StartTrialResult(BillingDecision):
    """Outcome of starting a trial."""

    stripe_subscription_id: Optional[str] = None
    trial_end: Optional[int] = Field(None, description="Trial end (epoch ms)")


class EndTrialResult(BillingDecision):
    """Outcome of ending a trial early and starting paid billing."""

    bonus_days: int = Field(0, description="Unused trial days credited to the first period")
    first_period_end: Optional[int] = Field(None, description="End of first paid period (ms)")


class RefundEligibility(BaseModel):
    """Whether the money-back guarantee can still be claimed."""

    eligible: bool
    message: str
    days_since_first_subscription: Optional[int] = None
    days_remaining: int = 0
    refundable_amount: int = Field(0, description="Refundable amount in minor units")
    currency: str = "usd"


class RefundResult(BillingDecision):
    """Outcome of a money-back guarantee refund."""

    refunded_amount: int = 0
    refund_ids: List[str] = Field(default_factory=list)
    canceled_subscription_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class DeletionCheck(BaseModel):
    """Whether an organization can be deleted without orphaning billing."""

    can_delete: bool
    reason: str
    status: SubscriptionStatus = SubscriptionStatus.NONE
    requires_cancellation: bool = False
    cancels_at: Optional[int] = Field(
        None, description="When a scheduled cancellation takes effect (epoch ms)"
    )


class CancelAllResult(BillingDecision):
    """Outcome of canceling every subscription of an organization."""

    canceled_subscription_ids: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


# ------------------------------ Queries ------------------------------ #


class MoneyBackGuarantee(BaseModel):
    """Guarantee window information attached to a subscription summary."""

    eligible: bool
    days_since_start: int
    days_remaining: int


class SubscriptionSummary(BaseModel):
    """Current subscription of an organization."""

    has_subscription: bool = False
    status: SubscriptionStatus = SubscriptionStatus.NONE
    tier: Tier = Tier.PERSONAL
    billing_interval: BillingInterval = BillingInterval.MONTH
    plan_name: str = "Personal Plan"
    stripe_subscription_id: Optional[str] = None
    stripe_price_id: Optional[str] = None
    seat_limit: int = 1
    features: List[str] = Field(default_factory=list)
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    cancel_at: Optional[int] = None
    trial_start: Optional[int] = None
    trial_end: Optional[int] = None
    payment_method_brand: Optional[str] = None
    payment_method_last4: Optional[str] = None
    scheduled_price_id: Optional[str] = None
    scheduled_tier: Optional[Tier] = None
    pending_setup: bool = Field(False, description="Checkout created but never completed")
    is_personal_workspace: bool = False
    money_back_guarantee: Optional[MoneyBackGuarantee] = None


class SeatInfo(BaseModel):
    """Seat utilization for an organization."""

    current_seats: int
    seat_limit: int
    is_unlimited: bool
    can_add_member: bool
    utilization_percent: float
    tier: Tier


class FeatureCheck(BaseModel):
    """Whether an organization's tier includes a feature."""

    feature: str
    has_feature: bool
    tier: Tier


class PriceInfo(BaseModel):
    """A configured Stripe price."""

    price_id: str
    product_name: str
    amount: Optional[int] = Field(None, description="Unit amount in minor units")
    currency: str
    interval: BillingInterval
    tier: Tier


class InvoiceLineItem(BaseModel):
    """A line on an invoice."""

    description: Optional[str] = None
    amount: int
    quantity: Optional[int] = None
    period_start: Optional[int] = None
    period_end: Optional[int] = None


class InvoiceRecord(BaseModel):
    """An invoice of the customer."""

    id: str
    number: Optional[str] = None
    status: Optional[str] = None
    amount_due: int = 0
    amount_paid: int = 0
    currency: str = "usd"
    created: int = Field(..., description="Creation time (epoch ms)")
    period_start: Optional[int] = None
    period_end: Optional[int] = None
    billing_reason: Optional[str] = None
    subscription_id: Optional[str] = None
    hosted_invoice_url: Optional[str] = None
    invoice_pdf: Optional[str] = None
    plan_name: Optional[str] = None
    lines: List[InvoiceLineItem] = Field(default_factory=list)


class RefundRecord(BaseModel):
    """A refund on one of the customer's charges. Derived, never stored."""

    id: str
    amount: int
    currency: str = "usd"
    status: Optional[str] = None
    reason: Optional[str] = None
    created: int
    charge_id: Optional[str] = None
    invoice_id: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SubscriptionRecord(BaseModel):
    """A subscription in the processor's history for the customer."""

    id: str
    status: str
    plan_name: str
    tier: Tier
    billing_interval: BillingInterval
    amount: Optional[int] = None
    currency: str = "usd"
    created: int
    current_period_start: Optional[int] = None
    current_period_end: Optional[int] = None
    cancel_at_period_end: bool = False
    canceled_at: Optional[int] = None
    ended_at: Optional[int] = None


class ActivityEvent(BaseModel):
    """A billing activity timeline entry."""

    id: str
    type: str
    description: str
    details: Optional[str] = None
    created: int
    amount: Optional[int] = None
    status: Optional[str] = None


class CompleteBillingData(BaseModel):
    """Full billing history of an organization."""

    invoices: List[InvoiceRecord] = Field(default_factory=list)
    refunds: List[RefundRecord] = Field(default_factory=list)
    subscriptions: List[SubscriptionRecord] = Field(default_factory=list)
    activity: List[ActivityEvent] = Field(default_factory=list)


# ------------------------------ Requests ------------------------------ #


class CheckoutSessionRequest(BaseModel):
    """Request to create a checkout session."""

    price_id: str = Field(..., description="Stripe price to subscribe to")
    success_url: str = Field(..., description="URL to redirect on successful payment")
    cancel_url: str = Field(..., description="URL to redirect on cancellation")
    email: Optional[str] = Field(None, description="Billing email for a new customer")


class CheckoutSessionResponse(BaseModel):
    """Response with checkout session URL."""

    checkout_url: str = Field(..., description="Stripe checkout URL")
    checkout_session_id: str = Field(..., description="Stripe checkout session ID")


class ResumeCheckoutRequest(BaseModel):
    """Request to resume an unfinished checkout."""

    success_url: str
    cancel_url: str


class ResumeCheckoutResponse(CheckoutSessionResponse):
    """Response of a checkout resumption."""

    is_new_session: bool = Field(..., description="Whether a fresh session was created")


class CustomerPortalRequest(BaseModel):
    """Request to create customer portal session."""

    return_url: str = Field(..., description="URL to return to after portal session")


class CustomerPortalResponse(BaseModel):
    """Response with customer portal URL."""

    portal_url: str = Field(..., description="Stripe customer portal URL")


class UpdatePlanRequest(BaseModel):
    """Request to move the subscription to another price."""

    price_id: str = Field(..., description="Target Stripe price")
    success_url: Optional[str] = Field(None, description="URL to return to afterwards")


class StartTrialRequest(BaseModel):
    """Request to start the organization's free trial."""

    price_id: str = Field(..., description="Personal-tier price the trial converts to")


class RefundRequest(BaseModel):
    """Request to claim the money-back guarantee."""

    reason: str = Field("", description="Why the customer asks for a refund")


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str = Field(..., description="Response message")


# ------------------------------ Records ------------------------------ #


class BillingCustomerCreate(BaseModel):
    """Binding of an organization to a Stripe customer."""

    organization_id: UUID
    stripe_customer_id: str


class TrialUsageCreate(BaseModel):
    """Record of a consumed trial."""

    organization_id: UUID
    has_used_trial: bool = True
    trial_started_at: Optional[int] = None
    trial_ends_at: Optional[int] = None


class BillingAuditEventCreate(BaseModel):
    """Audit record of a successful billing mutation."""

    model_config = {"use_enum_values": True}

    organization_id: UUID
    action: str
    previous_tier: Optional[Tier] = None
    previous_interval: Optional[BillingInterval] = None
    new_tier: Optional[Tier] = None
    new_interval: Optional[BillingInterval] = None
    was_trialing: bool = False
    effective: ChangeEffect = ChangeEffect.IMMEDIATE
    effective_at: Optional[int] = None
    details: Optional[Dict[str, Any]] = None


class BillingAuditEvent(BillingAuditEventCreate):
    """Audit record as stored."""

    model_config = {"from_attributes": True}

    id: UUID
    created_at: datetime


class StripeWebhookEventCreate(BaseModel):
    """Ledger entry of a processed webhook event."""

    event_id: str
    event_type: str
    stripe_customer_id: Optional[str] = None
