"""Schemas for the application."""

from .billing import (
    ActivityEvent,
    BillingAuditEvent,
    BillingAuditEventCreate,
    BillingCustomerCreate,
    BillingDecision,
    BillingInterval,
    CancelAllResult,
    ChangeEffect,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    CompleteBillingData,
    CustomerPortalRequest,
    CustomerPortalResponse,
    DeletionCheck,
    EndTrialResult,
    FeatureCheck,
    InvoiceLineItem,
    InvoiceRecord,
    MessageResponse,
    MoneyBackGuarantee,
    PlanChangeResult,
    PriceInfo,
    RefundEligibility,
    RefundRecord,
    RefundRequest,
    RefundResult,
    ResumeCheckoutRequest,
    ResumeCheckoutResponse,
    SeatInfo,
    StripeWebhookEventCreate,
    StartTrialRequest,
    StartTrialResult,
    SubscriptionRecord,
    SubscriptionSnapshot,
    SubscriptionSnapshotBase,
    SubscriptionSnapshotCreate,
    SubscriptionStatus,
    SubscriptionSummary,
    Tier,
    TrialEligibility,
    TrialUsageCreate,
    UpdatePlanRequest,
)
from .organization import Organization, OrganizationCreate

# flake8: noqa: F401
