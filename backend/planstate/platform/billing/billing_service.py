"""Main billing service.

This module wires the billing components together so that every one of them
shares the same repository, Stripe client and directory client.
"""

from typing import Optional

from planstate.integrations.stripe_client import StripeClient, stripe_client
from planstate.integrations.workos_client import WorkOSClient, workos_client
from planstate.platform.billing.billing_data_access import BillingRepository
from planstate.platform.billing.billing_queries import BillingQueries
from planstate.platform.billing.checkout import CheckoutService
from planstate.platform.billing.customer_binding import CustomerBindingStore
from planstate.platform.billing.deletion_gate import DeletionGate
from planstate.platform.billing.plan_change import PlanChangeOrchestrator
from planstate.platform.billing.refund_policy import RefundPolicy
from planstate.platform.billing.subscription_sync import SubscriptionSync
from planstate.platform.billing.trial_policy import TrialPolicy


class BillingService:
    """Service for managing organization billing and subscriptions.

    Attributes:
        repository: Database access for every billing table.
        bindings: Organization -> Stripe customer binding.
        sync: Resync of the snapshot cache from Stripe.
        checkout: First-time checkout and the billing portal.
        plans: Plan changes, scheduled downgrades and cancellations.
        trials: Trial eligibility, start and early conversion.
        refunds: Money-back guarantee.
        deletion: Organization deletion gate.
        queries: Read-only summaries and billing history.
    """

    def __init__(
        self,
        stripe: Optional[StripeClient] = None,
        directory: Optional[WorkOSClient] = None,
    ):
        """Initialize billing service."""
        self.stripe = stripe if stripe is not None else stripe_client
        self.directory = directory if directory is not None else workos_client

        self.repository = BillingRepository()
        self.bindings = CustomerBindingStore(
            self.repository, stripe=self.stripe, directory=self.directory
        )
        self.sync = SubscriptionSync(self.repository, stripe=self.stripe)

        components = dict(
            repository=self.repository,
            bindings=self.bindings,
            sync=self.sync,
            stripe=self.stripe,
        )
        self.checkout = CheckoutService(**components)
        self.plans = PlanChangeOrchestrator(**components)
        self.trials = TrialPolicy(**components)
        self.refunds = RefundPolicy(**components)
        self.deletion = DeletionGate(self.repository, sync=self.sync, stripe=self.stripe)
        self.queries = BillingQueries(self.repository, stripe=self.stripe)


# Singleton instance
billing_service = BillingService()
