"""Billing services."""

from packages.billing.services.metering_service import UsageMeteringEngine
from packages.billing.services.proration_service import ProrationCalculator
from packages.billing.services.invoice_service import InvoiceAssembler
from packages.billing.services.payment_retry_service import PaymentRetryCoordinator
from packages.billing.services.billing_cycle_service import BillingCycleOrchestrator

__all__ = [
    "UsageMeteringEngine",
    "ProrationCalculator",
    "InvoiceAssembler",
    "PaymentRetryCoordinator",
    "BillingCycleOrchestrator",
]
