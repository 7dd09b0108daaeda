"""
Billing package - renews subscriptions, meters usage, assembles invoices
and collects payment.

This package integrates with:
- Stripe: Payment processing and invoicing

Usage is metered and priced locally; the orchestrator serializes all work
on one subscription behind a distributed lock.
"""
