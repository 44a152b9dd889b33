"""Application modules.

This package contains the feature modules for the receptionist backend:
- billing: Plan catalog, usage metering, overage reconciliation, Stripe webhooks
"""
