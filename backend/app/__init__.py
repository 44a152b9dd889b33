"""Receptionist Billing Backend Application.

Usage metering and overage billing for the virtual receptionist SaaS.
Telephony and messaging webhooks feed per-tenant usage counters, Stripe
invoice events roll billing periods, and the reconciler turns a closed
period into a usage record and, when enabled, an overage charge.

Modules:
    - core: Configuration, database, logging, retry helpers
    - modules.billing: Plan catalog, usage metering, reconciliation, Stripe
"""

__version__ = "0.1.0"
