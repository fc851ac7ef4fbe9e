"""
Refunds app.

Refund orchestration for approved order returns:
- Refund ledger (one row per refunded item or manual adjustment)
- Payment gateway contract with Stripe-backed implementations
- Orchestrator for refund, cancel, fail and manual reconciliation flows
- Order/Payment status reconciliation from the ledger
- Stripe webhook handling for refunds issued or changed at the gateway
"""
