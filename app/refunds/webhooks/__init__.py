"""
Stripe webhook intake for refund events.

Usage:
    from refunds.webhooks.views import stripe_webhook
    from refunds.webhooks.handlers import dispatch_webhook
"""
