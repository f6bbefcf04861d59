"""
Billing package - subscriptions, usage quotas, coupons and referrals.

Payments arrive as normalized events (Stripe webhooks or the internal
ingest endpoint) and are applied to the per-user subscription history.
Period resets and expiry run on a schedule via LifecycleService.
"""
