"""Course checkout backend: Stripe checkout, exactly-once webhooks, confirmation emails."""
