class CheckoutServiceError(Exception):
    """Base exception for the checkout backend."""

    pass


class EmailDeliveryError(CheckoutServiceError):
    """Raised when the email provider rejects or fails to accept a message."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class PriceNotConfiguredError(CheckoutServiceError):
    """Raised when no Stripe price can be resolved for a course product."""

    def __init__(self, product: str, lookup_key: str):
        self.product = product
        self.lookup_key = lookup_key
        super().__init__(
            f"Course price not configured for '{product}': set lookup_key '{lookup_key}' "
            "in Stripe or the matching STRIPE_PRICE_ID_*_EUR variable"
        )


class CheckoutSessionError(CheckoutServiceError):
    """Raised when Stripe returns a checkout session without a redirect URL."""

    pass
