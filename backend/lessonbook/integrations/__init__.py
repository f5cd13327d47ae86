"""External service integrations for the lessonbook engine."""

from .checkout_gateway import (
    CheckoutGatewayError,
    CheckoutOutcome,
    CheckoutSession,
    FakeCheckoutGateway,
    HostedCheckoutGateway,
    StripeCheckoutGateway,
    get_checkout_gateway,
    map_external_status,
)

__all__ = [
    "CheckoutGatewayError",
    "CheckoutOutcome",
    "CheckoutSession",
    "FakeCheckoutGateway",
    "HostedCheckoutGateway",
    "StripeCheckoutGateway",
    "get_checkout_gateway",
    "map_external_status",
]
