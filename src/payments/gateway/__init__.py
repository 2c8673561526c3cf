"""Payment gateway factory.

``build_gateway()`` returns a new adapter for the configured provider:
- FakeGateway for development and testing
- PayPalGateway for sandbox and production

The caller owns the instance; there is no module-level gateway.
"""

from payments.gateway.fake_adapter import FakeGateway
from payments.gateway.paypal_adapter import PayPalGateway
from payments.gateway.port import PaymentGateway
from shared.config import GatewaySettings

__all__ = ["FakeGateway", "PayPalGateway", "PaymentGateway", "build_gateway"]


def build_gateway(settings: GatewaySettings) -> PaymentGateway:
    if settings.provider == "fake":
        return FakeGateway(name=settings.name)
    return PayPalGateway(
        client_id=settings.client_id,
        client_secret=settings.client_secret,
        webhook_id=settings.webhook_id,
        environment=settings.environment,
        timeout_seconds=settings.timeout_seconds,
    )
