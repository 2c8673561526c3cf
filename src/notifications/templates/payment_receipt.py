"""Payment approved template: sent when the buyer approves payment at the gateway."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class PaymentApprovedTemplate:
    template_key = TemplateKey.PAYMENT_APPROVED

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        total = context.get("total", "0.00")
        currency = context.get("currency", "USD")
        text = (
            f"Your payment of {currency} {total} for order #{order_id} "
            "has been approved.\n\n"
            "We'll send your receipt once the payment is captured."
        )
        return {"subject": f"Payment Approved - Order #{order_id}", "text": text, "html": text_to_html(text)}
