"""Order confirmation template: sent when payment for an order is captured."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class OrderConfirmedTemplate:
    template_key = TemplateKey.ORDER_CONFIRMED

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        total = context.get("total", "0.00")
        currency = context.get("currency", "USD")
        text = (
            f"Your order #{order_id} has been confirmed.\n\n"
            f"Amount Paid: {currency} {total}\n\n"
            "This is your payment receipt. We'll notify you once your order ships."
        )
        return {"subject": f"Order #{order_id} Confirmed", "text": text, "html": text_to_html(text)}
