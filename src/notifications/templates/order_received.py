"""Order received template: sent when an order is placed."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class OrderReceivedTemplate:
    template_key = TemplateKey.ORDER_RECEIVED

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        total = context.get("total", "0.00")
        currency = context.get("currency", "USD")
        text = (
            f"We have received your order #{order_id}.\n\n"
            f"Order Total: {currency} {total}\n\n"
            "We'll let you know as soon as your payment is confirmed."
        )
        return {"subject": f"Order #{order_id} Received", "text": text, "html": text_to_html(text)}
