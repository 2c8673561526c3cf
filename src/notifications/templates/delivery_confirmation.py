"""Delivery confirmation template: sent when order is delivered."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class OrderDeliveredTemplate:
    template_key = TemplateKey.ORDER_DELIVERED

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        text = (
            f"Your order #{order_id} has been delivered.\n\n"
            "We hope you enjoy your purchase! If you have any issues, "
            "please reach out to the vendor or our support team."
        )
        return {"subject": "Your Order Has Been Delivered", "text": text, "html": text_to_html(text)}
