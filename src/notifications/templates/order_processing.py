"""Order processing template."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class OrderProcessingTemplate:
    template_key = TemplateKey.ORDER_PROCESSING

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        text = f"The vendor has started preparing your order #{order_id}."
        return {"subject": f"Order #{order_id} Is Being Prepared", "text": text, "html": text_to_html(text)}
