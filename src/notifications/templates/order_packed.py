"""Order packed template."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class OrderPackedTemplate:
    template_key = TemplateKey.ORDER_PACKED

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        text = f"Your order #{order_id} is packed and waiting for the carrier."
        return {"subject": f"Order #{order_id} Packed", "text": text, "html": text_to_html(text)}
