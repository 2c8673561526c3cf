"""Shipment notice for orders that left the warehouse."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class OrderShippedTemplate:
    template_key = TemplateKey.ORDER_SHIPPED

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        lines = [f"Order #{order_id} is on its way."]
        if context.get("carrier"):
            lines.append(f"Carrier: {context['carrier']}")
        if context.get("tracking_number"):
            lines.append(f"Tracking Number: {context['tracking_number']}")
        text = "\n".join(lines)
        return {"subject": f"Order #{order_id} has shipped", "text": text, "html": text_to_html(text)}
