"""Order cancellation template: sent when an order is cancelled."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class OrderCancelledTemplate:
    template_key = TemplateKey.ORDER_CANCELLED

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        reason = context.get("denial_reason") or context.get("reason") or "as requested"
        text = (
            f"Your order #{order_id} has been cancelled.\n\n"
            f"Reason: {reason}\n\n"
            "No payment was taken. If you have questions, please contact our support team."
        )
        return {"subject": f"Order #{order_id} Cancelled", "text": text, "html": text_to_html(text)}
