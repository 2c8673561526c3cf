"""Refund notification, sent once the gateway confirms a refund."""

from notifications.templates.keys import TemplateKey
from notifications.templates.rendering import text_to_html


class RefundProcessedTemplate:
    template_key = TemplateKey.REFUND_PROCESSED

    @staticmethod
    def render(context: dict) -> dict:
        order_id = context.get("order_id", "N/A")
        amount = context.get("refund_amount") or context.get("total", "0.00")
        currency = context.get("currency", "USD")
        lines = [f"We have returned your payment for order #{order_id}: {currency} {amount}."]
        if context.get("reason"):
            lines.append(f"Reason given: {context['reason']}")
        lines.append("Most banks post refunds within a few business days of our confirmation.")
        text = "\n\n".join(lines)
        return {"subject": f"Refund Processed - {currency} {amount}", "text": text, "html": text_to_html(text)}
