"""Template registry: maps each TemplateKey to its template class.

Each template renders ``subject``, ``text`` and ``html`` from the
notification variables.
"""

from notifications.templates.delivery_confirmation import OrderDeliveredTemplate
from notifications.templates.keys import TemplateKey
from notifications.templates.order_cancellation import OrderCancelledTemplate
from notifications.templates.order_confirmation import OrderConfirmedTemplate
from notifications.templates.order_packed import OrderPackedTemplate
from notifications.templates.order_processing import OrderProcessingTemplate
from notifications.templates.order_received import OrderReceivedTemplate
from notifications.templates.payment_receipt import PaymentApprovedTemplate
from notifications.templates.refund_notification import RefundProcessedTemplate
from notifications.templates.shipping_update import OrderShippedTemplate

TEMPLATE_REGISTRY: dict[TemplateKey, type] = {
    TemplateKey.ORDER_RECEIVED: OrderReceivedTemplate,
    TemplateKey.PAYMENT_APPROVED: PaymentApprovedTemplate,
    TemplateKey.ORDER_CONFIRMED: OrderConfirmedTemplate,
    TemplateKey.ORDER_PROCESSING: OrderProcessingTemplate,
    TemplateKey.ORDER_PACKED: OrderPackedTemplate,
    TemplateKey.ORDER_SHIPPED: OrderShippedTemplate,
    TemplateKey.ORDER_DELIVERED: OrderDeliveredTemplate,
    TemplateKey.ORDER_CANCELLED: OrderCancelledTemplate,
    TemplateKey.REFUND_PROCESSED: RefundProcessedTemplate,
}


def get_template(template_key) -> type:
    """Look up a template class by key (enum member or its string value)."""
    key = template_key if isinstance(template_key, TemplateKey) else TemplateKey(template_key)
    return TEMPLATE_REGISTRY[key]


def render(template_key, variables: dict) -> dict:
    return get_template(template_key).render(variables)
