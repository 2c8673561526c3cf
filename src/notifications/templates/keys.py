"""Closed set of notification templates."""

from enum import Enum


class TemplateKey(Enum):
    ORDER_RECEIVED = "order_received"
    PAYMENT_APPROVED = "payment_approved"
    ORDER_CONFIRMED = "order_confirmed"
    ORDER_PROCESSING = "order_processing"
    ORDER_PACKED = "order_packed"
    ORDER_SHIPPED = "order_shipped"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"
    REFUND_PROCESSED = "refund_processed"
