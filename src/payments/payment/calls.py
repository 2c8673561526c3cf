"""Gateway calls with the reconciliation retry budget.

``GatewayUnavailable`` is retried with exponential backoff up to
``max_attempts``. ``GatewayTimeout`` and ``GatewayRejected`` are raised at
once: a timed-out capture or refund may already have moved money.
"""

import time
from collections.abc import Callable
from typing import TypeVar

from payments.errors import GatewayTimeout, GatewayUnavailable
from payments.gateway.port import PaymentGateway
from shared.retry import call_with_retry

T = TypeVar("T")


class GatewayCaller:
    def __init__(
        self,
        gateway: PaymentGateway,
        max_attempts: int = 3,
        backoff_base_seconds: float = 0.5,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.gateway = gateway
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.sleep = sleep

    def call(self, operation: str, fn: Callable[[], T]) -> T:
        return call_with_retry(
            fn,
            retry_on=(GatewayUnavailable,),
            give_up_on=(GatewayTimeout,),
            max_attempts=self.max_attempts,
            base_delay=self.backoff_base_seconds,
            sleep=self.sleep,
            operation=f"gateway.{operation}",
        )
