"""Fake email transport: records sent emails for testing."""

import threading
from uuid import uuid4

from notifications.channel.email_port import MailMessage, MailTransport, SendResult


class FakeEmailTransport(MailTransport):
    """Mail transport that records messages in memory for test assertions.

    ``fail_times`` makes the next N sends fail before succeeding again;
    ``should_succeed=False`` makes every send fail.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self.sent_emails: list[MailMessage] = []
        self.attempts: list[MailMessage] = []
        self.should_succeed = True
        self.fail_times = 0
        self.failure_reason = "Email delivery failed"

    def configure(
        self,
        should_succeed: bool = True,
        fail_times: int = 0,
        failure_reason: str = "Email delivery failed",
    ):
        """Configure the fake transport behavior for testing."""
        with self._lock:
            self.should_succeed = should_succeed
            self.fail_times = fail_times
            self.failure_reason = failure_reason

    def send(self, message: MailMessage) -> SendResult:
        with self._lock:
            self.attempts.append(message)
            if not self.should_succeed or self.fail_times > 0:
                self.fail_times = max(0, self.fail_times - 1)
                return SendResult(success=False, error=self.failure_reason)

            self.sent_emails.append(message)
            return SendResult(success=True, message_id=f"email-{uuid4().hex[:12]}")

    def reset(self):
        """Clear recorded emails (useful between tests)."""
        with self._lock:
            self.sent_emails.clear()
            self.attempts.clear()
            self.should_succeed = True
            self.fail_times = 0
            self.failure_reason = "Email delivery failed"
