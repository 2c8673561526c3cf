"""Mail transport port: abstract interface for outbound email."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass(frozen=True)
class MailMessage:
    to: str
    subject: str
    html: str
    text: str
    sender: str = ""


@dataclass(frozen=True)
class SendResult:
    success: bool
    message_id: str | None = None
    error: str | None = None


class MailTransport(ABC):
    """Abstract interface for mail transport adapters."""

    @abstractmethod
    def send(self, message: MailMessage) -> SendResult:
        """Attempt to deliver one message.

        Adapters report delivery failures through ``SendResult``; an
        exception raised here is treated the same as ``success=False``.
        """
        ...
